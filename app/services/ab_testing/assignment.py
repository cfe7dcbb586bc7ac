import random
from typing import Mapping, Sequence

from app.services.ab_testing.stats import VariantDefinition


def roll_traffic() -> float:
    """Uniform draw in [0, 100) used to bucket a new session."""
    return random.random() * 100


def assign_variant(
    traffic_split: Mapping[str, float], variants: Sequence[VariantDefinition], roll: float
) -> str:
    """
    Pick the variant whose cumulative traffic share first exceeds ``roll``.

    ``traffic_split`` is walked in insertion order. If the shares never reach
    the roll (they may sum to slightly under 100) the first declared variant
    is used.
    """
    if not variants:
        raise ValueError("A/B test has no variants to assign")

    cumulative = 0.0
    for variant_id, percentage in traffic_split.items():
        cumulative += percentage
        if roll < cumulative:
            return variant_id

    return variants[0].id
