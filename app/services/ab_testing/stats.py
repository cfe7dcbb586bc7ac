import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

# z critical value for a two-sided 95% interval
CONFIDENCE_Z = 1.96

# A challenger must beat this significance level to be declared the winner
WINNER_SIGNIFICANCE_THRESHOLD = 0.95

# Below this many sessions across all variants we advise running longer
MIN_RECOMMENDED_SESSIONS = 1000

# Spread between best and worst conversion rate, in percentage points
PERFORMANCE_GAP_THRESHOLD = 20.0

COMPLETED_STATUS = "completed"

SECONDS_PER_DAY = 60 * 60 * 24

# Abramowitz & Stegun formula 7.1.26
_A1 = 0.254829592
_A2 = -0.284496736
_A3 = 1.421413741
_A4 = -1.453152027
_A5 = 1.061405429
_P = 0.3275911


@dataclass(frozen=True)
class SessionRecord:
    variant_id: str
    converted: bool = False
    conversion_value: Optional[float] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class VariantDefinition:
    id: str
    name: str
    traffic_percentage: Optional[float] = None


@dataclass
class ABTestDefinition:
    id: str
    status: str
    variants: List[VariantDefinition]
    traffic_split: Dict[str, float] = field(default_factory=dict)
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    statistical_significance: Optional[float] = None
    confidence_level: Optional[float] = None


@dataclass
class VariantStats:
    id: str
    name: str
    sessions: int = 0
    conversions: int = 0
    conversion_rate: float = 0.0  # Percentage
    total_conversion_value: float = 0.0
    average_conversion_value: float = 0.0
    confidence_interval: Tuple[float, float] = (0.0, 0.0)  # Percentage bounds
    significance_level: float = 0.0  # 1 - p_value versus the control


@dataclass
class Winner:
    variant_id: str
    variant_name: str
    improvement: Optional[float]  # Relative, percent; None when the control rate is 0
    confidence_level: float
    conversion_rate: float


@dataclass
class ResultsOverview:
    total_sessions: int
    total_conversions: int
    overall_conversion_rate: float
    test_duration_days: Optional[int]
    traffic_split: Dict[str, float]


@dataclass
class ABTestEvaluation:
    test_id: str
    status: str
    statistical_significance: float
    confidence_level: float
    variants: List[VariantStats]
    winner: Optional[Winner]
    recommendations: List[str]
    overview: ResultsOverview


def aggregate_sessions(
    sessions: Iterable[SessionRecord], variants: Sequence[VariantDefinition]
) -> Dict[str, VariantStats]:
    """
    Count sessions, conversions and conversion value per declared variant.

    Every declared variant gets an entry, even without traffic. Sessions
    pointing at a variant id the test does not declare are ignored.
    """
    stats = {variant.id: VariantStats(id=variant.id, name=variant.name) for variant in variants}

    for session in sessions:
        variant_stats = stats.get(session.variant_id)
        if variant_stats is None:
            continue

        variant_stats.sessions += 1
        if session.converted:
            variant_stats.conversions += 1
            variant_stats.total_conversion_value += session.conversion_value or 0

    return stats


def calculate_conversion_rate(conversions: int, sessions: int) -> float:
    if sessions == 0:
        return 0.0
    return (conversions / sessions) * 100


def calculate_rate_interval(conversion_rate: float, sessions: int) -> Tuple[float, float]:
    """95% normal-approximation interval around a rate, in percent."""
    if sessions <= 0:
        return 0.0, 0.0

    p = conversion_rate / 100
    margin = CONFIDENCE_Z * math.sqrt((p * (1 - p)) / sessions)

    lower = min(max(p - margin, 0.0), 1.0) * 100
    upper = min(max(p + margin, 0.0), 1.0) * 100
    return lower, upper


def apply_rates(stats: VariantStats) -> VariantStats:
    stats.conversion_rate = calculate_conversion_rate(stats.conversions, stats.sessions)
    stats.average_conversion_value = (
        stats.total_conversion_value / stats.conversions if stats.conversions > 0 else 0.0
    )
    stats.confidence_interval = calculate_rate_interval(stats.conversion_rate, stats.sessions)
    return stats


def normal_cdf(x: float) -> float:
    """Standard normal CDF via the Abramowitz-Stegun rational approximation (error < 1.5e-7)."""
    sign = -1.0 if x < 0 else 1.0
    x = abs(x) / math.sqrt(2.0)

    t = 1.0 / (1.0 + _P * x)
    y = 1.0 - (((((_A5 * t + _A4) * t) + _A3) * t + _A2) * t + _A1) * t * math.exp(-x * x)

    return 0.5 * (1.0 + sign * y)


def calculate_z_score(control: VariantStats, challenger: VariantStats) -> Optional[float]:
    """Absolute pooled two-proportion z-score, or None when it is undefined."""
    n1 = control.sessions
    n2 = challenger.sessions
    if n1 == 0 or n2 == 0:
        return None

    p1 = control.conversion_rate / 100
    p2 = challenger.conversion_rate / 100

    pooled_p = (control.conversions + challenger.conversions) / (n1 + n2)
    standard_error = math.sqrt(pooled_p * (1 - pooled_p) * (1 / n1 + 1 / n2))

    if not standard_error > 0:
        return None

    return abs(p2 - p1) / standard_error


def calculate_significance(control: VariantStats, challenger: VariantStats) -> float:
    """1 - two-tailed p-value of the challenger against the control."""
    z_score = calculate_z_score(control, challenger)
    if z_score is None:
        return 0.0

    p_value = 2 * (1 - normal_cdf(abs(z_score)))
    return min(max(1 - p_value, 0.0), 1.0)


def select_control_variant(stats: Iterable[VariantStats]) -> Optional[VariantStats]:
    """The control is the variant with the lexicographically smallest id."""
    ordered = sorted(stats, key=lambda variant: variant.id)
    return ordered[0] if ordered else None


def calculate_improvement(control_rate: float, candidate_rate: float) -> Optional[float]:
    if control_rate == 0:
        return None
    return ((candidate_rate - control_rate) / control_rate) * 100


def select_winner(
    stats: Sequence[VariantStats], control: Optional[VariantStats], status: str
) -> Optional[Winner]:
    if status != COMPLETED_STATUS or control is None:
        return None

    challengers = sorted(
        (variant for variant in stats if variant.id != control.id),
        key=lambda variant: variant.conversion_rate,
        reverse=True,
    )
    if not challengers:
        return None

    best = challengers[0]
    if (
        best.significance_level > WINNER_SIGNIFICANCE_THRESHOLD
        and best.conversion_rate > control.conversion_rate
    ):
        return Winner(
            variant_id=best.id,
            variant_name=best.name,
            improvement=calculate_improvement(control.conversion_rate, best.conversion_rate),
            confidence_level=best.significance_level,
            conversion_rate=best.conversion_rate,
        )

    return None


def generate_recommendations(
    stats: Sequence[VariantStats], winner: Optional[Winner], status: str
) -> List[str]:
    recommendations: List[str] = []

    total_sessions = sum(variant.sessions for variant in stats)
    if total_sessions < MIN_RECOMMENDED_SESSIONS:
        recommendations.append(
            "Consider running the test longer to gather more data for statistical significance"
        )

    if winner:
        if winner.improvement is None:
            recommendations.append(
                f'Implement variant "{winner.variant_name}" - it converts where the control did not'
            )
        else:
            recommendations.append(
                f'Implement variant "{winner.variant_name}" - '
                f"it shows {winner.improvement:.1f}% improvement"
            )
    elif status == COMPLETED_STATUS:
        recommendations.append(
            "No statistically significant winner found. Consider testing more dramatic variations"
        )

    if stats:
        ranked = sorted(stats, key=lambda variant: variant.conversion_rate, reverse=True)
        if ranked[0].conversion_rate - ranked[-1].conversion_rate > PERFORMANCE_GAP_THRESHOLD:
            recommendations.append(
                "Large performance gap between variants suggests potential for optimization"
            )

    return recommendations


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def calculate_duration_days(
    started_at: Optional[datetime], ended_at: Optional[datetime]
) -> Optional[int]:
    if started_at is None or ended_at is None:
        return None

    elapsed = (_as_utc(ended_at) - _as_utc(started_at)).total_seconds()
    return math.ceil(elapsed / SECONDS_PER_DAY)


def evaluate(test: ABTestDefinition, sessions: Sequence[SessionRecord]) -> ABTestEvaluation:
    """
    Turn raw session records into per-variant statistics, a winner and
    recommendations.

    Pure and recomputed from scratch on every call; significance is always
    measured against the control picked by :func:`select_control_variant`.
    """
    stats_by_id = aggregate_sessions(sessions, test.variants)
    variants = [apply_rates(stats) for stats in stats_by_id.values()]

    control = select_control_variant(variants)
    if control is not None:
        for variant in variants:
            if variant.id != control.id:
                variant.significance_level = calculate_significance(control, variant)

    winner = select_winner(variants, control, test.status)

    total_sessions = len(sessions)
    total_conversions = sum(1 for session in sessions if session.converted)

    overview = ResultsOverview(
        total_sessions=total_sessions,
        total_conversions=total_conversions,
        overall_conversion_rate=calculate_conversion_rate(total_conversions, total_sessions),
        test_duration_days=calculate_duration_days(test.started_at, test.ended_at),
        traffic_split=dict(test.traffic_split or {}),
    )

    return ABTestEvaluation(
        test_id=test.id,
        status=test.status,
        statistical_significance=test.statistical_significance or 0,
        confidence_level=test.confidence_level or 0.95,
        variants=variants,
        winner=winner,
        recommendations=generate_recommendations(variants, winner, test.status),
        overview=overview,
    )
