"""
A/B testing service module.

This module provides:
- Statistical evaluation of A/B tests (z-test, confidence intervals, winner)
- Traffic-split based variant assignment
- Test management (create, update, lifecycle, session tracking)
"""

from app.services.ab_testing.assignment import assign_variant
from app.services.ab_testing.service import ABTestService
from app.services.ab_testing.stats import (
    aggregate_sessions,
    apply_rates,
    calculate_significance,
    evaluate,
    generate_recommendations,
    normal_cdf,
    select_control_variant,
    select_winner,
)

__all__ = [
    "aggregate_sessions",
    "apply_rates",
    "normal_cdf",
    "calculate_significance",
    "select_control_variant",
    "select_winner",
    "generate_recommendations",
    "evaluate",
    "assign_variant",
    "ABTestService",
]
