from app.models.ab_test import ABTest, ABTestSession, ABTestStatus  # noqa: F401
from app.models.growth_metric import GrowthMetric  # noqa: F401
from app.models.organization import (  # noqa: F401
    ADMIN_ROLES,
    WRITE_ROLES,
    MemberRole,
    OrganizationMember,
)
