import enum

from sqlalchemy import JSON, Boolean, Column, DateTime
from sqlalchemy import Enum as SQLEnum
from sqlalchemy import Float, ForeignKey, String, Text, UniqueConstraint
from sqlalchemy.sql import func

from app.core.database import Base


class ABTestStatus(str, enum.Enum):
    """Lifecycle of an A/B test."""

    DRAFT = "draft"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class ABTest(Base):
    """
    An A/B test owned by an organization.

    Variants are stored inline as a JSON list of ``{id, name, config,
    traffic_percentage}`` objects and ``traffic_split`` maps each variant id
    to the share of traffic (percent) it receives.
    """

    __tablename__ = "ab_tests"

    id = Column(String, primary_key=True)
    organization_id = Column(String, nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text)
    hypothesis = Column(Text)
    target_metric = Column(String(100), nullable=False)  # e.g. "signup_rate"

    variants = Column(JSON, nullable=False, default=list)
    traffic_split = Column(JSON, nullable=False, default=dict)

    status = Column(SQLEnum(ABTestStatus), default=ABTestStatus.DRAFT, index=True)
    confidence_level = Column(Float, default=0.95)
    statistical_significance = Column(Float)
    winner_variant = Column(String(10))

    started_at = Column(DateTime(timezone=True))
    ended_at = Column(DateTime(timezone=True))

    results = Column(JSON, default=dict)

    created_by = Column(String)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ABTestSession(Base):
    """One visitor exposure: the variant a session was bucketed into."""

    __tablename__ = "ab_test_sessions"
    __table_args__ = (UniqueConstraint("ab_test_id", "session_id", name="uq_ab_test_session"),)

    id = Column(String, primary_key=True)
    ab_test_id = Column(
        String, ForeignKey("ab_tests.id", ondelete="CASCADE"), nullable=False, index=True
    )
    session_id = Column(String(255), nullable=False)  # anonymous visitor session
    user_id = Column(String)

    variant_id = Column(String(10), nullable=False)
    converted = Column(Boolean, default=False, nullable=False)
    conversion_event = Column(String(100))
    conversion_value = Column(Float)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
