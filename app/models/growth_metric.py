from sqlalchemy import JSON, Column, DateTime, Float, String
from sqlalchemy.sql import func

from app.core.database import Base


class GrowthMetric(Base):
    __tablename__ = "growth_metrics"

    id = Column(String, primary_key=True)
    organization_id = Column(String, nullable=False, index=True)
    metric_type = Column(String(100), nullable=False)  # e.g. "ab_test_created"
    metric_value = Column(Float, nullable=False, default=0)
    dimensions = Column(JSON)

    recorded_at = Column(DateTime(timezone=True), server_default=func.now())
