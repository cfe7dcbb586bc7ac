import uuid
from typing import Any, Dict, Optional

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.growth_metric import GrowthMetric

logger = structlog.get_logger()


class GrowthTracker:
    """Records growth events (test created, completed, ...) for analytics."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def track(
        self,
        organization_id: str,
        metric_type: str,
        metric_value: float = 1,
        dimensions: Optional[Dict[str, Any]] = None,
    ) -> Optional[GrowthMetric]:
        """
        Persist a growth metric.

        Commits on its own. Failures are rolled back and logged, never raised.
        """
        metric = GrowthMetric(
            id=str(uuid.uuid4()),
            organization_id=organization_id,
            metric_type=metric_type,
            metric_value=metric_value,
            dimensions=dimensions or {},
        )

        try:
            self.db.add(metric)
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.warning(
                "growth_metric_failed",
                metric_type=metric_type,
                organization_id=organization_id,
                error=str(e),
            )
            return None

        return metric
