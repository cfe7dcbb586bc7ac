import uuid
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.ab_test import ABTest, ABTestSession, ABTestStatus
from app.models.schemas import (
    CompleteABTestRequest,
    CreateABTestRequest,
    UpdateABTestRequest,
)
from app.services.ab_testing.assignment import assign_variant, roll_traffic
from app.services.ab_testing.exceptions import (
    ABTestNotRunning,
    InvalidStatusTransition,
    RunningTestDeletion,
)
from app.services.ab_testing.stats import (
    ABTestDefinition,
    ABTestEvaluation,
    SessionRecord,
    VariantDefinition,
    aggregate_sessions,
    apply_rates,
    evaluate,
)
from app.services.analytics.tracking import GrowthTracker

logger = structlog.get_logger()

VALID_TRANSITIONS: Dict[ABTestStatus, List[ABTestStatus]] = {
    ABTestStatus.DRAFT: [ABTestStatus.RUNNING, ABTestStatus.ARCHIVED],
    ABTestStatus.RUNNING: [ABTestStatus.PAUSED, ABTestStatus.COMPLETED],
    ABTestStatus.PAUSED: [ABTestStatus.RUNNING, ABTestStatus.COMPLETED],
    ABTestStatus.COMPLETED: [],
    ABTestStatus.ARCHIVED: [],
}


def to_definition(test: ABTest) -> ABTestDefinition:
    return ABTestDefinition(
        id=test.id,
        status=test.status.value,
        variants=[
            VariantDefinition(
                id=variant["id"],
                name=variant["name"],
                traffic_percentage=variant.get("traffic_percentage"),
            )
            for variant in test.variants or []
        ],
        traffic_split=test.traffic_split or {},
        started_at=test.started_at,
        ended_at=test.ended_at,
        statistical_significance=test.statistical_significance,
        confidence_level=test.confidence_level,
    )


def to_records(sessions: Sequence[ABTestSession]) -> List[SessionRecord]:
    return [
        SessionRecord(
            variant_id=session.variant_id,
            converted=bool(session.converted),
            conversion_value=session.conversion_value,
            created_at=session.created_at,
        )
        for session in sessions
    ]


class ABTestService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.tracker = GrowthTracker(db)

    async def create_test(self, request: CreateABTestRequest, user_id: str) -> ABTest:
        test = ABTest(
            id=str(uuid.uuid4()),
            organization_id=request.organization_id,
            name=request.name,
            description=request.description,
            hypothesis=request.hypothesis,
            target_metric=request.target_metric,
            variants=[variant.model_dump() for variant in request.variants],
            traffic_split=dict(request.traffic_split),
            confidence_level=request.confidence_level,
            status=ABTestStatus.DRAFT,
            results={},
            created_by=user_id,
        )

        self.db.add(test)
        await self.db.commit()

        logger.info("ab_test_created", test_id=test.id, organization_id=test.organization_id)
        await self.tracker.track(
            test.organization_id,
            "ab_test_created",
            dimensions={
                "test_id": test.id,
                "target_metric": request.target_metric,
                "variants_count": len(request.variants),
                "user_id": user_id,
            },
        )

        await self.db.refresh(test)
        return test

    async def get_test(self, test_id: str) -> Optional[ABTest]:
        result = await self.db.execute(select(ABTest).where(ABTest.id == test_id))
        return result.scalar_one_or_none()

    async def list_tests(
        self,
        organization_id: str,
        status: Optional[ABTestStatus] = None,
        limit: int = 50,
        offset: int = 0,
        search: Optional[str] = None,
    ) -> Tuple[List[ABTest], int]:
        filters = [ABTest.organization_id == organization_id]
        if status:
            filters.append(ABTest.status == status)
        if search:
            filters.append(ABTest.name.ilike(f"%{search}%"))

        total = await self.db.scalar(select(func.count()).select_from(ABTest).where(*filters))

        query = (
            select(ABTest)
            .where(*filters)
            .order_by(ABTest.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total or 0

    async def get_sessions(self, test_id: str) -> List[ABTestSession]:
        result = await self.db.execute(
            select(ABTestSession)
            .where(ABTestSession.ab_test_id == test_id)
            .order_by(ABTestSession.created_at.asc())
        )
        return list(result.scalars().all())

    async def get_variant_summary(self, test: ABTest) -> Tuple[Dict[str, Dict[str, Any]], int]:
        sessions = await self.get_sessions(test.id)
        definition = to_definition(test)

        summary = {}
        aggregated = aggregate_sessions(to_records(sessions), definition.variants)
        for variant_id, stats in aggregated.items():
            apply_rates(stats)
            summary[variant_id] = {
                "sessions": stats.sessions,
                "conversions": stats.conversions,
                "conversion_rate": stats.conversion_rate,
            }

        return summary, len(sessions)

    def _change_status(self, test: ABTest, new_status: ABTestStatus) -> ABTestStatus:
        """Validate and apply a status change, stamping start/end times."""
        current = test.status
        if new_status == current:
            return current

        allowed = VALID_TRANSITIONS.get(current, [])
        if new_status not in allowed:
            raise InvalidStatusTransition(
                current.value, new_status.value, [status.value for status in allowed]
            )

        now = datetime.now(timezone.utc)
        if new_status == ABTestStatus.RUNNING and current == ABTestStatus.DRAFT:
            test.started_at = now
        elif new_status == ABTestStatus.COMPLETED:
            test.ended_at = now

        test.status = new_status
        return current

    async def _track_status_change(
        self, test: ABTest, previous: ABTestStatus, user_id: str
    ) -> None:
        if previous == test.status:
            return

        logger.info(
            "ab_test_status_changed",
            test_id=test.id,
            from_status=previous.value,
            to_status=test.status.value,
        )
        await self.tracker.track(
            test.organization_id,
            "ab_test_status_changed",
            dimensions={
                "test_id": test.id,
                "from_status": previous.value,
                "to_status": test.status.value,
                "user_id": user_id,
            },
        )

    async def update_test(
        self, test: ABTest, request: UpdateABTestRequest, user_id: str
    ) -> ABTest:
        previous = test.status
        if request.status is not None:
            self._change_status(test, request.status)

        if request.name is not None:
            test.name = request.name
        if request.description is not None:
            test.description = request.description
        if request.hypothesis is not None:
            test.hypothesis = request.hypothesis
        if request.results is not None:
            test.results = request.results
        if request.winner_variant is not None:
            test.winner_variant = request.winner_variant
        if request.statistical_significance is not None:
            test.statistical_significance = request.statistical_significance

        await self.db.commit()
        await self._track_status_change(test, previous, user_id)

        await self.db.refresh(test)
        return test

    async def start_test(self, test: ABTest, user_id: str) -> ABTest:
        if test.status != ABTestStatus.DRAFT:
            raise InvalidStatusTransition(
                test.status.value,
                ABTestStatus.RUNNING.value,
                [status.value for status in VALID_TRANSITIONS[test.status]],
            )

        previous = self._change_status(test, ABTestStatus.RUNNING)
        await self.db.commit()
        await self._track_status_change(test, previous, user_id)

        await self.db.refresh(test)
        return test

    async def stop_test(self, test: ABTest, user_id: str) -> ABTest:
        """Complete a running test and store its final evaluation."""
        if test.status != ABTestStatus.RUNNING:
            raise InvalidStatusTransition(
                test.status.value,
                ABTestStatus.COMPLETED.value,
                [status.value for status in VALID_TRANSITIONS[test.status]],
            )

        previous = self._change_status(test, ABTestStatus.COMPLETED)

        sessions = await self.get_sessions(test.id)
        evaluation = evaluate(to_definition(test), to_records(sessions))
        winner = evaluation.winner

        test.results = asdict(evaluation)
        test.winner_variant = winner.variant_id if winner else None
        test.statistical_significance = winner.confidence_level if winner else 0

        completion = {
            "test_id": test.id,
            "winner_variant": test.winner_variant,
            "user_id": user_id,
            "has_winner": winner is not None,
        }
        organization_id = test.organization_id
        significance = test.statistical_significance

        await self.db.commit()
        await self._track_status_change(test, previous, user_id)
        await self.tracker.track(
            organization_id, "ab_test_completed", metric_value=significance, dimensions=completion
        )

        await self.db.refresh(test)
        return test

    async def complete_test(
        self, test: ABTest, request: CompleteABTestRequest, user_id: str
    ) -> ABTest:
        """Record a manually chosen verdict and complete the test."""
        self._change_status(test, ABTestStatus.COMPLETED)

        completed_at = datetime.now(timezone.utc)
        test.statistical_significance = request.statistical_significance
        test.winner_variant = request.winner_variant
        test.results = {
            "completed_by": user_id,
            "completed_at": completed_at.isoformat(),
            "notes": request.notes,
            "winner_variant": request.winner_variant,
            "statistical_significance": request.statistical_significance,
        }

        await self.db.commit()

        logger.info("ab_test_completed", test_id=test.id, winner_variant=request.winner_variant)
        await self.tracker.track(
            test.organization_id,
            "ab_test_completed",
            metric_value=request.statistical_significance or 0,
            dimensions={
                "test_id": test.id,
                "winner_variant": request.winner_variant,
                "user_id": user_id,
                "has_winner": bool(request.winner_variant),
            },
        )

        await self.db.refresh(test)
        return test

    async def _remove(self, test_id: str) -> None:
        await self.db.execute(delete(ABTestSession).where(ABTestSession.ab_test_id == test_id))
        await self.db.execute(delete(ABTest).where(ABTest.id == test_id))
        await self.db.commit()

    async def delete_test(self, test: ABTest, user_id: str) -> None:
        if test.status == ABTestStatus.RUNNING:
            raise RunningTestDeletion([{"id": test.id, "name": test.name}])

        test_id = test.id
        organization_id = test.organization_id
        dimensions = {
            "test_id": test_id,
            "test_name": test.name,
            "test_status": test.status.value,
            "user_id": user_id,
        }

        await self._remove(test_id)

        logger.info("ab_test_deleted", test_id=test_id)
        await self.tracker.track(organization_id, "ab_test_deleted", dimensions=dimensions)

    async def batch_delete(
        self, organization_id: str, test_ids: Sequence[str], user_id: str
    ) -> Optional[List[Dict[str, Any]]]:
        """
        Delete several tests of one organization.

        Returns None when none of the ids belong to the organization. Refuses
        the whole batch if any of the tests is running.
        """
        result = await self.db.execute(
            select(ABTest).where(ABTest.id.in_(test_ids), ABTest.organization_id == organization_id)
        )
        tests = list(result.scalars().all())
        if not tests:
            return None

        running = [
            {"id": test.id, "name": test.name}
            for test in tests
            if test.status == ABTestStatus.RUNNING
        ]
        if running:
            raise RunningTestDeletion(running)

        # A failed delete rolls back and expires the remaining objects
        targets = [(test.id, test.name) for test in tests]

        outcomes = []
        for test_id, name in targets:
            try:
                await self._remove(test_id)
                outcomes.append({"id": test_id, "name": name, "success": True, "error": None})
            except SQLAlchemyError as e:
                await self.db.rollback()
                logger.error("ab_test_delete_failed", test_id=test_id, error=str(e))
                outcomes.append({"id": test_id, "name": name, "success": False, "error": str(e)})

        successful = sum(1 for outcome in outcomes if outcome["success"])
        if successful > 0:
            await self.tracker.track(
                organization_id,
                "ab_tests_deleted",
                metric_value=successful,
                dimensions={"total_attempted": len(tests), "user_id": user_id},
            )

        return outcomes

    async def _find_session(self, test_id: str, session_id: str) -> Optional[ABTestSession]:
        result = await self.db.execute(
            select(ABTestSession).where(
                ABTestSession.ab_test_id == test_id, ABTestSession.session_id == session_id
            )
        )
        return result.scalar_one_or_none()

    async def track_session(
        self, test: ABTest, session_id: str, user_id: Optional[str] = None
    ) -> ABTestSession:
        """
        Bucket a visitor session into a variant.

        A session keeps the variant it was first assigned. New sessions are
        only accepted while the test is running.
        """
        test_id = test.id
        existing = await self._find_session(test_id, session_id)
        if existing:
            return existing

        if test.status != ABTestStatus.RUNNING:
            raise ABTestNotRunning(test_id)

        definition = to_definition(test)
        variant_id = assign_variant(definition.traffic_split, definition.variants, roll_traffic())

        session = ABTestSession(
            id=str(uuid.uuid4()),
            ab_test_id=test_id,
            session_id=session_id,
            user_id=user_id,
            variant_id=variant_id,
            converted=False,
        )
        self.db.add(session)

        try:
            await self.db.commit()
        except IntegrityError:
            # Another request assigned this session first
            await self.db.rollback()
            existing = await self._find_session(test_id, session_id)
            if existing is None:
                raise
            return existing

        await self.db.refresh(session)
        logger.info(
            "ab_test_session_assigned",
            test_id=test_id,
            session_id=session_id,
            variant_id=variant_id,
        )
        return session

    async def track_conversion(
        self,
        test_id: str,
        session_id: str,
        conversion_event: Optional[str] = None,
        conversion_value: Optional[float] = None,
    ) -> Optional[ABTestSession]:
        session = await self._find_session(test_id, session_id)
        if not session:
            return None

        session.converted = True
        session.conversion_event = conversion_event
        session.conversion_value = conversion_value

        await self.db.commit()
        await self.db.refresh(session)

        logger.info(
            "ab_test_conversion_tracked",
            test_id=test_id,
            session_id=session_id,
            variant_id=session.variant_id,
        )
        return session

    async def get_results(self, test: ABTest) -> Tuple[ABTestEvaluation, List[ABTestSession]]:
        sessions = await self.get_sessions(test.id)
        return evaluate(to_definition(test), to_records(sessions)), sessions
