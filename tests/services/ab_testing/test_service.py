import uuid

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.models.ab_test import ABTestSession, ABTestStatus
from app.models.growth_metric import GrowthMetric
from app.models.schemas import CreateABTestRequest, UpdateABTestRequest
from app.services.ab_testing.exceptions import ABTestNotRunning, InvalidStatusTransition
from app.services.ab_testing.service import ABTestService


def _request(**overrides):
    data = {
        "organization_id": "org-acme",
        "name": "Pricing headline",
        "target_metric": "signup_rate",
        "variants": [{"id": "A", "name": "Current"}, {"id": "B", "name": "Bold"}],
        "traffic_split": {"A": 50, "B": 50},
    }
    data.update(overrides)
    return CreateABTestRequest(**data)


async def _metric_types(db):
    result = await db.execute(select(GrowthMetric.metric_type).order_by(GrowthMetric.recorded_at))
    return list(result.scalars().all())


class TestABTestService:
    @pytest.mark.asyncio
    async def test_lifecycle_records_growth_metrics(self, db_session):
        service = ABTestService(db_session)

        test = await service.create_test(_request(), "owner-1")
        await service.start_test(test, "owner-1")
        await service.stop_test(test, "owner-1")

        types = await _metric_types(db_session)
        assert types.count("ab_test_created") == 1
        assert types.count("ab_test_status_changed") == 2
        assert types.count("ab_test_completed") == 1

    @pytest.mark.asyncio
    async def test_status_change_stamps_times(self, db_session):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")

        test = await service.update_test(
            test, UpdateABTestRequest(status=ABTestStatus.RUNNING), "owner-1"
        )
        assert test.started_at is not None
        assert test.ended_at is None

        test = await service.update_test(
            test, UpdateABTestRequest(status=ABTestStatus.COMPLETED), "owner-1"
        )
        assert test.status == ABTestStatus.COMPLETED
        assert test.ended_at is not None

    @pytest.mark.asyncio
    async def test_same_status_is_a_no_op(self, db_session):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")

        test = await service.update_test(
            test, UpdateABTestRequest(status=ABTestStatus.DRAFT), "owner-1"
        )

        assert test.status == ABTestStatus.DRAFT
        assert "ab_test_status_changed" not in await _metric_types(db_session)

    @pytest.mark.asyncio
    async def test_invalid_transition_lists_valid_ones(self, db_session):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")

        with pytest.raises(InvalidStatusTransition) as exc_info:
            await service.update_test(
                test, UpdateABTestRequest(status=ABTestStatus.PAUSED), "owner-1"
            )

        assert exc_info.value.valid_transitions == ["running", "archived"]

    @pytest.mark.asyncio
    async def test_session_requires_running_test(self, db_session):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")

        with pytest.raises(ABTestNotRunning):
            await service.track_session(test, "visitor-1")

    @pytest.mark.asyncio
    async def test_sessions_feed_results(self, db_session, monkeypatch):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")
        test = await service.start_test(test, "owner-1")

        monkeypatch.setattr("app.services.ab_testing.service.roll_traffic", lambda: 75.0)
        session = await service.track_session(test, "visitor-1", user_id="u-1")
        await service.track_conversion(test.id, "visitor-1", "signup", 12.5)

        evaluation, sessions = await service.get_results(test)

        assert session.variant_id == "B"
        assert len(sessions) == 1
        by_id = {v.id: v for v in evaluation.variants}
        assert by_id["B"].conversions == 1
        assert by_id["B"].total_conversion_value == 12.5
        assert by_id["A"].sessions == 0

    @pytest.mark.asyncio
    async def test_conversion_for_unknown_session(self, db_session):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")

        assert await service.track_conversion(test.id, "nobody") is None

    @pytest.mark.asyncio
    async def test_concurrent_assignment_returns_stored_variant(self, db_session, monkeypatch):
        service = ABTestService(db_session)
        test = await service.create_test(_request(), "owner-1")
        test = await service.start_test(test, "owner-1")

        # Another request stored the assignment after our lookup missed it
        db_session.add(
            ABTestSession(
                id=str(uuid.uuid4()),
                ab_test_id=test.id,
                session_id="visitor-1",
                variant_id="A",
                converted=False,
            )
        )
        await db_session.commit()

        find_session = service._find_session
        lookups = []

        async def first_lookup_misses(test_id, session_id):
            lookups.append(session_id)
            if len(lookups) == 1:
                return None
            return await find_session(test_id, session_id)

        monkeypatch.setattr(service, "_find_session", first_lookup_misses)
        monkeypatch.setattr("app.services.ab_testing.service.roll_traffic", lambda: 90.0)

        test_id = test.id
        session = await service.track_session(test, "visitor-1")

        assert session.variant_id == "A"
        assert len(lookups) == 2
        sessions = await service.get_sessions(test_id)
        assert len(sessions) == 1

    @pytest.mark.asyncio
    async def test_growth_metric_failure_does_not_fail_the_operation(
        self, db_session, monkeypatch
    ):
        service = ABTestService(db_session)
        commit = db_session.commit
        commits = []

        async def metric_commit_fails():
            commits.append(1)
            # The first commit stores the test, the second the growth metric
            if len(commits) == 2:
                raise SQLAlchemyError("growth_metrics unavailable")
            await commit()

        monkeypatch.setattr(db_session, "commit", metric_commit_fails)

        test = await service.create_test(_request(), "owner-1")

        assert test.status == ABTestStatus.DRAFT
        assert (await service.get_test(test.id)) is not None
        assert await _metric_types(db_session) == []
