"""Tests for ledger aggregation and usage queries."""

from datetime import UTC, date, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from voxledger.domain.billing.limits import LimitStatus
from voxledger.domain.factory import (
    build_aggregator,
    build_identity_resolver,
    build_query_service,
    build_snapshot_service,
)
from voxledger.domain.usage.aggregator import group_daily
from voxledger.infrastructure.database.models.usage import UsageChannel, UsageRecord
from voxledger.shared.exceptions import NotFoundError, ValidationError


def _record(
    user_id,
    call_id,
    started_at,
    minutes,
    *,
    assistant_id=None,
    channel=UsageChannel.ASSISTANT,
    cost=None,
):
    return UsageRecord(
        user_id=user_id,
        call_id=call_id,
        assistant_id=assistant_id,
        channel=channel.value,
        started_at=started_at,
        ended_at=started_at + timedelta(minutes=minutes),
        duration_seconds=minutes * 60,
        duration_minutes=minutes,
        cost=cost if cost is not None else Decimal("0.05") * minutes,
        billing_month=f"{started_at.year:04d}-{started_at.month:02d}",
        event_metadata={},
    )


@pytest.fixture
async def january_ledger(async_session, make_user):
    """A STARTER user with five January calls and one in December."""
    user = await make_user("STARTER", subscription_started_at=datetime(2025, 1, 10, tzinfo=UTC))
    resolver = build_identity_resolver(async_session)
    await resolver.bind_assistant("asst-a", user.id, "Sales line")
    await resolver.bind_assistant("asst-b", user.id)
    async_session.add_all(
        [
            _record(user.id, "c-1", datetime(2025, 1, 2, 9, tzinfo=UTC), 3, assistant_id="asst-a"),
            _record(user.id, "c-2", datetime(2025, 1, 2, 17, tzinfo=UTC), 2, assistant_id="asst-b"),
            _record(user.id, "c-3", datetime(2025, 1, 12, 8, tzinfo=UTC), 5, assistant_id="asst-a"),
            _record(
                user.id,
                "w-1",
                datetime(2025, 1, 31, 23, 59, 59, tzinfo=UTC),
                4,
                channel=UsageChannel.WORKFLOW,
            ),
            _record(user.id, "c-4", datetime(2025, 2, 10, 8, tzinfo=UTC), 7, assistant_id="asst-b"),
            _record(user.id, "c-0", datetime(2024, 12, 31, 23, 59, tzinfo=UTC), 1),
        ]
    )
    await async_session.commit()
    return user


class TestGroupDaily:
    """Test in-memory day grouping."""

    def test_groups_by_utc_start_date(self):
        user_id = uuid4()
        records = [
            _record(user_id, "b", datetime(2025, 1, 3, 1, tzinfo=UTC), 2),
            _record(user_id, "a", datetime(2025, 1, 2, 23, tzinfo=UTC), 1),
            _record(user_id, "c", datetime(2025, 1, 3, 22, tzinfo=UTC), 4),
        ]

        days = group_daily(records)

        assert [day.date for day in days] == [date(2025, 1, 2), date(2025, 1, 3)]
        assert days[1].minutes == 6
        assert days[1].calls == 2
        assert days[1].cost == Decimal("0.30")

    def test_empty(self):
        assert group_daily([]) == []


class TestUsageAggregator:
    """Test ledger projections."""

    async def test_month_totals(self, async_session, january_ledger):
        totals = await build_aggregator(async_session).aggregate_month(january_ledger.id, "2025-01")

        assert totals.minutes == 14
        assert totals.calls == 4
        assert totals.assistant_minutes == 10
        assert totals.workflow_minutes == 4
        assert totals.cost == Decimal("0.70")

    async def test_daily_breakdown(self, async_session, january_ledger):
        days = await build_aggregator(async_session).aggregate_daily(january_ledger.id, "2025-01")

        assert [(day.date, day.minutes, day.calls) for day in days] == [
            (date(2025, 1, 2), 5, 2),
            (date(2025, 1, 12), 5, 1),
            (date(2025, 1, 31), 4, 1),
        ]

    async def test_daily_and_month_totals_agree(self, async_session, january_ledger):
        aggregator = build_aggregator(async_session)

        days = await aggregator.aggregate_daily(january_ledger.id, "2025-01")
        totals = await aggregator.aggregate_month(january_ledger.id, "2025-01")

        assert sum(day.minutes for day in days) == totals.minutes
        assert sum(day.calls for day in days) == totals.calls

    async def test_breakdown_by_assistant(self, async_session, january_ledger):
        entries = await build_aggregator(async_session).aggregate_by_channel_entity(
            january_ledger.id, "2025-01"
        )

        assert [(e.assistant_id, e.assistant_name, e.minutes, e.calls) for e in entries] == [
            ("asst-a", "Sales line", 8, 2),
            ("asst-b", None, 2, 1),
        ]

    async def test_lifetime(self, async_session, january_ledger):
        totals = await build_aggregator(async_session).aggregate_lifetime(january_ledger.id)

        assert totals.minutes == 22
        assert totals.calls == 6

    async def test_range_rejects_reversed_window(self, async_session, january_ledger):
        with pytest.raises(ValidationError):
            await build_aggregator(async_session).aggregate_range(
                january_ledger.id,
                datetime(2025, 2, 1, tzinfo=UTC),
                datetime(2025, 1, 1, tzinfo=UTC),
            )

    async def test_first_billing_period(self, async_session, january_ledger):
        """Jan 10 through Feb 10 (exclusive) holds c-3, w-1 but not c-4."""
        totals = await build_aggregator(async_session).aggregate_first_billing_period(
            january_ledger.id
        )

        assert totals.minutes == 9
        assert totals.calls == 2

    async def test_first_billing_period_requires_start(self, async_session, make_user):
        user = await make_user()

        with pytest.raises(ValidationError):
            await build_aggregator(async_session).aggregate_first_billing_period(user.id)

    async def test_unknown_user_has_empty_totals(self, async_session):
        totals = await build_aggregator(async_session).aggregate_lifetime(uuid4())

        assert totals.minutes == 0
        assert totals.cost == Decimal("0.00")


class TestUsageQueryService:
    """Test the dashboard-facing query surface."""

    async def test_past_month_derived_from_ledger(
        self, async_session, january_ledger, test_settings
    ):
        service = build_query_service(async_session, test_settings)

        view = await service.get_usage(
            january_ledger.id, "2025-01", now=datetime(2025, 3, 1, tzinfo=UTC)
        )

        assert view.billing_month == "2025-01"
        assert view.monthly_minutes == 14
        assert view.total_calls == 4
        assert view.last_activity_date == datetime(2025, 2, 1, 0, 3, 59, tzinfo=UTC)

    async def test_current_month_read_from_snapshot(
        self, async_session, make_user, test_settings
    ):
        user = await make_user()
        now = datetime(2025, 1, 20, tzinfo=UTC)
        await build_snapshot_service(async_session).record(
            user.id,
            billing_month="2025-01",
            minutes=4,
            channel=UsageChannel.ASSISTANT,
            activity_at=now,
            now=now,
        )

        view = await build_query_service(async_session, test_settings).get_usage(user.id, now=now)

        assert view.billing_month == "2025-01"
        assert view.monthly_minutes == 4

    async def test_unknown_user_not_found(self, async_session, test_settings):
        service = build_query_service(async_session, test_settings)

        with pytest.raises(NotFoundError):
            await service.get_usage(uuid4())
        with pytest.raises(NotFoundError):
            await service.get_limit_status(uuid4())

    async def test_limit_status(self, async_session, make_user, test_settings):
        user = await make_user("FREE")
        now = datetime(2025, 1, 20, 15, tzinfo=UTC)
        async_session.add(_record(user.id, "c-1", datetime(2025, 1, 20, 9, tzinfo=UTC), 2))
        await async_session.flush()
        await build_snapshot_service(async_session).record(
            user.id,
            billing_month="2025-01",
            minutes=9,
            channel=UsageChannel.ASSISTANT,
            activity_at=now,
            now=now,
        )

        report = await build_query_service(async_session, test_settings).get_limit_status(
            user.id, now=now
        )

        assert report.evaluation.status == LimitStatus.WARNING
        assert report.evaluation.minutes_remaining == 1
        assert report.daily_minutes_used == 2
        assert report.daily_limit_reached is True
        assert report.estimated_billing.total_cost == Decimal("0.45")
        assert report.as_dict()["status"] == "warning"
