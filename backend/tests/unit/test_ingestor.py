"""Tests for usage event ingestion."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from voxledger.domain.billing.limits import LimitStatus
from voxledger.domain.factory import build_identity_resolver, build_ingestor
from voxledger.domain.usage.events import UsageEvent
from voxledger.domain.usage.types import IngestOutcome
from voxledger.infrastructure.database.models.base import Base
from voxledger.infrastructure.database.models.identity import Platform
from voxledger.infrastructure.database.models.usage import (
    UnattributedEvent,
    UsageChannel,
    UsageRecord,
)
from voxledger.infrastructure.database.models.user import User
from voxledger.infrastructure.database.repositories.usage import (
    UnattributedEventRepository,
    UsageLedgerRepository,
    UsageSnapshotRepository,
)
from voxledger.shared.exceptions import ValidationError

RECEIVED_AT = datetime(2025, 1, 15, 12, 0, tzinfo=UTC)


@pytest.fixture
def make_event(event_payload):
    """Parse an event that ended just before it was received."""

    def _make_event(event_id, **kwargs) -> UsageEvent:
        kwargs.setdefault("ended_at", "2025-01-15T11:59:00Z")
        return UsageEvent.model_validate(event_payload(event_id, **kwargs))

    return _make_event


class TestIngestRecording:
    """Test the happy path into the ledger and snapshot."""

    async def test_call_ended_is_recorded(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        resolver = build_identity_resolver(async_session)
        await resolver.bind_assistant("asst-1", user.id, "Reception")
        ingestor = build_ingestor(async_session, test_settings)

        result = await ingestor.ingest(
            make_event("call-1", assistant_id="asst-1", duration_seconds=125),
            received_at=RECEIVED_AT,
        )

        assert result.outcome == IngestOutcome.RECORDED
        assert result.user_id == user.id
        assert result.minutes == 3
        assert result.channel == UsageChannel.ASSISTANT

        record = await UsageLedgerRepository(async_session).get_by_call_id("call-1")
        assert record is not None
        assert record.duration_minutes == 3
        assert record.billing_month == "2025-01"
        assert record.event_metadata["attribution"] == "assistant_owner"
        assert Decimal(str(record.cost)) == Decimal("0.15")

        snapshot = await UsageSnapshotRepository(async_session).get(user.id)
        assert snapshot is not None
        assert snapshot.monthly_minutes == 3
        assert snapshot.total_calls == 1

    async def test_event_cost_is_kept(self, make_event, async_session, make_user, test_settings):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)

        await ingestor.ingest(
            make_event("call-1", user_id=str(user.id), duration_seconds=60, cost="0.42"),
            received_at=RECEIVED_AT,
        )

        record = await UsageLedgerRepository(async_session).get_by_call_id("call-1")
        assert record is not None
        assert Decimal(str(record.cost)) == Decimal("0.42")

    async def test_workflow_execution_counts_as_workflow(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)

        result = await ingestor.ingest(
            make_event(
                "wf-1",
                event_type="WorkflowExecuted",
                user_id=str(user.id),
                duration_seconds=61,
            ),
            received_at=RECEIVED_AT,
        )

        assert result.channel == UsageChannel.WORKFLOW
        snapshot = await UsageSnapshotRepository(async_session).get(user.id)
        assert snapshot is not None
        assert snapshot.workflow_minutes == 2
        assert snapshot.assistant_minutes == 0

    async def test_call_started_is_observed_only(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)

        result = await ingestor.ingest(
            make_event("call-1", event_type="CallStarted", user_id=str(user.id)),
            received_at=RECEIVED_AT,
        )

        assert result.outcome == IngestOutcome.OBSERVED
        assert await UsageLedgerRepository(async_session).get_by_call_id("call-1") is None
        assert await UsageSnapshotRepository(async_session).get(user.id) is None

    async def test_zero_duration_records_zero_minutes(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)

        result = await ingestor.ingest(
            make_event("call-1", user_id=str(user.id), duration_seconds=0),
            received_at=RECEIVED_AT,
        )

        assert result.outcome == IngestOutcome.RECORDED
        assert result.minutes == 0


class TestIngestDeduplication:
    """Redelivered events are recorded once."""

    async def test_duplicate_delivery_counted_once(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)
        event = make_event("abc", user_id=str(user.id), duration_seconds=125)

        first = await ingestor.ingest(event, received_at=RECEIVED_AT)
        second = await ingestor.ingest(event, received_at=RECEIVED_AT)

        assert first.outcome == IngestOutcome.RECORDED
        assert second.outcome == IngestOutcome.DUPLICATE
        assert second.user_id == user.id

        totals = await UsageLedgerRepository(async_session).totals(user.id)
        assert totals.calls == 1
        snapshot = await UsageSnapshotRepository(async_session).get(user.id)
        assert snapshot is not None
        assert snapshot.monthly_minutes == 3

    async def test_duplicate_metric_incremented(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)
        event = make_event("abc", user_id=str(user.id), duration_seconds=10)
        labels = {"event_type": "CallEnded", "outcome": "duplicate"}
        before = REGISTRY.get_sample_value("voxledger_usage_events_total", labels) or 0.0

        await ingestor.ingest(event, received_at=RECEIVED_AT)
        await ingestor.ingest(event, received_at=RECEIVED_AT)

        after = REGISTRY.get_sample_value("voxledger_usage_events_total", labels)
        assert after == before + 1


class TestIngestAlerts:
    """Alerts fire when the limit status moves up."""

    async def test_alert_on_warning_and_exceeded(
        self, make_event, async_session, make_user, test_settings, alert_sink
    ):
        user = await make_user("FREE")
        ingestor = build_ingestor(async_session, test_settings, alert_sink)

        # 6 min: safe, 9 min: warning, 10 min: exceeded, 12 min: no new alert
        for call_id, seconds in [("c-1", 360), ("c-2", 180), ("c-3", 1), ("c-4", 120)]:
            await ingestor.ingest(
                make_event(call_id, user_id=str(user.id), duration_seconds=seconds),
                received_at=RECEIVED_AT,
            )
        await async_session.commit()
        await ingestor.publish_alerts()

        statuses = [alert.status for alert in alert_sink.alerts]
        assert statuses == [LimitStatus.WARNING, LimitStatus.EXCEEDED]
        warning = alert_sink.alerts[0]
        assert warning.previous_status == LimitStatus.SAFE
        assert warning.minutes_used == 9
        assert warning.monthly_limit == 10
        assert alert_sink.alerts[1].minutes_used == 10

    async def test_single_call_can_jump_to_exceeded(
        self, make_event, async_session, make_user, test_settings, alert_sink
    ):
        user = await make_user("FREE")
        ingestor = build_ingestor(async_session, test_settings, alert_sink)

        result = await ingestor.ingest(
            make_event("c-1", user_id=str(user.id), duration_seconds=900),
            received_at=RECEIVED_AT,
        )
        await async_session.commit()
        await ingestor.publish_alerts()

        assert result.alert is not None
        assert result.alert.status == LimitStatus.EXCEEDED
        assert result.alert.previous_status == LimitStatus.SAFE
        assert len(alert_sink.alerts) == 1

    async def test_no_alert_within_limits(
        self, make_event, async_session, make_user, test_settings, alert_sink
    ):
        user = await make_user("PRO")
        ingestor = build_ingestor(async_session, test_settings, alert_sink)

        await ingestor.ingest(
            make_event("c-1", user_id=str(user.id), duration_seconds=600),
            received_at=RECEIVED_AT,
        )
        await async_session.commit()

        assert await ingestor.publish_alerts() == []
        assert alert_sink.alerts == []

    async def test_alert_held_until_published(
        self, make_event, async_session, make_user, test_settings, alert_sink
    ):
        """Nothing reaches the sink while the usage is uncommitted."""
        user = await make_user("FREE")
        ingestor = build_ingestor(async_session, test_settings, alert_sink)

        result = await ingestor.ingest(
            make_event("c-1", user_id=str(user.id), duration_seconds=900),
            received_at=RECEIVED_AT,
        )

        assert result.alert is not None
        assert alert_sink.alerts == []

        await async_session.commit()
        published = await ingestor.publish_alerts()

        assert published == [result.alert]
        assert alert_sink.alerts == [result.alert]
        assert await ingestor.publish_alerts() == []

    async def test_rolled_back_usage_sends_no_alert(
        self, make_event, async_session, make_user, test_settings, alert_sink
    ):
        user = await make_user("FREE")
        ingestor = build_ingestor(async_session, test_settings, alert_sink)

        await ingestor.ingest(
            make_event("c-1", user_id=str(user.id), duration_seconds=900),
            received_at=RECEIVED_AT,
        )
        await async_session.rollback()

        assert alert_sink.alerts == []
        assert await UsageLedgerRepository(async_session).get_by_call_id("c-1") is None


class TestRecordGuards:
    async def test_untimed_event_cannot_be_recorded(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)
        event = UsageEvent.model_validate({"type": "CallEnded", "id": "c-1"})

        with pytest.raises(ValidationError):
            await ingestor._record(event, user.id, "internal_id")

        assert await UsageLedgerRepository(async_session).get_by_call_id("c-1") is None


class TestDuplicateAcrossSessions:
    """Redelivery handled by a different session, as with concurrent workers."""

    async def test_second_session_sees_duplicate(self, tmp_path, make_event, test_settings):
        engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)

        try:
            async with factory() as session:
                user = User(email="dup@example.com", name="Dup", plan="FREE")
                session.add(user)
                await session.commit()
                user_id = user.id

            event = make_event("abc", user_id=str(user_id), duration_seconds=125)
            outcomes = []
            for _ in range(2):
                async with factory() as session:
                    ingestor = build_ingestor(session, test_settings)
                    result = await ingestor.ingest(event, received_at=RECEIVED_AT)
                    await session.commit()
                    outcomes.append(result.outcome)

            async with factory() as session:
                rows = await session.scalar(
                    select(func.count())
                    .select_from(UsageRecord)
                    .where(UsageRecord.call_id == "abc")
                )
                snapshot = await UsageSnapshotRepository(session).get(user_id)
        finally:
            await engine.dispose()

        assert outcomes == [IngestOutcome.RECORDED, IngestOutcome.DUPLICATE]
        assert rows == 1
        assert snapshot is not None
        assert snapshot.monthly_minutes == 3
        assert snapshot.total_calls == 1


class TestUnattributedEvents:
    """Events without a resolvable owner are parked and retried."""

    async def test_unknown_assistant_is_parked(self, make_event, async_session, test_settings):
        ingestor = build_ingestor(async_session, test_settings)

        result = await ingestor.ingest(
            make_event("call-9", assistant_id="asst-ghost", duration_seconds=30),
            received_at=RECEIVED_AT,
        )

        assert result.outcome == IngestOutcome.UNATTRIBUTED
        assert result.reason == "unknown_assistant"
        parked = await UnattributedEventRepository(async_session).get_by_event_id("call-9")
        assert parked is not None
        assert parked.resolved_at is None
        assert parked.payload["endedAt"].startswith("2025-01-15T11:59:00")
        assert await UsageLedgerRepository(async_session).get_by_call_id("call-9") is None

    async def test_redelivered_unattributed_event_parked_once(
        self, make_event, async_session, test_settings
    ):
        ingestor = build_ingestor(async_session, test_settings)
        event = make_event("call-9", duration_seconds=30)

        await ingestor.ingest(event, received_at=RECEIVED_AT)
        await ingestor.ingest(event, received_at=RECEIVED_AT)

        pending = await UnattributedEventRepository(async_session).list_pending()
        assert [row.event_id for row in pending] == ["call-9"]
        assert pending[0].reason == "no_owner_hint"

    async def test_reconcile_records_once_owner_known(
        self, make_event, async_session, make_user, test_settings
    ):
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)
        await ingestor.ingest(
            make_event("call-9", user_id="vp-7", duration_seconds=125),
            received_at=RECEIVED_AT,
        )
        await ingestor.ingest(
            make_event("call-10", assistant_id="asst-still-unknown", duration_seconds=60),
            received_at=RECEIVED_AT,
        )
        await build_identity_resolver(async_session).bind(user.id, Platform.VOICE, "vp-7")

        report = await ingestor.reconcile_unattributed(now=RECEIVED_AT)

        assert report.as_dict() == {
            "checked": 2,
            "resolved": 1,
            "still_pending": 1,
            "failed": 0,
        }
        record = await UsageLedgerRepository(async_session).get_by_call_id("call-9")
        assert record is not None
        assert record.user_id == user.id
        assert record.duration_minutes == 3
        assert record.billing_month == "2025-01"

        parked = await UnattributedEventRepository(async_session).get_by_event_id("call-9")
        assert parked is not None
        assert parked.resolved_user_id == user.id
        pending = await UnattributedEventRepository(async_session).list_pending()
        assert [row.event_id for row in pending] == ["call-10"]

    async def test_reconcile_rotates_past_unresolvable_events(
        self, make_event, async_session, make_user, test_settings
    ):
        """Events that never resolve do not block newer ones behind the limit."""
        user = await make_user()
        ingestor = build_ingestor(async_session, test_settings)
        for call_id in ["a-1", "a-2", "a-3"]:
            await ingestor.ingest(
                make_event(call_id, assistant_id="never", duration_seconds=60),
                received_at=RECEIVED_AT,
            )
        await ingestor.ingest(
            make_event("z-later", assistant_id="later", duration_seconds=60),
            received_at=RECEIVED_AT,
        )
        await build_identity_resolver(async_session).bind_assistant("later", user.id)

        first = await ingestor.reconcile_unattributed(limit=3, now=RECEIVED_AT)
        second = await ingestor.reconcile_unattributed(
            limit=3, now=RECEIVED_AT + timedelta(hours=1)
        )

        assert first.as_dict() == {"checked": 3, "resolved": 0, "still_pending": 3, "failed": 0}
        assert second.resolved == 1
        assert await UsageLedgerRepository(async_session).get_by_call_id("z-later") is not None

        result = await async_session.execute(
            select(UnattributedEvent.event_id, UnattributedEvent.attempts)
            .where(UnattributedEvent.resolved_at.is_(None))
            .order_by(UnattributedEvent.event_id)
        )
        assert result.all() == [("a-1", 2), ("a-2", 2), ("a-3", 1)]

        pending = await UnattributedEventRepository(async_session).list_pending(limit=1)
        assert [row.event_id for row in pending] == ["a-3"]

    async def test_reconcile_with_nothing_pending(self, make_event, async_session, test_settings):
        ingestor = build_ingestor(async_session, test_settings)

        report = await ingestor.reconcile_unattributed()

        assert report.checked == 0
        assert report.resolved == 0
