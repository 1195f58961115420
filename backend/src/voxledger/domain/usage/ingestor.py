"""Usage event ingestion.

Turns verified call and workflow events into ledger records. Each event is
attributed to a user, written to the ledger at most once (keyed by its id),
and counted in the user's snapshot in the same transaction. Events whose
owner cannot be resolved are parked in unattributed_events and retried by
``reconcile_unattributed``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import ValidationError as PydanticValidationError

from voxledger.config import Settings
from voxledger.domain.billing.calculator import to_currency
from voxledger.domain.billing.limits import evaluate_minutes, limits_for, status_for
from voxledger.domain.identity.resolver import IdentityResolver
from voxledger.domain.usage.alerts import AlertSink, LoggingAlertSink
from voxledger.domain.usage.events import EventType, UsageEvent
from voxledger.domain.usage.snapshots import SnapshotChange, SnapshotService
from voxledger.domain.usage.types import (
    IngestOutcome,
    IngestResult,
    UsageAlert,
    duration_minutes,
)
from voxledger.infrastructure.database.repositories.usage import (
    UnattributedEventRepository,
    UsageLedgerRepository,
)
from voxledger.infrastructure.database.repositories.user import UserRepository
from voxledger.observability.metrics import UNATTRIBUTED_EVENTS, USAGE_EVENTS, USAGE_MINUTES
from voxledger.shared.exceptions import StorageError, ValidationError
from voxledger.shared.logging import bind_event_context, get_logger
from voxledger.shared.periods import billing_month_of, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class ReconcileReport:
    """Outcome of one pass over pending unattributed events."""

    checked: int
    resolved: int
    still_pending: int
    failed: int

    def as_dict(self) -> dict[str, int]:
        return {
            "checked": self.checked,
            "resolved": self.resolved,
            "still_pending": self.still_pending,
            "failed": self.failed,
        }


class UsageEventIngestor:
    """Accept usage events and record them in the ledger."""

    def __init__(
        self,
        resolver: IdentityResolver,
        ledger_repo: UsageLedgerRepository,
        snapshots: SnapshotService,
        unattributed_repo: UnattributedEventRepository,
        user_repo: UserRepository,
        settings: Settings,
        alert_sink: AlertSink | None = None,
    ) -> None:
        self.resolver = resolver
        self.ledger_repo = ledger_repo
        self.snapshots = snapshots
        self.unattributed_repo = unattributed_repo
        self.user_repo = user_repo
        self.settings = settings
        self.alert_sink = alert_sink or LoggingAlertSink()
        self._pending_alerts: list[UsageAlert] = []

    async def ingest(
        self,
        event: UsageEvent,
        received_at: datetime | None = None,
    ) -> IngestResult:
        """Process one event and report how it was acknowledged.

        Never raises for an unknown owner or a redelivered id; those are
        normal outcomes. Storage failures propagate so the caller can retry.
        """
        bind_event_context(event_id=event.id, event_type=event.type.value)

        if not event.is_billable:
            logger.info("call_started", assistant_id=event.assistant_id)
            USAGE_EVENTS.labels(event_type=event.type.value, outcome="observed").inc()
            return IngestResult(outcome=IngestOutcome.OBSERVED, event_id=event.id)

        timed = event.with_timing(received_at or utcnow())
        user_id, source = await self.resolver.resolve_event_owner(
            timed.assistant_id,
            timed.metadata.user_id,
        )

        if user_id is None:
            return await self._park(timed, reason=source)

        bind_event_context(user_id=str(user_id))
        return await self._record(timed, user_id, source)

    async def _park(self, event: UsageEvent, *, reason: str) -> IngestResult:
        stored = await self.unattributed_repo.insert_if_absent(
            event_id=event.id,
            event_type=event.type.value,
            reason=reason,
            payload=event.to_payload(),
        )
        logger.warning(
            "unattributed_event",
            reason=reason,
            assistant_id=event.assistant_id,
            metadata_user_id=event.metadata.user_id,
            first_delivery=stored,
        )
        UNATTRIBUTED_EVENTS.labels(reason=reason).inc()
        USAGE_EVENTS.labels(event_type=event.type.value, outcome="unattributed").inc()
        return IngestResult(
            outcome=IngestOutcome.UNATTRIBUTED,
            event_id=event.id,
            reason=reason,
        )

    def _cost_for(self, event: UsageEvent, minutes: int) -> Decimal:
        if event.cost is not None:
            return event.cost
        return to_currency(Decimal(minutes) * self.settings.rate_for_channel(event.channel.value))

    def _metadata_for(self, event: UsageEvent, source: str) -> dict[str, Any]:
        metadata = event.metadata.model_dump(mode="json", by_alias=True, exclude_none=True)
        metadata["attribution"] = source
        if event.ended_reason:
            metadata["endedReason"] = event.ended_reason
        return metadata

    async def _record(self, event: UsageEvent, user_id: UUID, source: str) -> IngestResult:
        """Write a timed, attributed event to the ledger and the snapshot."""
        if event.started_at is None or event.ended_at is None or event.duration_seconds is None:
            raise ValidationError(
                "Event timing must be resolved before recording",
                details={"event_id": event.id},
            )

        minutes = duration_minutes(event.duration_seconds)
        channel = event.channel
        billing_month = billing_month_of(event.started_at)

        record_id = await self.ledger_repo.insert_if_absent(
            {
                "user_id": user_id,
                "call_id": event.id,
                "assistant_id": event.assistant_id,
                "channel": channel.value,
                "started_at": event.started_at,
                "ended_at": event.ended_at,
                "duration_seconds": event.duration_seconds,
                "duration_minutes": minutes,
                "cost": self._cost_for(event, minutes),
                "billing_month": billing_month,
                "metadata": self._metadata_for(event, source),
            }
        )

        if record_id is None:
            logger.info("duplicate_usage_event", user_id=str(user_id))
            USAGE_EVENTS.labels(event_type=event.type.value, outcome="duplicate").inc()
            return IngestResult(
                outcome=IngestOutcome.DUPLICATE,
                event_id=event.id,
                user_id=user_id,
            )

        change = await self.snapshots.record(
            user_id,
            billing_month=billing_month,
            minutes=minutes,
            channel=channel,
            activity_at=event.ended_at,
        )
        alert = await self._check_alert(user_id, change) if change.counted else None

        USAGE_MINUTES.labels(channel=channel.value).inc(minutes)
        USAGE_EVENTS.labels(event_type=event.type.value, outcome="recorded").inc()
        logger.info(
            "usage_recorded",
            user_id=str(user_id),
            record_id=str(record_id),
            minutes=minutes,
            channel=channel.value,
            billing_month=billing_month,
            attribution=source,
        )
        return IngestResult(
            outcome=IngestOutcome.RECORDED,
            event_id=event.id,
            user_id=user_id,
            record_id=record_id,
            minutes=minutes,
            channel=channel,
            alert=alert,
        )

    async def _check_alert(self, user_id: UUID, change: SnapshotChange) -> UsageAlert | None:
        """Queue an alert when this call moved the user's limit status up."""
        user = await self.user_repo.get_by_id(user_id)
        limits = limits_for(user.plan if user is not None else None)

        previous = status_for(change.minutes_before / limits.monthly_minute_limit, limits)
        evaluation = evaluate_minutes(change.minutes_after, limits)
        if evaluation.status.severity <= previous.severity:
            return None

        alert = UsageAlert(
            user_id=user_id,
            billing_month=change.billing_month,
            status=evaluation.status,
            previous_status=previous,
            minutes_used=evaluation.minutes_used,
            monthly_limit=evaluation.monthly_limit,
            percent_used=evaluation.percent_used,
            message=evaluation.message,
        )
        self._pending_alerts.append(alert)
        return alert

    async def publish_alerts(self) -> list[UsageAlert]:
        """Hand queued alerts to the sink. Call once the session has committed."""
        alerts, self._pending_alerts = self._pending_alerts, []
        for alert in alerts:
            await self.alert_sink.emit(alert)
        return alerts

    async def reconcile_unattributed(
        self,
        limit: int | None = None,
        now: datetime | None = None,
    ) -> ReconcileReport:
        """Retry attribution for parked events.

        Each event runs in its own savepoint; one that fails is logged and
        left pending without affecting the rest of the pass. Every miss bumps
        the event's attempt count and time, so the next pass starts with the
        events tried least recently.
        """
        now = now or utcnow()
        pending = await self.unattributed_repo.list_pending(
            limit or self.settings.unattributed_reconcile_limit
        )
        event_ids = [parked.event_id for parked in pending]
        payloads = [parked.payload for parked in pending]
        resolved = failed = 0

        for event_id, payload in zip(event_ids, payloads, strict=True):
            queued = len(self._pending_alerts)
            try:
                async with self.ledger_repo.begin_nested():
                    event = UsageEvent.model_validate(payload)
                    user_id, source = await self.resolver.resolve_event_owner(
                        event.assistant_id,
                        event.metadata.user_id,
                    )
                    if user_id is not None:
                        await self._record(event, user_id, source)
                        await self.unattributed_repo.mark_resolved(event_id, user_id, now)
            except (StorageError, ValidationError, PydanticValidationError) as e:
                del self._pending_alerts[queued:]
                failed += 1
                logger.error(
                    "unattributed_reconcile_failed",
                    event_id=event_id,
                    error=str(e),
                )
                await self.unattributed_repo.record_attempt(event_id, now)
                continue

            if user_id is None:
                await self.unattributed_repo.record_attempt(event_id, now)
            else:
                resolved += 1

        report = ReconcileReport(
            checked=len(pending),
            resolved=resolved,
            still_pending=len(pending) - resolved - failed,
            failed=failed,
        )
        logger.info("unattributed_reconciled", **report.as_dict())
        return report
