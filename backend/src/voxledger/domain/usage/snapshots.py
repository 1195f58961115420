"""Per-user running counters for the current billing month.

The snapshot is a cache over the usage ledger. It is only written by
single-statement upserts, and ``recompute`` can rebuild it from the ledger
at any time, so a lost or stale snapshot never affects what gets billed.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from voxledger.domain.usage.types import UsageSnapshotView
from voxledger.infrastructure.database.models.usage import UsageChannel, UserUsageSnapshot
from voxledger.infrastructure.database.repositories.usage import (
    UsageLedgerRepository,
    UsageSnapshotRepository,
)
from voxledger.shared.logging import get_logger
from voxledger.shared.periods import as_utc, current_billing_month, month_bounds, utcnow

logger = get_logger(__name__)


@dataclass(frozen=True)
class SnapshotChange:
    """Monthly minutes before and after one increment."""

    billing_month: str
    minutes_before: int
    minutes_after: int
    counted: bool


class SnapshotService:
    """Maintain and report user usage snapshots."""

    def __init__(
        self,
        snapshot_repo: UsageSnapshotRepository,
        ledger_repo: UsageLedgerRepository,
    ) -> None:
        self.snapshot_repo = snapshot_repo
        self.ledger_repo = ledger_repo

    async def record(
        self,
        user_id: UUID,
        *,
        billing_month: str,
        minutes: int,
        channel: UsageChannel,
        activity_at: datetime,
        now: datetime | None = None,
    ) -> SnapshotChange:
        """Count one accepted ledger record.

        ``counted`` is False when the record belongs to a month older than
        the snapshot's period; such late arrivals stay in the ledger only.
        """
        now = now or utcnow()
        row = await self.snapshot_repo.increment(
            user_id,
            billing_month=billing_month,
            minutes=minutes,
            channel=channel,
            activity_at=activity_at,
            now=now,
        )

        if row.billing_month != billing_month:
            logger.info(
                "late_usage_not_counted",
                user_id=str(user_id),
                billing_month=billing_month,
                snapshot_month=row.billing_month,
            )
            return SnapshotChange(
                billing_month=row.billing_month,
                minutes_before=row.monthly_minutes,
                minutes_after=row.monthly_minutes,
                counted=False,
            )

        minutes_after = int(row.monthly_minutes)
        minutes_before = minutes_after - minutes
        return SnapshotChange(
            billing_month=billing_month,
            minutes_before=minutes_before,
            minutes_after=minutes_after,
            counted=True,
        )

    async def current_view(
        self,
        user_id: UUID,
        now: datetime | None = None,
    ) -> UsageSnapshotView:
        """Counters for the current month.

        A snapshot still holding an earlier period is reported as zeros; the
        stored row is rolled over by the next increment or by reset_stale.
        """
        now = now or utcnow()
        month = current_billing_month(now)
        snapshot = await self.snapshot_repo.get(user_id)

        if snapshot is None or snapshot.billing_month < month:
            return UsageSnapshotView(
                user_id=user_id,
                billing_month=month,
                monthly_minutes=0,
                total_calls=0,
                assistant_minutes=0,
                workflow_minutes=0,
                last_reset_date=now if snapshot is not None else None,
                last_activity_date=_utc_or_none(snapshot.last_activity_date)
                if snapshot is not None
                else None,
            )
        return _view_of(snapshot)

    async def recompute(
        self,
        user_id: UUID,
        month: str | None = None,
        now: datetime | None = None,
    ) -> UsageSnapshotView:
        """Rebuild the snapshot for a month from the ledger."""
        now = now or utcnow()
        month = month or current_billing_month(now)
        start, end = month_bounds(month)

        row = await self.ledger_repo.totals(user_id, start, end)
        last_activity = await self.ledger_repo.last_activity(user_id, start, end)

        await self.snapshot_repo.replace(
            user_id,
            billing_month=month,
            monthly_minutes=int(row.minutes or 0),
            total_calls=int(row.calls or 0),
            assistant_minutes=int(row.assistant_minutes or 0),
            workflow_minutes=int(row.workflow_minutes or 0),
            last_activity_date=last_activity,
            now=now,
        )
        logger.info(
            "snapshot_recomputed",
            user_id=str(user_id),
            billing_month=month,
            monthly_minutes=int(row.minutes or 0),
        )

        snapshot = await self.snapshot_repo.get(user_id)
        assert snapshot is not None
        return _view_of(snapshot)

    async def reset_stale(self, now: datetime | None = None) -> int:
        now = now or utcnow()
        month = current_billing_month(now)
        count = await self.snapshot_repo.reset_stale(month, now)
        logger.info("snapshots_rolled_over", billing_month=month, count=count)
        return count


def _utc_or_none(value: datetime | None) -> datetime | None:
    return as_utc(value) if value is not None else None


def _view_of(snapshot: UserUsageSnapshot) -> UsageSnapshotView:
    return UsageSnapshotView(
        user_id=snapshot.user_id,
        billing_month=snapshot.billing_month,
        monthly_minutes=snapshot.monthly_minutes,
        total_calls=snapshot.total_calls,
        assistant_minutes=snapshot.assistant_minutes,
        workflow_minutes=snapshot.workflow_minutes,
        last_reset_date=_utc_or_none(snapshot.last_reset_date),
        last_activity_date=_utc_or_none(snapshot.last_activity_date),
    )
