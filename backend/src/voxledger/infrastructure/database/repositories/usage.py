"""Usage ledger, snapshot and unattributed-event repositories."""

from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import case, func, select, update

from voxledger.infrastructure.database.models.usage import (
    UnattributedEvent,
    UsageChannel,
    UsageRecord,
    UserUsageSnapshot,
)
from voxledger.infrastructure.database.repositories.base import BaseRepository


def _channel_minutes(channel: UsageChannel) -> Any:
    return func.coalesce(
        func.sum(
            case(
                (UsageRecord.channel == channel.value, UsageRecord.duration_minutes),
                else_=0,
            )
        ),
        0,
    )


class UsageLedgerRepository(BaseRepository[UsageRecord]):
    """Append-only access to usage_records.

    There is deliberately no update or delete method.
    """

    model_class = UsageRecord

    async def insert_if_absent(self, values: dict[str, Any]) -> UUID | None:
        """Insert a record unless its call_id is already present.

        One conditional statement: concurrent deliveries of the same call
        serialize on the unique index and only one of them gets an id back.
        """
        stmt = (
            self.upsert_statement()
            .values(**values)
            .on_conflict_do_nothing(index_elements=["call_id"])
            .returning(UsageRecord.id)
        )
        result = await self.execute(stmt)
        return result.scalar_one_or_none()

    async def get_by_call_id(self, call_id: str) -> UsageRecord | None:
        result = await self.session.execute(
            select(UsageRecord).where(UsageRecord.call_id == call_id)
        )
        return result.scalar_one_or_none()

    def _window(
        self,
        query: Any,
        user_id: UUID,
        start: datetime | None,
        end: datetime | None,
    ) -> Any:
        query = query.where(UsageRecord.user_id == user_id)
        if start is not None:
            query = query.where(UsageRecord.started_at >= start)
        if end is not None:
            query = query.where(UsageRecord.started_at <= end)
        return query

    async def list_in_range(
        self,
        user_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Sequence[UsageRecord]:
        """Records whose start time falls in the inclusive window, oldest first."""
        query = self._window(select(UsageRecord), user_id, start, end).order_by(
            UsageRecord.started_at.asc(), UsageRecord.call_id.asc()
        )
        result = await self.session.execute(query)
        return result.scalars().all()

    async def totals(
        self,
        user_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Any:
        """Minutes, calls, cost and per-channel minutes in the window."""
        query = self._window(
            select(
                func.coalesce(func.sum(UsageRecord.duration_minutes), 0).label("minutes"),
                func.count(UsageRecord.id).label("calls"),
                func.coalesce(func.sum(UsageRecord.cost), 0).label("cost"),
                _channel_minutes(UsageChannel.ASSISTANT).label("assistant_minutes"),
                _channel_minutes(UsageChannel.WORKFLOW).label("workflow_minutes"),
            ),
            user_id,
            start,
            end,
        )
        result = await self.session.execute(query)
        return result.one()

    async def last_activity(
        self,
        user_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> datetime | None:
        query = self._window(select(func.max(UsageRecord.ended_at)), user_id, start, end)
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def totals_by_assistant(
        self,
        user_id: UUID,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> Sequence[Any]:
        minutes = func.coalesce(func.sum(UsageRecord.duration_minutes), 0)
        query = (
            self._window(
                select(
                    UsageRecord.assistant_id,
                    minutes.label("minutes"),
                    func.count(UsageRecord.id).label("calls"),
                    func.coalesce(func.sum(UsageRecord.cost), 0).label("cost"),
                ),
                user_id,
                start,
                end,
            )
            .where(UsageRecord.assistant_id.is_not(None))
            .group_by(UsageRecord.assistant_id)
            .order_by(minutes.desc(), UsageRecord.assistant_id.asc())
        )
        result = await self.session.execute(query)
        return result.all()

    async def users_with_activity(self, billing_month: str) -> set[UUID]:
        result = await self.session.execute(
            select(UsageRecord.user_id)
            .where(UsageRecord.billing_month == billing_month)
            .distinct()
        )
        return set(result.scalars().all())


class UsageSnapshotRepository(BaseRepository[UserUsageSnapshot]):
    """Atomic counter updates for user_usage_snapshots."""

    model_class = UserUsageSnapshot

    async def get(self, user_id: UUID) -> UserUsageSnapshot | None:
        result = await self.session.execute(
            select(UserUsageSnapshot)
            .where(UserUsageSnapshot.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def increment(
        self,
        user_id: UUID,
        *,
        billing_month: str,
        minutes: int,
        channel: UsageChannel,
        activity_at: datetime,
        now: datetime,
    ) -> Any:
        """Add one call to the user's counters in a single upsert.

        Same period: counters are incremented. Newer period: counters restart
        from this call. Older period (late redelivery after rollover): the
        row is left untouched, the ledger still holds the record.

        Returns the row as stored after the statement (billing_month and
        counters).
        """
        snapshot = UserUsageSnapshot
        assistant_minutes = minutes if channel == UsageChannel.ASSISTANT else 0
        workflow_minutes = minutes if channel == UsageChannel.WORKFLOW else 0

        stmt = self.upsert_statement().values(
            user_id=user_id,
            billing_month=billing_month,
            monthly_minutes=minutes,
            total_calls=1,
            assistant_minutes=assistant_minutes,
            workflow_minutes=workflow_minutes,
            last_reset_date=now,
            last_activity_date=activity_at,
        )
        excluded = stmt.excluded
        same_period = snapshot.billing_month == excluded.billing_month
        newer_period = snapshot.billing_month < excluded.billing_month

        def counter(column: Any, incoming: Any) -> Any:
            return case(
                (same_period, column + incoming),
                (newer_period, incoming),
                else_=column,
            )

        stmt = stmt.on_conflict_do_update(
            index_elements=["user_id"],
            set_={
                "monthly_minutes": counter(snapshot.monthly_minutes, excluded.monthly_minutes),
                "total_calls": counter(snapshot.total_calls, excluded.total_calls),
                "assistant_minutes": counter(
                    snapshot.assistant_minutes, excluded.assistant_minutes
                ),
                "workflow_minutes": counter(snapshot.workflow_minutes, excluded.workflow_minutes),
                "billing_month": case(
                    (newer_period, excluded.billing_month),
                    else_=snapshot.billing_month,
                ),
                "last_reset_date": case(
                    (newer_period, excluded.last_reset_date),
                    else_=snapshot.last_reset_date,
                ),
                "last_activity_date": case(
                    (snapshot.last_activity_date.is_(None), excluded.last_activity_date),
                    (
                        snapshot.last_activity_date < excluded.last_activity_date,
                        excluded.last_activity_date,
                    ),
                    else_=snapshot.last_activity_date,
                ),
            },
        ).returning(
            snapshot.billing_month,
            snapshot.monthly_minutes,
            snapshot.total_calls,
            snapshot.assistant_minutes,
            snapshot.workflow_minutes,
        )
        result = await self.execute(stmt)
        return result.one()

    async def replace(
        self,
        user_id: UUID,
        *,
        billing_month: str,
        monthly_minutes: int,
        total_calls: int,
        assistant_minutes: int,
        workflow_minutes: int,
        last_activity_date: datetime | None,
        now: datetime,
    ) -> None:
        """Overwrite the counters with values derived from the ledger."""
        values = {
            "billing_month": billing_month,
            "monthly_minutes": monthly_minutes,
            "total_calls": total_calls,
            "assistant_minutes": assistant_minutes,
            "workflow_minutes": workflow_minutes,
            "last_reset_date": now,
            "last_activity_date": last_activity_date,
        }
        stmt = (
            self.upsert_statement()
            .values(user_id=user_id, **values)
            .on_conflict_do_update(index_elements=["user_id"], set_=values)
        )
        await self.execute(stmt)

    async def reset_stale(self, current_month: str, now: datetime) -> int:
        """Zero every snapshot still counting a month before current_month."""
        stmt = (
            update(UserUsageSnapshot)
            .where(UserUsageSnapshot.billing_month < current_month)
            .values(
                billing_month=current_month,
                monthly_minutes=0,
                total_calls=0,
                assistant_minutes=0,
                workflow_minutes=0,
                last_reset_date=now,
            )
        )
        stmt = stmt.execution_options(synchronize_session=False)
        result = await self.execute(stmt)
        return int(result.rowcount or 0)


class UnattributedEventRepository(BaseRepository[UnattributedEvent]):
    """Parking lot for events that could not be attributed to a user."""

    model_class = UnattributedEvent

    async def insert_if_absent(
        self,
        *,
        event_id: str,
        event_type: str,
        reason: str,
        payload: dict[str, Any],
    ) -> bool:
        stmt = (
            self.upsert_statement()
            .values(event_id=event_id, event_type=event_type, reason=reason, payload=payload)
            .on_conflict_do_nothing(index_elements=["event_id"])
            .returning(UnattributedEvent.id)
        )
        result = await self.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def get_by_event_id(self, event_id: str) -> UnattributedEvent | None:
        result = await self.session.execute(
            select(UnattributedEvent).where(UnattributedEvent.event_id == event_id)
        )
        return result.scalar_one_or_none()

    async def list_pending(self, limit: int = 100) -> Sequence[UnattributedEvent]:
        """Unresolved events, never-attempted first, then least recently attempted."""
        result = await self.session.execute(
            select(UnattributedEvent)
            .where(UnattributedEvent.resolved_at.is_(None))
            .order_by(
                UnattributedEvent.last_attempted_at.asc().nulls_first(),
                UnattributedEvent.received_at.asc(),
                UnattributedEvent.event_id.asc(),
            )
            .limit(limit)
        )
        return result.scalars().all()

    async def record_attempt(self, event_id: str, now: datetime) -> None:
        stmt = (
            update(UnattributedEvent)
            .where(UnattributedEvent.event_id == event_id)
            .values(attempts=UnattributedEvent.attempts + 1, last_attempted_at=now)
        ).execution_options(synchronize_session="fetch")
        await self.execute(stmt)

    async def mark_resolved(self, event_id: str, user_id: UUID, now: datetime) -> bool:
        stmt = (
            update(UnattributedEvent)
            .where(
                UnattributedEvent.event_id == event_id,
                UnattributedEvent.resolved_at.is_(None),
            )
            .values(resolved_at=now, resolved_user_id=user_id)
        ).execution_options(synchronize_session="fetch")
        result = await self.execute(stmt)
        return bool(result.rowcount)
