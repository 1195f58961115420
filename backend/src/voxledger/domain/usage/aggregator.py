"""Read-side aggregation over the usage ledger.

Everything here is a projection of usage_records and can be recomputed at
any time; nothing reads the snapshot cache. Windows compare against each
record's start time, and a billing month is the inclusive window returned
by ``month_bounds`` so the daily and range views always agree.
"""

from collections.abc import Iterable
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID

from voxledger.domain.usage.types import (
    AssistantUsage,
    DailyUsage,
    UsageTotals,
    money,
)
from voxledger.infrastructure.database.models.usage import UsageRecord
from voxledger.infrastructure.database.repositories.identity import AssistantRepository
from voxledger.infrastructure.database.repositories.usage import UsageLedgerRepository
from voxledger.infrastructure.database.repositories.user import UserRepository
from voxledger.shared.exceptions import NotFoundError, ValidationError
from voxledger.shared.periods import add_months, as_utc, month_bounds


def group_daily(records: Iterable[UsageRecord]) -> list[DailyUsage]:
    """Group records by UTC start date, ascending, one entry per active day."""
    buckets: dict[date, list[Any]] = {}
    for record in records:
        day = as_utc(record.started_at).date()
        bucket = buckets.setdefault(day, [0, 0, Decimal(0)])
        bucket[0] += record.duration_minutes
        bucket[1] += 1
        bucket[2] += Decimal(str(record.cost))

    return [
        DailyUsage(date=day, minutes=minutes, calls=calls, cost=money(cost))
        for day, (minutes, calls, cost) in sorted(buckets.items())
    ]


def _totals_from_row(row: Any) -> UsageTotals:
    return UsageTotals(
        minutes=int(row.minutes or 0),
        calls=int(row.calls or 0),
        cost=money(row.cost),
        assistant_minutes=int(row.assistant_minutes or 0),
        workflow_minutes=int(row.workflow_minutes or 0),
    )


class UsageAggregator:
    """Daily, per-assistant, range and lifetime usage for one user."""

    def __init__(
        self,
        ledger_repo: UsageLedgerRepository,
        assistant_repo: AssistantRepository,
        user_repo: UserRepository,
    ) -> None:
        self.ledger_repo = ledger_repo
        self.assistant_repo = assistant_repo
        self.user_repo = user_repo

    async def aggregate_daily(self, user_id: UUID, month: str) -> list[DailyUsage]:
        start, end = month_bounds(month)
        records = await self.ledger_repo.list_in_range(user_id, start, end)
        return group_daily(records)

    async def aggregate_by_channel_entity(
        self,
        user_id: UUID,
        month: str,
    ) -> list[AssistantUsage]:
        """Usage per assistant, most minutes first.

        Workflow executions without an assistant id are not listed here;
        they still count in range and lifetime totals.
        """
        start, end = month_bounds(month)
        rows = await self.ledger_repo.totals_by_assistant(user_id, start, end)
        names = await self.assistant_repo.names_for(row.assistant_id for row in rows)

        return [
            AssistantUsage(
                assistant_id=row.assistant_id,
                assistant_name=names.get(row.assistant_id),
                minutes=int(row.minutes),
                calls=int(row.calls),
                cost=money(row.cost),
            )
            for row in rows
        ]

    async def aggregate_range(
        self,
        user_id: UUID,
        start: datetime,
        end: datetime,
    ) -> UsageTotals:
        """Totals for records starting within [start, end]."""
        if end < start:
            raise ValidationError(
                "Range end must not be before range start",
                details={"start": start.isoformat(), "end": end.isoformat()},
            )
        row = await self.ledger_repo.totals(user_id, start, end)
        return _totals_from_row(row)

    async def aggregate_month(self, user_id: UUID, month: str) -> UsageTotals:
        start, end = month_bounds(month)
        return await self.aggregate_range(user_id, start, end)

    async def aggregate_lifetime(self, user_id: UUID) -> UsageTotals:
        row = await self.ledger_repo.totals(user_id)
        return _totals_from_row(row)

    async def aggregate_first_billing_period(self, user_id: UUID) -> UsageTotals:
        """Usage in the first calendar month after the subscription started."""
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        if user.subscription_started_at is None:
            raise ValidationError(
                "User has no subscription start date",
                details={"user_id": str(user_id)},
            )
        start = as_utc(user.subscription_started_at)
        end = add_months(start, 1) - timedelta(microseconds=1)
        return await self.aggregate_range(user_id, start, end)

    async def last_activity(self, user_id: UUID, month: str) -> datetime | None:
        start, end = month_bounds(month)
        moment = await self.ledger_repo.last_activity(user_id, start, end)
        return as_utc(moment) if moment is not None else None
