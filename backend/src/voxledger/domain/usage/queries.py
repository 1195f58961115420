"""Read-only usage queries for dashboards and the admin API."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any
from uuid import UUID

from voxledger.config import Settings
from voxledger.domain.billing.calculator import BillingCalculator, BillingInfo
from voxledger.domain.billing.limits import LimitEvaluation, UsageLimits, evaluate, limits_for
from voxledger.domain.usage.aggregator import UsageAggregator
from voxledger.domain.usage.snapshots import SnapshotService
from voxledger.domain.usage.types import (
    AssistantUsage,
    DailyUsage,
    UsageSnapshotView,
    UsageTotals,
)
from voxledger.infrastructure.database.models.user import User
from voxledger.infrastructure.database.repositories.user import UserRepository
from voxledger.shared.exceptions import NotFoundError
from voxledger.shared.periods import (
    as_utc,
    current_billing_month,
    parse_billing_month,
    utcnow,
)


@dataclass(frozen=True)
class LimitReport:
    """Current-month usage against the user's plan, with a cost estimate."""

    user_id: UUID
    plan: str
    billing_month: str
    limits: UsageLimits
    evaluation: LimitEvaluation
    daily_minutes_used: int
    daily_limit_reached: bool
    estimated_billing: BillingInfo

    def as_dict(self) -> dict[str, Any]:
        return {
            "user_id": str(self.user_id),
            "plan": self.plan,
            "billing_month": self.billing_month,
            "limits": self.limits.as_dict(),
            "status": self.evaluation.status.value,
            "percent_used": self.evaluation.percent_used,
            "minutes_used": self.evaluation.minutes_used,
            "minutes_remaining": self.evaluation.minutes_remaining,
            "message": self.evaluation.message,
            "daily_minutes_used": self.daily_minutes_used,
            "daily_limit_reached": self.daily_limit_reached,
            "estimated_billing": self.estimated_billing.as_dict(),
        }


class UsageQueryService:
    """Usage views for one user.

    The current month comes from the snapshot cache; earlier months are
    derived from the ledger, which holds them in full.
    """

    def __init__(
        self,
        aggregator: UsageAggregator,
        snapshots: SnapshotService,
        user_repo: UserRepository,
        settings: Settings,
    ) -> None:
        self.aggregator = aggregator
        self.snapshots = snapshots
        self.user_repo = user_repo
        self.settings = settings
        self.calculator = BillingCalculator(settings.billing_currency)

    async def require_user(self, user_id: UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))
        return user

    async def get_usage(
        self,
        user_id: UUID,
        month: str | None = None,
        now: datetime | None = None,
    ) -> UsageSnapshotView:
        await self.require_user(user_id)
        now = now or utcnow()
        current = current_billing_month(now)
        if month is None or month == current:
            return await self.snapshots.current_view(user_id, now)

        parse_billing_month(month)
        totals = await self.aggregator.aggregate_month(user_id, month)
        return UsageSnapshotView(
            user_id=user_id,
            billing_month=month,
            monthly_minutes=totals.minutes,
            total_calls=totals.calls,
            assistant_minutes=totals.assistant_minutes,
            workflow_minutes=totals.workflow_minutes,
            last_reset_date=None,
            last_activity_date=await self.aggregator.last_activity(user_id, month),
        )

    async def get_daily_breakdown(
        self,
        user_id: UUID,
        month: str | None = None,
    ) -> list[DailyUsage]:
        await self.require_user(user_id)
        return await self.aggregator.aggregate_daily(user_id, month or current_billing_month())

    async def get_channel_breakdown(
        self,
        user_id: UUID,
        month: str | None = None,
    ) -> list[AssistantUsage]:
        await self.require_user(user_id)
        return await self.aggregator.aggregate_by_channel_entity(
            user_id, month or current_billing_month()
        )

    async def get_lifetime(self, user_id: UUID) -> UsageTotals:
        await self.require_user(user_id)
        return await self.aggregator.aggregate_lifetime(user_id)

    async def get_first_billing_period(self, user_id: UUID) -> UsageTotals:
        return await self.aggregator.aggregate_first_billing_period(user_id)

    async def get_limit_status(
        self,
        user_id: UUID,
        now: datetime | None = None,
    ) -> LimitReport:
        user = await self.require_user(user_id)
        now = as_utc(now or utcnow())
        limits = limits_for(user.plan)
        snapshot = await self.snapshots.current_view(user_id, now)

        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        today = await self.aggregator.aggregate_range(
            user_id,
            day_start,
            day_start + timedelta(days=1) - timedelta(microseconds=1),
        )

        return LimitReport(
            user_id=user_id,
            plan=user.plan,
            billing_month=snapshot.billing_month,
            limits=limits,
            evaluation=evaluate(snapshot, limits),
            daily_minutes_used=today.minutes,
            daily_limit_reached=today.minutes >= limits.daily_minute_limit,
            estimated_billing=self.calculator.compute_cost(
                snapshot.assistant_minutes,
                snapshot.workflow_minutes,
                limits,
                self.settings.assistant_rate_per_minute,
                self.settings.workflow_rate_per_minute,
            ),
        )
