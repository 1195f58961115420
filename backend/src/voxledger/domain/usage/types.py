"""Value types shared by the usage components."""

import math
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from voxledger.domain.billing.calculator import to_currency
from voxledger.domain.billing.limits import LimitStatus
from voxledger.infrastructure.database.models.usage import UsageChannel


def duration_minutes(duration_seconds: float) -> int:
    """Billable minutes for a duration: ceiling of seconds/60, and 0 only for 0.

    Every conversion from seconds to minutes goes through this function.
    """
    if duration_seconds < 0:
        raise ValueError("duration_seconds must not be negative")
    if duration_seconds == 0:
        return 0
    return math.ceil(duration_seconds / 60)


def money(value: Any) -> Decimal:
    """Normalize a database sum (Decimal, float or int) to cents."""
    if value is None:
        return Decimal("0.00")
    return to_currency(Decimal(str(value)))


@dataclass(frozen=True)
class UsageTotals:
    minutes: int
    calls: int
    cost: Decimal
    assistant_minutes: int
    workflow_minutes: int

    def as_dict(self) -> dict[str, Any]:
        return {
            "minutes": self.minutes,
            "calls": self.calls,
            "cost": str(self.cost),
            "assistant_minutes": self.assistant_minutes,
            "workflow_minutes": self.workflow_minutes,
        }


@dataclass(frozen=True)
class DailyUsage:
    date: date
    minutes: int
    calls: int
    cost: Decimal

    def as_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "minutes": self.minutes,
            "calls": self.calls,
            "cost": str(self.cost),
        }


@dataclass(frozen=True)
class AssistantUsage:
    assistant_id: str
    assistant_name: str | None
    minutes: int
    calls: int
    cost: Decimal

    def as_dict(self) -> dict[str, Any]:
        return {
            "assistant_id": self.assistant_id,
            "assistant_name": self.assistant_name,
            "minutes": self.minutes,
            "calls": self.calls,
            "cost": str(self.cost),
        }


@dataclass(frozen=True)
class UsageSnapshotView:
    """Current-period counters as reported to dashboards."""

    user_id: UUID
    billing_month: str
    monthly_minutes: int
    total_calls: int
    assistant_minutes: int
    workflow_minutes: int
    last_reset_date: datetime | None
    last_activity_date: datetime | None


@dataclass(frozen=True)
class UsageAlert:
    """Raised when a user's limit status moves up a level."""

    user_id: UUID
    billing_month: str
    status: LimitStatus
    previous_status: LimitStatus
    minutes_used: int
    monthly_limit: int
    percent_used: float
    message: str


class IngestOutcome(str, Enum):
    """How an event was acknowledged."""

    RECORDED = "recorded"
    DUPLICATE = "duplicate"
    UNATTRIBUTED = "unattributed"
    OBSERVED = "observed"


@dataclass(frozen=True)
class IngestResult:
    outcome: IngestOutcome
    event_id: str
    user_id: UUID | None = None
    record_id: UUID | None = None
    minutes: int | None = None
    channel: UsageChannel | None = None
    alert: UsageAlert | None = None
    reason: str | None = None
