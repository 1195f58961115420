"""Plan limits and limit evaluation.

Limits are static data keyed by plan name. Exceeding a limit never blocks
usage: it only switches billing to overage pricing and changes the status
reported to dashboards and alerts.
"""

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Protocol

from voxledger.shared.logging import get_logger

logger = get_logger(__name__)


class LimitStatus(str, Enum):
    """Where a user's monthly usage stands against their allowance."""

    SAFE = "safe"
    WARNING = "warning"
    EXCEEDED = "exceeded"

    @property
    def severity(self) -> int:
        return _SEVERITY[self]


_SEVERITY = {
    LimitStatus.SAFE: 0,
    LimitStatus.WARNING: 1,
    LimitStatus.EXCEEDED: 2,
}


@dataclass(frozen=True)
class UsageLimits:
    """Minute allowances and overage pricing for one plan."""

    monthly_minute_limit: int
    daily_minute_limit: int
    warning_threshold: float
    overage_rate: Decimal

    def __post_init__(self) -> None:
        if self.monthly_minute_limit <= 0:
            raise ValueError("monthly_minute_limit must be positive")
        if self.daily_minute_limit <= 0:
            raise ValueError("daily_minute_limit must be positive")
        if not 0 < self.warning_threshold <= 1:
            raise ValueError("warning_threshold must be in (0, 1]")
        if self.overage_rate < 0:
            raise ValueError("overage_rate must not be negative")

    def as_dict(self) -> dict[str, str | int | float]:
        return {
            "monthly_minute_limit": self.monthly_minute_limit,
            "daily_minute_limit": self.daily_minute_limit,
            "warning_threshold": self.warning_threshold,
            "overage_rate": str(self.overage_rate),
        }


PLAN_LIMITS: dict[str, UsageLimits] = {
    "FREE": UsageLimits(
        monthly_minute_limit=10,
        daily_minute_limit=2,
        warning_threshold=0.8,
        overage_rate=Decimal("0.08"),
    ),
    "STARTER": UsageLimits(
        monthly_minute_limit=100,
        daily_minute_limit=10,
        warning_threshold=0.8,
        overage_rate=Decimal("0.07"),
    ),
    "PRO": UsageLimits(
        monthly_minute_limit=500,
        daily_minute_limit=25,
        warning_threshold=0.85,
        overage_rate=Decimal("0.06"),
    ),
    "ENTERPRISE": UsageLimits(
        monthly_minute_limit=2000,
        daily_minute_limit=100,
        warning_threshold=0.9,
        overage_rate=Decimal("0.05"),
    ),
    "ADMIN": UsageLimits(
        monthly_minute_limit=1000,
        daily_minute_limit=50,
        warning_threshold=0.9,
        overage_rate=Decimal("0.05"),
    ),
    "GOD_MODE": UsageLimits(
        monthly_minute_limit=999999,
        daily_minute_limit=999999,
        warning_threshold=0.95,
        overage_rate=Decimal("0.03"),
    ),
}

# Fallback for unknown plans; a misconfigured plan must not grant more usage
MOST_RESTRICTIVE_PLAN = "FREE"


def normalize_plan(plan: str | None) -> str:
    return (plan or "").strip().upper()


def limits_for(plan: str | None) -> UsageLimits:
    """Look up limits for a plan, failing closed to the most restrictive tier."""
    limits = PLAN_LIMITS.get(normalize_plan(plan))
    if limits is None:
        logger.warning("unknown_plan_limits", plan=plan, fallback=MOST_RESTRICTIVE_PLAN)
        return PLAN_LIMITS[MOST_RESTRICTIVE_PLAN]
    return limits


class HasMonthlyMinutes(Protocol):
    monthly_minutes: int


@dataclass(frozen=True)
class LimitEvaluation:
    """Result of checking usage against a plan's monthly allowance."""

    status: LimitStatus
    percent_used: float
    minutes_used: int
    minutes_remaining: int
    monthly_limit: int
    message: str

    @property
    def percent_display(self) -> int:
        return round(self.percent_used * 100)


def status_for(percent_used: float, limits: UsageLimits) -> LimitStatus:
    if percent_used >= 1.0:
        return LimitStatus.EXCEEDED
    if percent_used >= limits.warning_threshold:
        return LimitStatus.WARNING
    return LimitStatus.SAFE


def evaluate_minutes(minutes_used: int, limits: UsageLimits) -> LimitEvaluation:
    """Evaluate a minute count against the plan's monthly allowance."""
    limit = limits.monthly_minute_limit
    percent_used = minutes_used / limit
    status = status_for(percent_used, limits)
    minutes_remaining = max(0, limit - minutes_used)
    percent_display = round(percent_used * 100)

    if status == LimitStatus.EXCEEDED:
        message = (
            f"Usage limit exceeded. {minutes_used}/{limit} minutes used. "
            "Overage charges apply."
        )
    elif status == LimitStatus.WARNING:
        message = (
            f"Approaching usage limit. {minutes_used}/{limit} minutes used "
            f"({percent_display}%)."
        )
    else:
        message = f"Usage within limits. {minutes_used}/{limit} minutes used."

    return LimitEvaluation(
        status=status,
        percent_used=percent_used,
        minutes_used=minutes_used,
        minutes_remaining=minutes_remaining,
        monthly_limit=limit,
        message=message,
    )


def evaluate(snapshot: HasMonthlyMinutes, limits: UsageLimits) -> LimitEvaluation:
    """Evaluate a usage snapshot against the plan's monthly allowance."""
    return evaluate_minutes(snapshot.monthly_minutes, limits)
