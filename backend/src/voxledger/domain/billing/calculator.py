"""Usage cost calculation."""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from voxledger.domain.billing.limits import UsageLimits

CENT = Decimal("0.01")


def to_currency(amount: Decimal) -> Decimal:
    """Round a money amount half-up to cents."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BillingInfo:
    """Cost breakdown for one billing period."""

    assistant_cost: Decimal
    workflow_cost: Decimal
    total_cost: Decimal
    rate_per_minute: Decimal
    assistant_rate: Decimal
    workflow_rate: Decimal
    overage_minutes: int
    overage_cost: Decimal
    currency: str

    def as_dict(self) -> dict[str, str | int]:
        return {
            "assistant_cost": str(self.assistant_cost),
            "workflow_cost": str(self.workflow_cost),
            "total_cost": str(self.total_cost),
            "rate_per_minute": str(self.rate_per_minute),
            "assistant_rate": str(self.assistant_rate),
            "workflow_rate": str(self.workflow_rate),
            "overage_minutes": self.overage_minutes,
            "overage_cost": str(self.overage_cost),
            "currency": self.currency,
        }


class BillingCalculator:
    """Turn per-channel minutes into cost.

    Pricing:
    - Within the monthly allowance every minute costs its channel's rate.
    - Above it, the allowance itself is still billed at channel rates and
      each overage minute at the plan's overage rate. Both parts are split
      across channels by each channel's share of total minutes.

    All arithmetic is exact Decimal; only the final totals are rounded, and
    the workflow cost is taken as total minus assistant so the two channel
    costs always add up to the total.
    """

    def __init__(self, currency: str = "USD") -> None:
        self.currency = currency

    def compute_cost(
        self,
        assistant_minutes: int,
        workflow_minutes: int,
        limits: UsageLimits,
        assistant_rate: Decimal,
        workflow_rate: Decimal,
    ) -> BillingInfo:
        if assistant_minutes < 0 or workflow_minutes < 0:
            raise ValueError("Minutes must not be negative")

        total_minutes = assistant_minutes + workflow_minutes
        limit = limits.monthly_minute_limit

        raw_assistant = Decimal(assistant_minutes) * assistant_rate
        raw_workflow = Decimal(workflow_minutes) * workflow_rate
        overage_minutes = 0
        raw_overage = Decimal(0)

        if total_minutes > limit:
            overage_minutes = total_minutes - limit
            raw_overage = Decimal(overage_minutes) * limits.overage_rate
            total = Decimal(total_minutes)

            # included allowance scaled by limit/total, overage split by share
            raw_assistant = (
                raw_assistant * limit + raw_overage * assistant_minutes
            ) / total
            raw_workflow = (raw_workflow * limit + raw_overage * workflow_minutes) / total

        total_cost = to_currency(raw_assistant + raw_workflow)
        assistant_cost = to_currency(raw_assistant)
        workflow_cost = total_cost - assistant_cost

        return BillingInfo(
            assistant_cost=assistant_cost,
            workflow_cost=workflow_cost,
            total_cost=total_cost,
            rate_per_minute=assistant_rate,
            assistant_rate=assistant_rate,
            workflow_rate=workflow_rate,
            overage_minutes=overage_minutes,
            overage_cost=to_currency(raw_overage),
            currency=self.currency,
        )


def compute_cost(
    assistant_minutes: int,
    workflow_minutes: int,
    limits: UsageLimits,
    assistant_rate: Decimal,
    workflow_rate: Decimal,
    currency: str = "USD",
) -> BillingInfo:
    """Module-level shortcut for ``BillingCalculator.compute_cost``."""
    return BillingCalculator(currency).compute_cost(
        assistant_minutes,
        workflow_minutes,
        limits,
        assistant_rate,
        workflow_rate,
    )
