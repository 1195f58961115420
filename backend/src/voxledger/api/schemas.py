"""Shared API schemas and response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from voxledger.domain.usage.types import (
    AssistantUsage,
    DailyUsage,
    IngestResult,
    UsageSnapshotView,
    UsageTotals,
)
from voxledger.infrastructure.database.models.invoice import Invoice


class APIRequestModel(BaseModel):
    """Base model for request bodies.

    Forbids unknown fields to avoid silently accepting typos or outdated clients.
    """

    model_config = ConfigDict(extra="forbid")


# ----- Events -----


class AlertResponse(BaseModel):
    status: str
    previous_status: str
    minutes_used: int
    monthly_limit: int
    percent_used: float
    message: str


class IngestResponse(BaseModel):
    """How an inbound event was acknowledged."""

    outcome: str
    event_id: str
    user_id: str | None = None
    record_id: str | None = None
    minutes: int | None = None
    channel: str | None = None
    reason: str | None = None
    alert: AlertResponse | None = None

    @classmethod
    def from_result(cls, result: IngestResult) -> "IngestResponse":
        alert = None
        if result.alert is not None:
            alert = AlertResponse(
                status=result.alert.status.value,
                previous_status=result.alert.previous_status.value,
                minutes_used=result.alert.minutes_used,
                monthly_limit=result.alert.monthly_limit,
                percent_used=result.alert.percent_used,
                message=result.alert.message,
            )
        return cls(
            outcome=result.outcome.value,
            event_id=result.event_id,
            user_id=str(result.user_id) if result.user_id else None,
            record_id=str(result.record_id) if result.record_id else None,
            minutes=result.minutes,
            channel=result.channel.value if result.channel else None,
            reason=result.reason,
            alert=alert,
        )


class ReconcileResponse(BaseModel):
    checked: int
    resolved: int
    still_pending: int
    failed: int


# ----- Usage -----


class UsageSnapshotResponse(BaseModel):
    user_id: str
    billing_month: str
    monthly_minutes: int
    total_calls: int
    assistant_minutes: int
    workflow_minutes: int
    last_reset_date: datetime | None
    last_activity_date: datetime | None

    @classmethod
    def from_view(cls, view: UsageSnapshotView) -> "UsageSnapshotResponse":
        return cls(
            user_id=str(view.user_id),
            billing_month=view.billing_month,
            monthly_minutes=view.monthly_minutes,
            total_calls=view.total_calls,
            assistant_minutes=view.assistant_minutes,
            workflow_minutes=view.workflow_minutes,
            last_reset_date=view.last_reset_date,
            last_activity_date=view.last_activity_date,
        )


class DailyUsageResponse(BaseModel):
    date: date
    minutes: int
    calls: int
    cost: Decimal

    @classmethod
    def from_entry(cls, entry: DailyUsage) -> "DailyUsageResponse":
        return cls(date=entry.date, minutes=entry.minutes, calls=entry.calls, cost=entry.cost)


class AssistantUsageResponse(BaseModel):
    assistant_id: str
    assistant_name: str | None
    minutes: int
    calls: int
    cost: Decimal

    @classmethod
    def from_entry(cls, entry: AssistantUsage) -> "AssistantUsageResponse":
        return cls(
            assistant_id=entry.assistant_id,
            assistant_name=entry.assistant_name,
            minutes=entry.minutes,
            calls=entry.calls,
            cost=entry.cost,
        )


class UsageTotalsResponse(BaseModel):
    minutes: int
    calls: int
    cost: Decimal
    assistant_minutes: int
    workflow_minutes: int

    @classmethod
    def from_totals(cls, totals: UsageTotals) -> "UsageTotalsResponse":
        return cls(
            minutes=totals.minutes,
            calls=totals.calls,
            cost=totals.cost,
            assistant_minutes=totals.assistant_minutes,
            workflow_minutes=totals.workflow_minutes,
        )


class LimitStatusResponse(BaseModel):
    user_id: str
    plan: str
    billing_month: str
    limits: dict[str, Any]
    status: str
    percent_used: float
    minutes_used: int
    minutes_remaining: int
    message: str
    daily_minutes_used: int
    daily_limit_reached: bool
    estimated_billing: dict[str, Any]


# ----- Invoices -----


class InvoiceResponse(BaseModel):
    invoice_number: str
    user_id: str
    billing_month: str
    plan: str
    status: str
    usage: dict[str, Any]
    billing: dict[str, Any]
    limits: dict[str, Any]
    daily_breakdown: list[dict[str, Any]]
    assistant_breakdown: list[dict[str, Any]]
    generated_at: datetime

    @classmethod
    def from_model(cls, invoice: Invoice) -> "InvoiceResponse":
        return cls(
            invoice_number=invoice.invoice_number,
            user_id=str(invoice.user_id),
            billing_month=invoice.billing_month,
            plan=invoice.plan,
            status=invoice.status,
            usage=invoice.usage,
            billing=invoice.billing,
            limits=invoice.limits,
            daily_breakdown=invoice.daily_breakdown,
            assistant_breakdown=invoice.assistant_breakdown,
            generated_at=invoice.generated_at,
        )


class BatchEnqueuedResponse(BaseModel):
    billing_month: str
    job_id: str | None
    enqueued: bool


# ----- Identities -----


class IdentityResponse(BaseModel):
    internal_id: str
    billing_customer_id: str | None = None
    crm_contact_id: str | None = None
    voice_platform_user_id: str | None = None


class ResolvedIdentityResponse(BaseModel):
    platform: str
    external_id: str
    internal_id: str


class AssistantBindRequest(APIRequestModel):
    user_id: UUID
    name: str | None = Field(default=None, max_length=255)


class AssistantOwnerResponse(BaseModel):
    assistant_id: str
    user_id: str


class DirectoryEntryRequest(APIRequestModel):
    """One row of the identity directory, keyed by the internal id in the path."""

    email: str = Field(..., min_length=3, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    plan: str | None = Field(default=None, max_length=50)
    subscription_started_at: datetime | None = None
    billing_customer_id: str | None = Field(default=None, max_length=255)
    crm_contact_id: str | None = Field(default=None, max_length=255)
    voice_platform_user_id: str | None = Field(default=None, max_length=255)
