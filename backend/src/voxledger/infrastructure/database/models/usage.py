"""Usage ledger, snapshot and reconciliation models."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Float, ForeignKey, Index, Integer, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from voxledger.infrastructure.database.models.base import Base, JSONType


class UsageChannel(str, Enum):
    """How a billed interaction reached the voice platform."""

    ASSISTANT = "assistant"
    WORKFLOW = "workflow"


class UsageRecord(Base):
    """One billed call or workflow execution.

    Append-only: rows are never updated or deleted, and call_id is unique so
    redelivered events cannot be counted twice. This table is the source of
    truth for every aggregate and invoice.
    """

    __tablename__ = "usage_records"
    __table_args__ = (
        Index("ix_usage_records_user_started_at", "user_id", "started_at"),
        Index("ix_usage_records_user_billing_month", "user_id", "billing_month"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    call_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    assistant_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    channel: Mapped[UsageChannel] = mapped_column(String(20), nullable=False)

    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ended_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    duration_seconds: Mapped[float] = mapped_column(Float, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False)

    cost: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    billing_month: Mapped[str] = mapped_column(String(7), nullable=False)  # YYYY-MM

    event_metadata: Mapped[dict[str, Any]] = mapped_column(
        "metadata", JSONType, default=dict, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<UsageRecord {self.call_id} {self.duration_minutes}min>"


class UserUsageSnapshot(Base):
    """Running counters for a user's current billing month.

    A cache over usage_records for cheap limit checks. Only ever changed with
    single-statement atomic updates, and rebuilt from the ledger on demand.
    """

    __tablename__ = "user_usage_snapshots"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    billing_month: Mapped[str] = mapped_column(String(7), nullable=False)
    monthly_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_calls: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    assistant_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    workflow_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_reset_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_activity_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<UserUsageSnapshot {self.user_id} {self.billing_month} {self.monthly_minutes}min>"


class UnattributedEvent(Base):
    """Usage event whose owner could not be resolved at ingestion time."""

    __tablename__ = "unattributed_events"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    event_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    resolved_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    last_attempted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self) -> str:
        return f"<UnattributedEvent {self.event_id}>"
