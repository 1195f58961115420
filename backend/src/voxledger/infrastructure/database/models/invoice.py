"""Monthly invoice model."""

from datetime import datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from voxledger.infrastructure.database.models.base import Base, JSONType


class Invoice(Base):
    """Frozen monthly bill for one user.

    A derived view over usage_records: regenerating for the same
    (user_id, billing_month) overwrites the row.
    """

    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("user_id", "billing_month", name="uq_invoices_user_month"),
    )

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    invoice_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )
    billing_month: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    plan: Mapped[str] = mapped_column(String(50), nullable=False)

    usage: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    billing: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    limits: Mapped[dict[str, Any]] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    daily_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)
    assistant_breakdown: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False)

    generated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}>"
