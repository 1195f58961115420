"""Invoice repository."""

from collections.abc import Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select

from voxledger.infrastructure.database.models.invoice import Invoice
from voxledger.infrastructure.database.repositories.base import BaseRepository


class InvoiceRepository(BaseRepository[Invoice]):
    """Repository for monthly invoices keyed by (user_id, billing_month)."""

    model_class = Invoice

    async def get_for(self, user_id: UUID, billing_month: str) -> Invoice | None:
        result = await self.session.execute(
            select(Invoice).where(
                Invoice.user_id == user_id,
                Invoice.billing_month == billing_month,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user(self, user_id: UUID) -> Sequence[Invoice]:
        result = await self.session.execute(
            select(Invoice)
            .where(Invoice.user_id == user_id)
            .order_by(Invoice.billing_month.desc())
        )
        return result.scalars().all()

    async def upsert(self, values: dict[str, Any]) -> Invoice:
        """Write the invoice, overwriting any earlier one for the same key."""
        overwritten = {
            key: value
            for key, value in values.items()
            if key not in {"user_id", "billing_month", "invoice_number"}
        }
        stmt = (
            self.upsert_statement()
            .values(**values)
            .on_conflict_do_update(
                index_elements=["user_id", "billing_month"],
                set_=overwritten,
            )
            .returning(Invoice.id)
        )
        result = await self.execute(stmt)
        invoice_id = result.scalar_one()

        # Drop any stale identity-map copy so callers see the new row
        invoice = await self.session.get(Invoice, invoice_id, populate_existing=True)
        assert invoice is not None
        return invoice
