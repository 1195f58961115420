"""Monthly invoice generation.

An invoice is a frozen, derived view: usage is always re-read from the
ledger, never from the snapshot cache, and regenerating an invoice for the
same (user, month) overwrites the earlier row. Limits and status are
evaluated against the user's plan at generation time.
"""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voxledger.config import Settings
from voxledger.domain.billing.calculator import BillingCalculator
from voxledger.domain.billing.limits import evaluate_minutes, limits_for, normalize_plan
from voxledger.domain.usage.aggregator import UsageAggregator
from voxledger.infrastructure.database.models.invoice import Invoice
from voxledger.infrastructure.database.repositories.identity import AssistantRepository
from voxledger.infrastructure.database.repositories.invoice import InvoiceRepository
from voxledger.infrastructure.database.repositories.usage import UsageLedgerRepository
from voxledger.infrastructure.database.repositories.user import UserRepository
from voxledger.observability.metrics import INVOICES_GENERATED
from voxledger.shared.exceptions import NotFoundError
from voxledger.shared.logging import get_logger
from voxledger.shared.periods import parse_billing_month, utcnow

logger = get_logger(__name__)


def invoice_number_for(user_id: UUID, billing_month: str) -> str:
    return f"vox-{user_id}-{billing_month}"


class InvoiceGenerator:
    """Build and store the invoice for one user and month."""

    def __init__(
        self,
        aggregator: UsageAggregator,
        ledger_repo: UsageLedgerRepository,
        user_repo: UserRepository,
        invoice_repo: InvoiceRepository,
        settings: Settings,
    ) -> None:
        self.aggregator = aggregator
        self.ledger_repo = ledger_repo
        self.user_repo = user_repo
        self.invoice_repo = invoice_repo
        self.settings = settings
        self.calculator = BillingCalculator(settings.billing_currency)

    @classmethod
    def for_session(cls, session: AsyncSession, settings: Settings) -> "InvoiceGenerator":
        ledger_repo = UsageLedgerRepository(session)
        user_repo = UserRepository(session)
        return cls(
            aggregator=UsageAggregator(ledger_repo, AssistantRepository(session), user_repo),
            ledger_repo=ledger_repo,
            user_repo=user_repo,
            invoice_repo=InvoiceRepository(session),
            settings=settings,
        )

    async def generate(
        self,
        user_id: UUID,
        billing_month: str,
        now: datetime | None = None,
    ) -> Invoice:
        """Re-derive usage for the month and write the invoice.

        Every field except generated_at depends only on the ledger contents
        and the user's plan, so regenerating yields the same invoice.
        """
        parse_billing_month(billing_month)
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User", str(user_id))

        totals = await self.aggregator.aggregate_month(user_id, billing_month)
        daily = await self.aggregator.aggregate_daily(user_id, billing_month)
        assistants = await self.aggregator.aggregate_by_channel_entity(user_id, billing_month)

        limits = limits_for(user.plan)
        evaluation = evaluate_minutes(totals.minutes, limits)
        billing = self.calculator.compute_cost(
            totals.assistant_minutes,
            totals.workflow_minutes,
            limits,
            self.settings.assistant_rate_per_minute,
            self.settings.workflow_rate_per_minute,
        )

        usage: dict[str, Any] = totals.as_dict()
        usage["recorded_cost"] = usage.pop("cost")

        invoice = await self.invoice_repo.upsert(
            {
                "invoice_number": invoice_number_for(user_id, billing_month),
                "user_id": user_id,
                "billing_month": billing_month,
                "plan": normalize_plan(user.plan) or user.plan,
                "usage": usage,
                "billing": billing.as_dict(),
                "limits": {
                    **limits.as_dict(),
                    "percent_used": evaluation.percent_used,
                    "minutes_remaining": evaluation.minutes_remaining,
                },
                "status": evaluation.status.value,
                "daily_breakdown": [day.as_dict() for day in daily],
                "assistant_breakdown": [entry.as_dict() for entry in assistants],
                "generated_at": now or utcnow(),
            }
        )

        INVOICES_GENERATED.labels(outcome="success").inc()
        logger.info(
            "invoice_generated",
            user_id=str(user_id),
            billing_month=billing_month,
            invoice_number=invoice.invoice_number,
            total_minutes=totals.minutes,
            total_cost=str(billing.total_cost),
            status=evaluation.status.value,
        )
        return invoice

    async def get(self, user_id: UUID, billing_month: str) -> Invoice:
        parse_billing_month(billing_month)
        invoice = await self.invoice_repo.get_for(user_id, billing_month)
        if invoice is None:
            raise NotFoundError("Invoice", invoice_number_for(user_id, billing_month))
        return invoice

    async def list_for_user(self, user_id: UUID) -> Sequence[Invoice]:
        return await self.invoice_repo.list_for_user(user_id)

    async def list_users_with_activity(self, billing_month: str) -> list[UUID]:
        """Users with at least one ledger record in the month, in stable order."""
        parse_billing_month(billing_month)
        users = await self.ledger_repo.users_with_activity(billing_month)
        return sorted(users, key=str)


@dataclass
class BatchReport:
    """Result of one invoice batch."""

    billing_month: str
    generated: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return len(self.generated) + len(self.failed)

    def as_dict(self) -> dict[str, Any]:
        return {
            "billing_month": self.billing_month,
            "generated": len(self.generated),
            "failed": {str(user_id): error for user_id, error in self.failed.items()},
        }


class InvoiceBatchRunner:
    """Generate invoices for every active user of a month.

    Each user gets its own session and transaction, and at most
    ``invoice_batch_concurrency`` users are processed at once. A failure for
    one user is logged and reported; the rest of the batch carries on.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings

    async def _active_users(self, billing_month: str) -> list[UUID]:
        async with self.session_factory() as session:
            generator = InvoiceGenerator.for_session(session, self.settings)
            return await generator.list_users_with_activity(billing_month)

    async def _generate_one(
        self,
        user_id: UUID,
        billing_month: str,
        semaphore: asyncio.Semaphore,
        report: BatchReport,
    ) -> None:
        async with semaphore:
            try:
                async with self.session_factory() as session:
                    generator = InvoiceGenerator.for_session(session, self.settings)
                    await generator.generate(user_id, billing_month)
                    await session.commit()
                report.generated.append(user_id)
            except Exception as e:
                INVOICES_GENERATED.labels(outcome="failed").inc()
                logger.exception(
                    "invoice_generation_failed",
                    user_id=str(user_id),
                    billing_month=billing_month,
                    error=str(e),
                )
                report.failed[user_id] = str(e)

    async def run(self, billing_month: str) -> BatchReport:
        parse_billing_month(billing_month)
        user_ids = await self._active_users(billing_month)
        report = BatchReport(billing_month=billing_month)
        semaphore = asyncio.Semaphore(self.settings.invoice_batch_concurrency)

        logger.info("invoice_batch_started", billing_month=billing_month, users=len(user_ids))

        size = self.settings.invoice_batch_size
        for offset in range(0, len(user_ids), size):
            chunk = user_ids[offset : offset + size]
            await asyncio.gather(
                *(
                    self._generate_one(user_id, billing_month, semaphore, report)
                    for user_id in chunk
                )
            )

        logger.info(
            "invoice_batch_completed",
            billing_month=billing_month,
            generated=len(report.generated),
            failed=len(report.failed),
        )
        return report
