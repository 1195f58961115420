"""Generate invoices for every user with usage in a billing month.

Runs the same batch as the worker's generate_invoices_job, without Redis.
Safe to re-run: each invoice is overwritten with freshly derived values.

Usage:
    cd backend
    python scripts/generate_monthly_invoices.py 2025-01
    python scripts/generate_monthly_invoices.py          # previous month
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from voxledger.config import get_settings
from voxledger.domain.billing.invoices import BatchReport, InvoiceBatchRunner
from voxledger.shared.logging import setup_logging
from voxledger.shared.periods import current_billing_month, previous_billing_month


async def _generate(billing_month: str) -> BatchReport:
    settings = get_settings()
    engine = create_async_engine(
        str(settings.database_url),
        pool_pre_ping=True,
    )
    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        return await InvoiceBatchRunner(session_factory, settings).run(billing_month)
    finally:
        await engine.dispose()


def main() -> None:
    setup_logging()
    billing_month = (
        sys.argv[1] if len(sys.argv) > 1 else previous_billing_month(current_billing_month())
    )
    report = asyncio.run(_generate(billing_month))
    print(
        f"{billing_month}: generated {len(report.generated)} invoice(s), "
        f"{len(report.failed)} failed."
    )
    for user_id, error in report.failed.items():
        print(f"  {user_id}: {error}")
    if report.failed:
        sys.exit(1)


if __name__ == "__main__":
    main()
