"""Background worker using ARQ (async Redis queue).

Jobs:
- generate_invoices_job: invoices for every active user of a month
  (on demand, and on the 1st of each month for the month just ended)
- reset_snapshots_job: roll stale snapshots over to the current month (cron)
- reconcile_unattributed_job: retry attribution of parked events (cron)
"""

from dataclasses import dataclass
from typing import cast

from arq import cron
from arq.connections import RedisSettings
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from voxledger.config import Settings, get_settings
from voxledger.domain.billing.invoices import InvoiceBatchRunner
from voxledger.domain.factory import build_ingestor, build_snapshot_service
from voxledger.infrastructure.database.connection import dispose_engine, get_session_factory
from voxledger.shared.logging import get_logger, setup_logging
from voxledger.shared.periods import current_billing_month, previous_billing_month

logger = get_logger(__name__)


@dataclass
class JobContext:
    session_factory: async_sessionmaker[AsyncSession]
    settings: Settings


def _job_context(ctx: dict[str, object]) -> JobContext:
    return cast(JobContext, ctx["job_context"])


# ----- Job Functions -----


async def generate_invoices_job(
    ctx: dict[str, object],
    billing_month: str | None = None,
) -> dict[str, object]:
    """Generate invoices for a month; defaults to the month before the current one."""
    month = billing_month or previous_billing_month(current_billing_month())
    logger.info("job_started", job="generate_invoices", billing_month=month)

    try:
        job_ctx = _job_context(ctx)
        runner = InvoiceBatchRunner(job_ctx.session_factory, job_ctx.settings)
        report = await runner.run(month)

        logger.info(
            "job_completed",
            job="generate_invoices",
            billing_month=month,
            generated=len(report.generated),
            failed=len(report.failed),
        )
        return {"status": "completed", **report.as_dict()}

    except Exception as e:
        logger.exception(
            "job_failed",
            job="generate_invoices",
            billing_month=month,
            error=str(e),
        )
        return {"status": "failed", "billing_month": month, "error": str(e)}


async def reset_snapshots_job(ctx: dict[str, object]) -> dict[str, object]:
    """Daily cron job to zero snapshots still holding an earlier month."""
    logger.info("job_started", job="reset_snapshots")

    try:
        job_ctx = _job_context(ctx)
        async with job_ctx.session_factory() as session:
            count = await build_snapshot_service(session).reset_stale()
            await session.commit()

        logger.info("job_completed", job="reset_snapshots", snapshots_reset=count)
        return {"status": "completed", "snapshots_reset": count}

    except Exception as e:
        logger.exception("job_failed", job="reset_snapshots", error=str(e))
        return {"status": "failed", "error": str(e)}


async def reconcile_unattributed_job(ctx: dict[str, object]) -> dict[str, object]:
    """Hourly cron job to attribute parked events whose owner is now known."""
    logger.info("job_started", job="reconcile_unattributed")

    try:
        job_ctx = _job_context(ctx)
        async with job_ctx.session_factory() as session:
            ingestor = build_ingestor(session, job_ctx.settings)
            report = await ingestor.reconcile_unattributed()
            await session.commit()
            await ingestor.publish_alerts()

        logger.info("job_completed", job="reconcile_unattributed", **report.as_dict())
        return {"status": "completed", **report.as_dict()}

    except Exception as e:
        logger.exception("job_failed", job="reconcile_unattributed", error=str(e))
        return {"status": "failed", "error": str(e)}


# ----- Worker Settings -----


async def startup(ctx: dict[str, object]) -> None:
    """Initialize worker resources on startup."""
    setup_logging()
    logger.info("worker_starting")

    settings = get_settings()
    # Each job opens its own sessions from the shared factory
    ctx["job_context"] = JobContext(
        session_factory=get_session_factory(settings),
        settings=settings,
    )

    logger.info("worker_started")


async def shutdown(ctx: dict[str, object]) -> None:
    """Clean up worker resources on shutdown."""
    _ = ctx
    logger.info("worker_stopping")
    await dispose_engine()
    logger.info("worker_stopped")


def get_redis_settings() -> RedisSettings:
    """Get Redis settings from app config."""
    settings = get_settings()
    return RedisSettings.from_dsn(str(settings.redis_url))


class WorkerSettings:
    """ARQ worker settings."""

    functions = [
        generate_invoices_job,
        reset_snapshots_job,
        reconcile_unattributed_job,
    ]

    # Redis connection - must be a RedisSettings instance, not a method
    redis_settings = get_redis_settings()

    on_startup = startup
    on_shutdown = shutdown

    max_jobs = 10
    job_timeout = 1800  # a full invoice batch can take a while
    keep_result = 3600
    retry_jobs = True
    max_tries = 3

    cron_jobs = [
        # 1st of the month at 02:00 UTC - invoices for the month just ended
        cron(generate_invoices_job, day=1, hour=2, minute=0),
        # Daily at 00:05 UTC - roll snapshots into the new month
        cron(reset_snapshots_job, hour=0, minute=5),
        # Every hour - retry unattributed events
        cron(reconcile_unattributed_job, minute=30),
    ]
