"""Queue client for enqueuing background jobs."""

from typing import Any

from arq.connections import ArqRedis, RedisSettings, create_pool

from voxledger.config import get_settings
from voxledger.shared.logging import get_logger

logger = get_logger(__name__)

_pool: ArqRedis | None = None


async def get_queue_pool() -> ArqRedis:
    """Get or create the ARQ Redis connection pool."""
    global _pool
    if _pool is None:
        settings = get_settings()
        _pool = await create_pool(RedisSettings.from_dsn(str(settings.redis_url)))
    return _pool


async def close_queue_pool() -> None:
    """Close the queue pool connection."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def enqueue_job(
    job_name: str,
    *args: Any,
    _job_id: str | None = None,
    **kwargs: Any,
) -> str | None:
    """Enqueue a background job.

    Args:
        job_name: Name of the job function to execute
        *args: Positional arguments for the job
        _job_id: Optional deterministic job id; ARQ ignores a second enqueue
            while a job with the same id is queued or running
        **kwargs: Keyword arguments for the job

    Returns:
        Job ID if successfully enqueued, None otherwise
    """
    try:
        pool = await get_queue_pool()
        job = await pool.enqueue_job(job_name, *args, _job_id=_job_id, **kwargs)
        if job:
            logger.info(
                "job_enqueued",
                job_name=job_name,
                job_id=job.job_id,
            )
            return job.job_id
        logger.info("job_already_enqueued", job_name=job_name, job_id=_job_id)
        return None
    except Exception as e:
        logger.exception(
            "job_enqueue_failed",
            job_name=job_name,
            error=str(e),
        )
        return None


async def enqueue_invoice_batch(billing_month: str) -> str | None:
    """Enqueue invoice generation for every active user of a month."""
    return await enqueue_job(
        "generate_invoices_job",
        billing_month=billing_month,
        _job_id=f"invoices:{billing_month}",
    )
