"""Health check endpoints."""

from typing import Any, cast

from fastapi import APIRouter, Request
from pydantic import BaseModel
from sqlalchemy import literal, select

from voxledger.config import get_settings
from voxledger.infrastructure.database.connection import SessionDep
from voxledger.shared.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["Health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    redis: str


class ReadyResponse(BaseModel):
    """Readiness check response."""

    ready: bool
    checks: dict[str, bool]


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check - always returns OK if service is running."""
    from voxledger import __version__

    return HealthResponse(
        status="healthy",
        version=__version__,
        database="not_checked",
        redis="not_checked",
    )


@router.get("/ready", response_model=ReadyResponse)
async def readiness_check(request: Request, session: SessionDep) -> ReadyResponse:
    """Readiness check - verifies the database and the job queue are reachable."""
    checks: dict[str, bool] = {}

    try:
        await session.execute(select(literal(1)))
        checks["database"] = True
    except Exception as e:
        logger.warning("database_health_check_failed", error=str(e))
        checks["database"] = False

    try:
        import redis.asyncio as redis

        redis_client = getattr(request.app.state, "redis_client", None)
        if redis_client is None:
            redis_client = cast(Any, redis.from_url)(str(get_settings().redis_url))
            request.app.state.redis_client = redis_client
        await redis_client.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("redis_health_check_failed", error=str(e))
        checks["redis"] = False

    return ReadyResponse(ready=all(checks.values()), checks=checks)
