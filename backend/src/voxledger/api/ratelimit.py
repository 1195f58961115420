"""Rate limiting for the query surface.

Uses slowapi with Redis storage in production so limits hold across
workers; in-memory storage everywhere else.
"""

from fastapi import Request, Response
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.responses import JSONResponse

from voxledger.config import get_settings
from voxledger.shared.logging import get_logger

logger = get_logger(__name__)

# Dashboard reads
RATE_LIMIT_DEFAULT = "100/minute"
# Invoice generation re-reads a whole month of ledger
RATE_LIMIT_INVOICE = "20/minute"
RATE_LIMIT_HEALTH = "60/minute"


def _create_limiter(storage_uri: str = "memory://") -> Limiter:
    return Limiter(
        key_func=get_remote_address,
        storage_uri=storage_uri,
        strategy="fixed-window",
    )


def _storage_uri() -> str:
    settings = get_settings()
    if settings.is_production:
        return str(settings.redis_url)
    return "memory://"


# Route decorators bind to this instance at import time
limiter = _create_limiter(_storage_uri())


def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Return 429 with a Retry-After header."""
    logger.warning(
        "rate_limit_exceeded",
        path=request.url.path,
        method=request.method,
        key=get_remote_address(request),
        limit=str(exc.detail),
    )
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        status_code=429,
        content={
            "error": "too_many_requests",
            "message": "Too many requests, please retry shortly",
            "detail": str(exc.detail),
            "retry_after": retry_after,
        },
        headers={"Retry-After": str(retry_after)},
    )
