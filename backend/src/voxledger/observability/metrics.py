"""Prometheus metrics instrumentation for FastAPI and the billing engine."""

import time
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, Request
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.responses import Response

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status_code"],
)
REQUEST_LATENCY = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
)
REQUEST_IN_PROGRESS = Gauge(
    "http_requests_in_progress",
    "In-progress HTTP requests",
    ["method"],
)

# ----- Billing engine -----

USAGE_EVENTS = Counter(
    "voxledger_usage_events_total",
    "Usage events processed by type and outcome",
    ["event_type", "outcome"],
)
USAGE_MINUTES = Counter(
    "voxledger_usage_minutes_total",
    "Billable minutes recorded in the ledger",
    ["channel"],
)
UNATTRIBUTED_EVENTS = Counter(
    "voxledger_unattributed_events_total",
    "Events that could not be attributed to a user",
    ["reason"],
)
USAGE_ALERTS = Counter(
    "voxledger_usage_alerts_total",
    "Limit status escalations emitted",
    ["status"],
)
INVOICES_GENERATED = Counter(
    "voxledger_invoices_total",
    "Invoice generation attempts by outcome",
    ["outcome"],
)


def _get_route_path(request: Request) -> str:
    route: Any | None = request.scope.get("route")
    path = getattr(route, "path", None) if route is not None else None
    if isinstance(path, str) and path:
        return path
    return "unknown"


def setup_metrics(app: FastAPI) -> None:
    """Attach Prometheus metrics and /metrics endpoint to the app."""

    @app.middleware("http")
    async def metrics_middleware(
        request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        method = request.method
        REQUEST_IN_PROGRESS.labels(method=method).inc()
        start = time.perf_counter()
        response = None
        try:
            response = await call_next(request)
            return response
        finally:
            duration = time.perf_counter() - start
            path = _get_route_path(request)
            status_code = str(response.status_code) if response else "500"
            REQUEST_LATENCY.labels(method=method, path=path).observe(duration)
            REQUEST_COUNT.labels(method=method, path=path, status_code=status_code).inc()
            REQUEST_IN_PROGRESS.labels(method=method).dec()

    @app.get("/metrics")
    async def metrics() -> Response:
        data = generate_latest()
        return Response(content=data, media_type=CONTENT_TYPE_LATEST)
