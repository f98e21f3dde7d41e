from __future__ import annotations

"""Prometheus metrics for the tenantdesk service.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for the token, AI and report pipelines.
"""

import time
from typing import Callable, Awaitable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "tenantdesk_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

TOKEN_EVENTS = Counter(
    "tenantdesk_token_events_total",
    "Capability token operations by kind and outcome",
    labelnames=("operation", "kind", "outcome"),
)

AI_ATTEMPTS = Counter(
    "tenantdesk_ai_attempts_total",
    "Outbound AI provider attempts by outcome",
    labelnames=("outcome",),
)

REPORT_JOBS = Counter(
    "tenantdesk_report_jobs_total",
    "Report jobs by terminal state",
    labelnames=("state",),
)

DELIVERIES = Counter(
    "tenantdesk_deliveries_total",
    "Outbound message deliveries by type and outcome",
    labelnames=("message_type", "outcome"),
)


def observe_token(operation: str, kind: str, outcome: str) -> None:
    try:
        TOKEN_EVENTS.labels(operation=operation, kind=kind, outcome=outcome).inc()
    except Exception:
        pass


def observe_ai_attempt(outcome: str) -> None:
    try:
        AI_ATTEMPTS.labels(outcome=outcome).inc()
    except Exception:
        pass


def observe_job(state: str) -> None:
    try:
        REPORT_JOBS.labels(state=state).inc()
    except Exception:
        pass


def observe_delivery(message_type: str, outcome: str) -> None:
    try:
        DELIVERIES.labels(message_type=message_type, outcome=outcome).inc()
    except Exception:
        pass


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths to a coarse label (first segment only)."""
    if not path:
        return "/"
    segs = path.split("?")[0].split("/")
    if len(segs) > 1:
        return "/" + segs[1]
    return path


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # Never block the request due to metrics
            pass
        return response

    return middleware
