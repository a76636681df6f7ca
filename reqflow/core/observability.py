"""
Prometheus instrumentation for the request approval API.

HTTP traffic is labelled by route template (``/api/requests/{request_id}/approve``)
rather than raw path, so request ids never become label values.
"""

from __future__ import annotations

import time

from fastapi import Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware

http_requests_total = Counter(
    "http_server_requests_total",
    "Total HTTP requests",
    ["method", "route", "status"],
)

http_request_duration_seconds = Histogram(
    "http_server_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "route"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

http_exceptions_total = Counter(
    "http_server_exceptions_total",
    "Total unhandled exceptions",
    ["method", "route", "exception_type"],
)

workflow_decisions_total = Counter(
    "workflow_decisions_total",
    "Approval workflow decisions recorded",
    ["request_type", "action"],
)

workflow_conflicts_total = Counter(
    "workflow_conflicts_total",
    "Workflow writes rejected because another writer got there first",
    ["operation"],
)

workflow_pending_requests = Gauge(
    "workflow_pending_requests",
    "Number of requests waiting for a decision",
)

UNMATCHED_ROUTE = "unmatched"


def route_template(request: Request) -> str:
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        start = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            route = route_template(request)
            http_exceptions_total.labels(method=method, route=route, exception_type=type(exc).__name__).inc()
            http_requests_total.labels(method=method, route=route, status="500").inc()
            http_request_duration_seconds.labels(method=method, route=route).observe(time.perf_counter() - start)
            raise

        # The router stores the matched route in the shared scope.
        route = route_template(request)
        http_requests_total.labels(method=method, route=route, status=str(response.status_code)).inc()
        http_request_duration_seconds.labels(method=method, route=route).observe(time.perf_counter() - start)
        return response


async def metrics_endpoint(request: Request) -> Response:
    return PlainTextResponse(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


def update_pending_metric(pending: int) -> None:
    workflow_pending_requests.set(pending)
