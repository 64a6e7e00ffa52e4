"""Prometheus metrics helpers and middleware."""

from __future__ import annotations

from time import perf_counter

from fastapi import FastAPI, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request


_HTTP_REQUEST_COUNT = Counter(
    "photobook_http_requests_total",
    "Total HTTP requests processed by service",
    labelnames=("service", "method", "route", "status"),
)

_HTTP_REQUEST_LATENCY = Histogram(
    "photobook_http_request_duration_seconds",
    "Latency of HTTP requests",
    labelnames=("service", "method", "route"),
)

_PHASE_DURATION = Histogram(
    "photobook_phase_duration_seconds",
    "Duration of generation phases",
    labelnames=("service", "phase"),
)

_PHASE_COUNTER = Counter(
    "photobook_phase_runs_total",
    "Count of generation phases by outcome",
    labelnames=("service", "phase", "status"),
)

_REMOTE_CALLS = Counter(
    "photobook_remote_calls_total",
    "Remote generation calls by kind and outcome",
    labelnames=("service", "kind", "outcome"),
)

_REMOTE_LATENCY = Histogram(
    "photobook_remote_call_latency_seconds",
    "Latency of remote generation calls",
    labelnames=("service", "kind"),
)

_CHUNK_ITEMS = Counter(
    "photobook_chunk_items_total",
    "Items processed by batched runners",
    labelnames=("service", "runner", "outcome"),
)

_ACTIVE_RUNS = Gauge(
    "photobook_active_runs",
    "Pipelines and upload drains currently active",
    labelnames=("service", "kind"),
)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect request metrics for FastAPI services."""

    def __init__(self, app: FastAPI, service_name: str) -> None:
        super().__init__(app)
        self.service_name = service_name

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        start = perf_counter()
        response = await call_next(request)
        elapsed = perf_counter() - start

        route_template = request.url.path
        route = request.scope.get("route")
        if route and getattr(route, "path", None):
            route_template = route.path  # type: ignore[assignment]

        method = request.method
        status = getattr(response, "status_code", 500)

        _HTTP_REQUEST_COUNT.labels(self.service_name, method, route_template, str(status)).inc()
        _HTTP_REQUEST_LATENCY.labels(self.service_name, method, route_template).observe(elapsed)
        return response


def setup_fastapi_metrics(app: FastAPI, service_name: str, endpoint: str = "/metrics") -> None:
    """Register Prometheus middleware and metrics endpoint for a FastAPI app."""

    if getattr(app.state, "metrics_configured", False):
        return

    app.add_middleware(PrometheusMiddleware, service_name=service_name)

    @app.get(endpoint, include_in_schema=False)
    async def _metrics_endpoint() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    app.state.metrics_configured = True


def observe_phase_duration(
    phase: str,
    duration_seconds: float,
    *,
    service_name: str,
    status: str = "success",
) -> None:
    """Record metrics for phase duration and outcome."""

    _PHASE_DURATION.labels(service_name, phase).observe(max(duration_seconds, 0.0))
    _PHASE_COUNTER.labels(service_name, phase, status).inc()


def observe_remote_call(
    *,
    kind: str,
    outcome: str,
    service_name: str,
    latency_seconds: float | None = None,
) -> None:
    """Count a remote call (story, illustration, variant, caption, upload)."""

    _REMOTE_CALLS.labels(service_name, kind, outcome).inc()
    if latency_seconds is not None and latency_seconds >= 0:
        _REMOTE_LATENCY.labels(service_name, kind).observe(latency_seconds)


def observe_chunk(*, runner: str, succeeded: int, failed: int, service_name: str) -> None:
    if succeeded:
        _CHUNK_ITEMS.labels(service_name, runner, "success").inc(succeeded)
    if failed:
        _CHUNK_ITEMS.labels(service_name, runner, "error").inc(failed)


def track_active(kind: str, *, service_name: str, delta: int) -> None:
    gauge = _ACTIVE_RUNS.labels(service_name, kind)
    if delta >= 0:
        gauge.inc(delta)
    else:
        gauge.dec(-delta)
