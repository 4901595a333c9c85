"""Prometheus metrics for the generation gateway and its HTTP surface."""

import time

from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

# --- Metrics ---

APP_INFO = Info("mealgen", "Meal generation gateway info")
APP_INFO.info({"version": "0.3.0", "name": "mealgen"})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30],
)

PROVIDER_ATTEMPTS = Counter(
    "provider_attempts_total",
    "Adapter calls made by the orchestrator",
    ["provider", "kind", "outcome"],
)

PROVIDER_LATENCY = Histogram(
    "provider_call_duration_seconds",
    "Adapter call duration in seconds",
    ["provider"],
    buckets=[0.25, 0.5, 1, 2.5, 5, 10, 20, 40, 60, 120],
)

RECOVERY_STAGES = Counter(
    "recovery_stage_total",
    "Which recovery stage produced a structured result",
    ["stage"],
)

ORCHESTRATION_OUTCOMES = Counter(
    "orchestration_outcomes_total",
    "Terminal outcome of each orchestration run",
    ["kind", "outcome"],
)

THROTTLE_MARKS = Counter(
    "provider_throttle_marks_total",
    "Providers placed into cooldown after a throttling failure",
    ["provider"],
)


# --- Middleware ---


def _route_label(request: Request) -> str:
    """Route template (``/api/v1/meals/generate``) rather than the raw path; unmatched paths share one label."""
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Request count and duration per route template."""

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        path = _route_label(request)
        REQUEST_COUNT.labels(method=request.method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=request.method, path=path).observe(duration)
        return response


def metrics_response() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
