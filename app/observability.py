import time

from prometheus_client import Counter, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

EVENTS_DISPATCHED = Counter(
    "feedback_events_dispatched_total",
    "Domain events whose targets were resolved and enqueued",
    ["event_type"],
)
EVENT_DISPATCH_FAILURES = Counter(
    "feedback_event_dispatch_failures_total",
    "Domain events whose processing raised and was swallowed at dispatch",
    ["event_type"],
)
HOOK_TARGETS_ENQUEUED = Counter(
    "feedback_hook_targets_enqueued_total",
    "Hook jobs enqueued per hook type",
    ["hook_type"],
)
HOOK_RESULTS = Counter(
    "feedback_hook_results_total",
    "Hook executions by outcome (success, retry, failed)",
    ["hook_type", "outcome"],
)
HTTP_REQUESTS = Counter(
    "feedback_http_requests_total",
    "HTTP requests handled",
    ["method", "status"],
)
HTTP_LATENCY = Histogram(
    "feedback_http_request_duration_seconds",
    "HTTP request latency",
    ["method"],
)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        status = 500
        try:
            response = await call_next(request)
            status = response.status_code
            return response
        finally:
            HTTP_REQUESTS.labels(request.method, str(status)).inc()
            HTTP_LATENCY.labels(request.method).observe(time.perf_counter() - start)
