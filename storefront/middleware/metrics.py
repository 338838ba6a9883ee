import re
import time

from prometheus_client import Counter, Gauge, Histogram
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_COUNT = Counter(
    "storefront_http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "storefront_http_request_duration_seconds",
    "HTTP request latency",
    ["method", "path"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

REQUESTS_IN_PROGRESS = Gauge(
    "storefront_http_requests_in_progress",
    "HTTP requests currently being served",
    ["method"],
)

# Ids in paths would give every order its own label set.
_PATH_PATTERNS = [
    (re.compile(r"^/orders/\d+"), "/orders/{order_id}"),
    (re.compile(r"^/products/\d+"), "/products/{product_id}"),
    (re.compile(r"^/payments/\d+"), "/payments/{order_id}"),
]

_UNTRACKED_PATHS = ("/metrics", "/health")


def normalise_path(path: str) -> str:
    for pattern, replacement in _PATH_PATTERNS:
        path = pattern.sub(replacement, path)
    return path


class MetricsMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path.startswith(_UNTRACKED_PATHS):
            return await call_next(request)

        method = request.method
        path = normalise_path(request.url.path)
        status = "500"
        start = time.perf_counter()
        REQUESTS_IN_PROGRESS.labels(method=method).inc()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            REQUESTS_IN_PROGRESS.labels(method=method).dec()
            REQUEST_COUNT.labels(method=method, path=path, status=status).inc()
            REQUEST_LATENCY.labels(method=method, path=path).observe(time.perf_counter() - start)
