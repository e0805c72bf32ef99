"""
FastAPI middleware: records HTTP latency / count / status code and opens a trace span per request.
"""

import time
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from src.observability.metrics import metrics
from src.observability.tracing import tracer

# fixed segments under /indexing that are not project ids
_INDEXING_STATIC = {"start", "states", "project-id"}


def _normalize_path(path: str) -> str:
    """
    Replace project ids with a placeholder to keep metric cardinality bounded.
    e.g. /indexing/acme_tower/stream -> /indexing/{id}/stream
    """
    parts = path.strip("/").split("/")
    normalized = []
    for i, part in enumerate(parts):
        if i > 0 and parts[i - 1] == "indexing" and part not in _INDEXING_STATIC:
            normalized.append("{id}")
        else:
            normalized.append(part)
    return "/" + "/".join(normalized)


class ObservabilityMiddleware(BaseHTTPMiddleware):
    """Per-request latency and count metrics plus a trace span."""

    async def dispatch(self, request: Request, call_next):
        method = request.method
        path = _normalize_path(request.url.path)

        # /metrics and /health would only measure themselves
        if request.url.path in ("/metrics", "/health"):
            return await call_next(request)

        with tracer.start_as_current_span(
            f"{method} {path}",
            attributes={"http.method": method, "http.url": str(request.url)},
        ) as span:
            start = time.perf_counter()
            response: Response = await call_next(request)
            elapsed = time.perf_counter() - start

            status_code = str(response.status_code)
            span.set_attribute("http.status_code", response.status_code)

            metrics.http_requests_total.labels(
                method=method, endpoint=path, status_code=status_code
            ).inc()
            metrics.http_request_duration_seconds.labels(
                method=method, endpoint=path
            ).observe(elapsed)

            return response
