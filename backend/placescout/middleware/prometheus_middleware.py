"""
Prometheus metrics middleware for HTTP request tracking.
"""

import re
import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..monitoring.prometheus_metrics import PrometheusMetrics

_ULID_SEGMENT = re.compile(r"^[0-9A-HJKMNP-TV-Z]{26}$")


def endpoint_label(raw_path: str) -> str:
    """Collapse id segments so label cardinality stays bounded.

    Example: /api/ingest/jobs/01J9Z3F6Q4W8M2K7V5X1T0R3YB -> /api/ingest/jobs/:id
    """
    return "/".join(
        ":id" if segment.isdigit() or _ULID_SEGMENT.match(segment) else segment
        for segment in raw_path.split("/")
    )


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Duration, status code and in-progress count per endpoint."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = endpoint_label(request.url.path)

        PrometheusMetrics.track_http_request_start(method, path)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
            PrometheusMetrics.record_http_request(
                method=method,
                endpoint=path,
                duration=time.perf_counter() - start_time,
                status_code=response.status_code,
            )
            return response
        finally:
            PrometheusMetrics.track_http_request_end(method, path)
