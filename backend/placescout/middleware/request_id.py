# backend/placescout/middleware/request_id.py
"""
Binds an operation id for every HTTP request.

An incoming X-Request-ID header is reused; otherwise a ULID is generated.
The id is stamped on every log record of the request and echoed back.
"""

from collections.abc import Awaitable, Callable
import logging
import time

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.constants import REQUEST_ID_HEADER
from ..core.request_context import reset_operation_id, set_operation_id
from ..core.ulid_helper import generate_ulid

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 5000


class RequestIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or generate_ulid()
        request.state.request_id = request_id
        token = set_operation_id(request_id)
        start_time = time.perf_counter()
        try:
            response = await call_next(request)
        finally:
            reset_operation_id(token)

        process_time = (time.perf_counter() - start_time) * 1000
        response.headers[REQUEST_ID_HEADER] = request_id
        if process_time > SLOW_REQUEST_MS:
            logger.warning(
                f"Slow request: {request.method} {request.url.path} took {process_time:.2f}ms"
            )
        return response
