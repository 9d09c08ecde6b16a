"""
Request Logging Middleware
One log line per control-API call, tagged with a request id
"""
import logging
import time
import uuid

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by monitors, so kept at DEBUG
QUIET_PATHS = ("/health",)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Times each request and echoes (or assigns) an X-Request-ID."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)

        elapsed_ms = round((time.perf_counter() - started) * 1000, 2)
        path = request.url.path
        logger.log(
            logging.DEBUG if path in QUIET_PATHS else logging.INFO,
            f"[{request_id}] {request.method} {path} -> {response.status_code} in {elapsed_ms}ms",
            extra={"request_id": request_id, "status_code": response.status_code, "duration_ms": elapsed_ms},
        )
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
