"""
Global Error Handler Middleware
Turns exceptions that escape a route into JSON bodies
"""
import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from hbsync.core.exceptions import ProcoreAPIError

logger = logging.getLogger(__name__)


def error_response(request: Request, exc: Exception) -> JSONResponse:
    """502 for Procore failures (with the upstream status), 500 for anything else."""
    body = {"error_type": type(exc).__name__, "path": request.url.path}
    if isinstance(exc, ProcoreAPIError):
        body = {"detail": exc.describe(), **body, "upstream_status": exc.status_code}
        return JSONResponse(status_code=502, content=body)
    return JSONResponse(status_code=500, content={"detail": "Internal server error", **body})


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            request_id = getattr(request.state, "request_id", "-")
            logger.error(
                f"💥 [{request_id}] {request.method} {request.url.path} failed: {type(exc).__name__}: {exc}",
                exc_info=True,
            )
            return error_response(request, exc)
