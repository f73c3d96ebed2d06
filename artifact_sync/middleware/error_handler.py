"""
Global Error Handler Middleware
Catches unhandled exceptions and returns structured JSON error responses

Sync failures normally come back as a SyncProgress; anything that still
escapes a route is mapped here.
"""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from artifact_sync.services.sync.errors import PersistenceError, SyncError

logger = logging.getLogger(__name__)


def status_for(exc: Exception) -> int:
    """HTTP status for an exception that escaped a route."""
    if isinstance(exc, PersistenceError):
        return 503  # Storage unavailable, caller may retry
    if isinstance(exc, SyncError):
        return 502  # Upstream provider problem
    return 500


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handler middleware.
    Catches all unhandled exceptions and returns JSON error responses.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            status_code = status_for(exc)
            logger.error(
                f"Unhandled {type(exc).__name__} during {request.method} {request.url.path}",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "request_id": getattr(request.state, "request_id", None),
                    "client_host": request.client.host if request.client else None
                }
            )

            return JSONResponse(
                status_code=status_code,
                content={
                    "detail": "Internal server error" if status_code == 500 else str(exc),
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
