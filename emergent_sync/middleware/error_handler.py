"""
Global Error Handler Middleware
Maps sync pipeline errors to HTTP statuses and turns anything unhandled into a JSON 500
"""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from emergent_sync.core.errors import (
    ConnectionBusyError,
    DlpBlockedError,
    DlpConfigMissingError,
    PersistenceError,
    ProviderUnavailableError,
    SyncError,
    format_error_message,
)

logger = logging.getLogger(__name__)

# Most specific first
ERROR_STATUS_CODES = (
    (DlpBlockedError, 422),
    (DlpConfigMissingError, 503),
    (ConnectionBusyError, 409),
    (ProviderUnavailableError, 502),
    (PersistenceError, 503),
    (SyncError, 500),
)


def http_status_for(error: BaseException) -> int:
    """HTTP status a route should answer with for a sync pipeline error."""
    if isinstance(error, ProviderUnavailableError) and error.action == "reconnect":
        return 409  # the user must reconnect the provider
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return 500


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handler middleware.
    Catches all unhandled exceptions and returns JSON error responses.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except SyncError as exc:
            status_code = http_status_for(exc)
            logger.error(f"Sync error during {request.method} {request.url.path}: {exc}")
            return JSONResponse(
                status_code=status_code,
                content={
                    "detail": format_error_message(exc),
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
        except Exception as exc:
            logger.error(
                "Unhandled exception during request",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "client_host": request.client.host if request.client else None
                }
            )
            return JSONResponse(
                status_code=500,
                content={
                    "detail": "Internal server error",
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )
