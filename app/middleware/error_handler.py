"""
Global Error Handler Middleware
Catches all unhandled exceptions and returns structured error responses

Every error response uses the same envelope: {"success": false, "error": ...}
- SyncError subclasses map to their own status (AuthError 401, ProviderApiError 400, ...)
- Validation problems (bad body, unknown entity/kind, missing record) -> 400
- Anything else -> 500
"""
import logging
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from app.core.errors import RecordNotFound, SyncError

logger = logging.getLogger(__name__)


def error_response(status_code: int, error: str, **extra) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": error, **extra})


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    logger.warning(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
    status_code = exc.status_code if exc.status_code in (400, 401) else 500
    return error_response(status_code, exc.message, error_type=type(exc).__name__)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return error_response(exc.status_code, str(exc.detail))


async def validation_error_handler(request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        message = first.get("msg", "Invalid request body")
    else:
        message = str(exc)
    return error_response(400, message)


async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(f"Rate limit hit on {request.url.path}: {exc.detail}")
    return error_response(429, f"Rate limit exceeded: {exc.detail}")


def register_exception_handlers(app: FastAPI):
    """Install the envelope handlers on the app."""
    app.add_exception_handler(RateLimitExceeded, rate_limit_handler)
    app.add_exception_handler(SyncError, sync_error_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(ValueError, validation_error_handler)
    app.add_exception_handler(RecordNotFound, validation_error_handler)


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
            # Log the full exception with traceback
            logger.error(
                f"Unhandled exception during request",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "client_host": request.client.host if request.client else None
                }
            )

            return error_response(
                500,
                "Internal server error",
                error_type=type(exc).__name__,
                path=request.url.path
            )
