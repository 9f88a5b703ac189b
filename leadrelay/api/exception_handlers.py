"""
Exception handlers for FastAPI application.

Every error response shares one JSON shape:
``{"error": true, "message": ..., "status_code": ...}``.
"""

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from leadrelay.core.domain.errors import CircuitOpenError, ErrorKind, MessagingError

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.RATE_LIMIT: status.HTTP_429_TOO_MANY_REQUESTS,
    ErrorKind.PROVIDER_API: status.HTTP_502_BAD_GATEWAY,
}


def status_for_error(exc: MessagingError) -> int:
    """HTTP status used to surface a messaging error."""
    if isinstance(exc, CircuitOpenError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return _STATUS_BY_KIND.get(exc.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


async def http_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle HTTPException with consistent response format."""
    http_exc = exc if isinstance(exc, HTTPException) else HTTPException(status_code=500, detail=str(exc))
    return JSONResponse(
        status_code=http_exc.status_code,
        content={
            "error": True,
            "message": http_exc.detail,
            "status_code": http_exc.status_code,
        },
        headers=http_exc.headers,
    )


async def validation_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle request validation errors with detailed error messages."""
    if not isinstance(exc, RequestValidationError):
        return JSONResponse(
            status_code=422,
            content={"error": True, "message": str(exc), "status_code": 422},
        )

    errors = [
        {
            "field": ".".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(f"Validation error on {request.url.path}: {errors}")

    return JSONResponse(
        status_code=422,
        content={
            "error": True,
            "message": "Validation error",
            "details": errors,
            "status_code": 422,
        },
    )


async def messaging_error_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handle MessagingError raised out of a route."""
    if not isinstance(exc, MessagingError):
        return await global_exception_handler(request, exc)

    status_code = status_for_error(exc)
    logger.warning(f"{exc.kind.value} error on {request.url.path}: {exc.message}")

    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after:
        headers = {"Retry-After": str(max(1, int(retry_after)))}

    return JSONResponse(
        status_code=status_code,
        content={
            "error": True,
            "message": exc.message,
            "code": exc.code,
            "kind": exc.kind.value,
            "retryable": exc.retryable,
            "details": exc.details,
            "status_code": status_code,
        },
        headers=headers,
    )


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Handle all unhandled exceptions.

    Logs the full exception with traceback and returns a safe error response.
    """
    logger.error(
        f"Unhandled exception on {request.method} {request.url.path}: {exc!s}",
        exc_info=exc,
    )

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": True,
            "message": "Internal server error",
            "status_code": status.HTTP_500_INTERNAL_SERVER_ERROR,
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    """
    Register all exception handlers with the FastAPI application.

    Args:
        app: FastAPI application instance
    """
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(MessagingError, messaging_error_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    logger.info("Exception handlers registered")
