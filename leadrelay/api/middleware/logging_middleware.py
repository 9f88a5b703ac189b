"""
Request logging middleware.

Binds a correlation id to each request so every log line and LogContext
created while serving it carries the same id. The id is echoed back in
``X-Correlation-ID``; callers may supply their own.
"""

import time
from collections.abc import Callable
from typing import Any

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from leadrelay.core.shared.logger import (
    get_api_logger,
    new_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)

logger = get_api_logger("requests")

CORRELATION_HEADER = "X-Correlation-ID"


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Logs one line per request with method, path, status and duration.

    Health probes are served with a correlation id but not logged.
    """

    QUIET_SUFFIXES: tuple[str, ...] = ("/health", "/favicon.ico")

    def _is_quiet(self, path: str) -> bool:
        return path.endswith(self.QUIET_SUFFIXES)

    async def dispatch(self, request: Request, call_next: Callable[[Request], Any]) -> Response:
        correlation_id = request.headers.get(CORRELATION_HEADER) or new_correlation_id("req")
        request.state.correlation_id = correlation_id
        token = set_correlation_id(correlation_id)
        log = logger.with_context(method=request.method, path=request.url.path)
        started = time.perf_counter()

        try:
            try:
                response = await call_next(request)
            except Exception as e:
                log.error(
                    "Request failed",
                    duration_ms=round((time.perf_counter() - started) * 1000, 2),
                    error=str(e),
                )
                raise

            duration_ms = round((time.perf_counter() - started) * 1000, 2)
            response.headers[CORRELATION_HEADER] = correlation_id
            response.headers["X-Response-Time-Ms"] = f"{duration_ms:.2f}"

            if not self._is_quiet(request.url.path):
                fields = {
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                    "client": _client_ip(request),
                }
                if response.status_code >= 400:
                    log.warning(f"{request.method} {request.url.path} -> {response.status_code}", **fields)
                else:
                    log.info(f"{request.method} {request.url.path} -> {response.status_code}", **fields)
            return response
        finally:
            reset_correlation_id(token)


def _client_ip(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"
