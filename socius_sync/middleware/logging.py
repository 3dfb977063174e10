"""
Socius Sync — Request Logging Middleware
==========================================

What:  One access-log line per request: method, path, status, duration,
       request id and client address.
Who:   Every request except the paths in QUIET_PATHS (health checks).

Request bodies are never logged: the passwords collection carries
credentials.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from socius_sync.middleware.request_id import request_id_var

logger = logging.getLogger("socius_sync.access")

QUIET_PATHS = frozenset({"/health"})


def level_for_status(status: int) -> int:
    """5xx ERROR, 4xx WARNING, otherwise INFO."""
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        logger.log(
            level_for_status(response.status_code),
            "[%s] %s %s -> %d (%.1fms) client=%s",
            request_id_var.get(""),
            request.method,
            request.url.path,
            response.status_code,
            elapsed_ms,
            request.client.host if request.client else "unknown",
        )
        return response
