"""
middleware/request_logger.py

One structured log line per request, written when the response is known.
Level follows the status class: error for 5xx, warning for 4xx, info otherwise.
"""

from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from ..core.context import get_request_context

logger = logging.getLogger(__name__)


def level_for_status(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        ctx = get_request_context(request)
        started = time.perf_counter()
        response: Response = await call_next(request)
        latency_ms = round((time.perf_counter() - started) * 1000.0, 3)

        (ctx.logger or logger).log(
            level_for_status(response.status_code),
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={"status": response.status_code, "latencyMs": latency_ms},
        )
        return response
