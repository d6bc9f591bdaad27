"""
middleware/context.py

Context enrichment: gives the RequestContext its logger and deadline.

Everything logged through ctx.logger afterwards carries requestId, method,
path, clientIp and (when tracing) traceId/spanId; userId/userRole appear as
soon as authentication has identified the caller.
"""

from __future__ import annotations

import logging
import time

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.context import ContextLogger, get_request_context

REQUEST_LOGGER_NAME = "boilerplate.request"


class ContextEnrichmentMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, timeout_sec: float = 30.0) -> None:
        super().__init__(app)
        self.timeout_sec = timeout_sec
        self.base_logger = logging.getLogger(REQUEST_LOGGER_NAME)

    async def dispatch(self, request: Request, call_next):
        ctx = get_request_context(request)
        ctx.bind(
            logger=ContextLogger(self.base_logger, ctx),
            deadline=time.monotonic() + self.timeout_sec,
        )
        return await call_next(request)
