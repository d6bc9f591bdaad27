"""
middleware/recovery.py

Last line of defence inside the chain: any exception escaping the route
(responder failures, bugs outside business logic, ...) is logged with its
stack trace and answered with the generic 500 envelope. The process keeps
serving other requests.
"""

from __future__ import annotations

import logging

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..core.context import get_request_context
from ..core.errors import error_response, internal_error

logger = logging.getLogger(__name__)


class PanicRecoveryMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except Exception as exc:
            request.state.error = exc
            (get_request_context(request).logger or logger).exception("recovered from unhandled exception")
            return error_response(internal_error(), request)
