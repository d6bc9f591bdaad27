"""
middleware/auth.py

Bearer authentication stage.

Non-developer summary:
----------------------
If the caller sends "Authorization: Bearer <token>", we ask the auth provider
who they are and remember it on the request. Routes marked as requiring
authentication answer 401 when there is no valid token; every other route
simply treats the caller as anonymous.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

from ..core.context import get_request_context
from ..core.errors import error_response, internal_error, unauthorized
from ..core.routing import route_requires_auth
from ..security.auth_provider import AuthenticationError, AuthProvider

logger = logging.getLogger(__name__)


def _bearer_token(request: Request) -> Optional[str]:
    auth = request.headers.get("Authorization") or ""
    scheme, _, token = auth.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class AuthMiddleware(BaseHTTPMiddleware):
    def __init__(self, app: ASGIApp, provider: AuthProvider) -> None:
        super().__init__(app)
        self.provider = provider

    async def dispatch(self, request: Request, call_next):
        ctx = get_request_context(request)
        log = ctx.logger or logger
        required = route_requires_auth(request)
        token = _bearer_token(request)

        if token is None:
            if required:
                log.warning("authentication required", extra={"event": "unauthorized"})
                return error_response(unauthorized(), request)
            return await call_next(request)

        try:
            identity = await self.provider.verify(token)
        except AuthenticationError as e:
            if required:
                log.warning("authentication failed: %s", e, extra={"event": "unauthorized"})
                return error_response(unauthorized("Invalid or expired credentials."), request)
            log.info("ignoring invalid credentials on public route")
            return await call_next(request)
        except Exception:
            if required:
                log.exception("auth provider failed")
                return error_response(internal_error(), request)
            log.warning("auth provider failed on public route", exc_info=True)
            return await call_next(request)

        ctx.bind(user_id=identity.user_id, user_role=identity.role, permissions=identity.permissions)
        return await call_next(request)
