"""
security/auth_provider.py

Auth provider consumed by the authentication middleware.

verify(credential) -> AuthIdentity(user_id, role, permissions), or raises
AuthenticationError. The default provider validates our bearer JWTs; any
other identity provider can be plugged into create_app() instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import FrozenSet, Protocol

import jwt

from ..core.config import Settings
from .token_service import verify_access_token


class AuthenticationError(Exception):
    """The credential is missing, malformed, expired or otherwise not acceptable."""


@dataclass(frozen=True)
class AuthIdentity:
    user_id: str
    role: str = "user"
    permissions: FrozenSet[str] = field(default_factory=frozenset)


class AuthProvider(Protocol):
    async def verify(self, credential: str) -> AuthIdentity:
        ...


class JwtAuthProvider:
    def __init__(self, settings: Settings):
        self.settings = settings

    async def verify(self, credential: str) -> AuthIdentity:
        try:
            claims = verify_access_token(self.settings, credential)
        except jwt.InvalidTokenError as e:
            # Avoid leaking crypto/validation details to the client; keep the reason for logs
            raise AuthenticationError(f"invalid access token: {e}") from e

        user_id = str(claims.get("sub") or "")
        if not user_id:
            raise AuthenticationError("access token has an empty subject")

        perms = claims.get("permissions") or []
        if not isinstance(perms, (list, tuple)):
            raise AuthenticationError("access token permissions claim is malformed")

        return AuthIdentity(
            user_id=user_id,
            role=str(claims.get("role") or "user"),
            permissions=frozenset(str(p) for p in perms),
        )
