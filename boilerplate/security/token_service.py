"""
security/token_service.py

- issue_access_token()   -> Mint a bearer access token (local development, tests, service-to-service)
- verify_access_token()  -> Validate a bearer access token (signature, exp, iss, aud; clock-skew aware)

Non-developer summary:
----------------------
Clients call protected routes with `Authorization: Bearer <token>`. Tokens are
JWTs signed either with a shared secret (HS256) or a keypair (RS256/ES256,
verified with the public key). Tokens carry:
  sub (user), role, permissions, jti (random), iat, exp, aud, iss.
"""

from __future__ import annotations

import time
import uuid
from typing import Dict, Iterable, Optional, Tuple

import jwt

from ..core.config import Settings

REQUIRED_CLAIMS = ["sub", "exp", "iss", "aud"]


def _signing_key(s: Settings) -> str:
    if s.AUTH_JWT_ALGORITHM.upper().startswith("HS"):
        return s.AUTH_JWT_SECRET
    return s.AUTH_JWT_PRIVATE_KEY_PEM


def _verification_key(s: Settings) -> str:
    if s.AUTH_JWT_ALGORITHM.upper().startswith("HS"):
        return s.AUTH_JWT_SECRET
    return s.AUTH_JWT_PUBLIC_KEY_PEM


def issue_access_token(
    settings: Settings,
    *,
    user_id: str,
    role: str = "user",
    permissions: Iterable[str] = (),
    ttl_sec: Optional[int] = None,
) -> Tuple[str, int]:
    """
    Issue a short-lived access token.

    Returns: (jwt, exp)
    """
    now = int(time.time())
    exp = now + int(ttl_sec if ttl_sec is not None else settings.AUTH_JWT_TTL_SEC)
    claims = {
        "sub": user_id,
        "role": role,
        "permissions": sorted(set(permissions)),
        "jti": str(uuid.uuid4()),
        "iat": now,
        "exp": exp,
        "aud": settings.AUTH_JWT_AUDIENCE,
        "iss": settings.AUTH_JWT_ISSUER,
    }
    token = jwt.encode(claims, key=_signing_key(settings), algorithm=settings.AUTH_JWT_ALGORITHM)
    return token, exp


def verify_access_token(settings: Settings, token: str) -> Dict:
    """
    Verify an access token. Accepts small clock skew.
    Raises jwt.InvalidTokenError (or a subclass) on any failure.
    """
    return jwt.decode(
        token,
        key=_verification_key(settings),
        algorithms=[settings.AUTH_JWT_ALGORITHM],
        audience=settings.AUTH_JWT_AUDIENCE,
        issuer=settings.AUTH_JWT_ISSUER,
        leeway=settings.AUTH_JWT_LEEWAY_SEC,
        options={"require": REQUIRED_CLAIMS},
    )
