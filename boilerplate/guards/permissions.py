"""
guards/permissions.py

Permission (RBAC) checks on the RequestContext.

Non-developer summary:
----------------------
Routes can declare the permissions they need (e.g. "reports.export"). If the
caller's token does not grant every one of them, the API answers 403 with a
clear message and the handler never runs. Business logic can call
require_permissions() itself for finer-grained checks.
"""

from __future__ import annotations

from typing import Iterable, List, Set

from ..core.context import RequestContext
from ..core.errors import forbidden


def normalize_permissions(permissions: Iterable[str]) -> Set[str]:
    return {p.strip() for p in permissions if p and p.strip()}


def missing_permissions(ctx: RequestContext, required: Iterable[str]) -> List[str]:
    return sorted(p for p in normalize_permissions(required) if p not in ctx.permissions)


def require_permissions(ctx: RequestContext, *permissions: str) -> None:
    """
    Ensure EVERY requested permission is present; otherwise 403 FORBIDDEN.
    The missing names go to the request log, not to the client.
    """
    missing = missing_permissions(ctx, permissions)
    if missing:
        if ctx.logger is not None:
            ctx.logger.info("permission check failed", extra={"event": "forbidden", "missing": missing})
        raise forbidden()
