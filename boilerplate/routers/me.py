"""
routers/me.py

GET /me: who the API thinks the caller is.

Small on purpose; it is the reference for writing routes as plain business
functions: the function receives the RequestContext, returns a model, and the
dispatch layer does the rest (auth gate, errors, JSON shaping).
"""

from __future__ import annotations

from fastapi import APIRouter

from ..core.context import RequestContext
from ..core.routing import add_route
from ..schemas.common import ERROR_RESPONSES, MeResponse

router = APIRouter(tags=["me"])


async def get_me(ctx: RequestContext) -> MeResponse:
    return MeResponse(
        userId=ctx.user_id or "",
        role=ctx.user_role,
        permissions=sorted(ctx.permissions),
        requestId=ctx.request_id,
    )


add_route(router, "GET", "/me", get_me, auth_required=True, response_model=MeResponse, responses=ERROR_RESPONSES)
