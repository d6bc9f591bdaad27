"""
routers/status.py

GET /status: service health for deploys and runtime monitoring.

Non-developer summary:
----------------------
Answers "can this instance serve traffic?". It pings the database and Redis
(each with a short time limit) and returns 200 "healthy" when both answer,
503 "unhealthy" otherwise, with a per-dependency breakdown for quick triage.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Dict

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..infra.redis import ping_redis
from ..schemas.common import StatusResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["status"])


async def _check(name: str, probe: Awaitable[bool], timeout: float) -> str:
    try:
        ok = await asyncio.wait_for(probe, timeout=timeout)
    except Exception as e:
        logger.warning("status check failed", extra={"event": f"{name}_check_failed"}, exc_info=e)
        return "fail"
    return "ok" if ok else "fail"


@router.get("/status", response_model=StatusResponse, responses={503: {"model": StatusResponse}})
async def status(request: Request):
    """
    Readiness report.
    - database: SELECT 1 through the SQLAlchemy engine.
    - redis: PING; an unconfigured Redis counts as failed.
    """
    state = request.app.state
    timeout = state.settings.STATUS_CHECK_TIMEOUT_SEC

    database_check, redis_check = await asyncio.gather(
        _check("database", state.database.ping(), timeout),
        _check("redis", ping_redis(state.redis), timeout),
    )
    checks: Dict[str, str] = {"database": database_check, "redis": redis_check}
    healthy = all(v == "ok" for v in checks.values())

    body = StatusResponse(
        status="healthy" if healthy else "unhealthy",
        timestamp=datetime.now(timezone.utc),
        environment=state.settings.ENVIRONMENT,
        checks=checks,
    )
    return JSONResponse(body.model_dump(mode="json"), status_code=200 if healthy else 503)
