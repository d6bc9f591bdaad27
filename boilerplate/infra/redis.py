"""
infra/redis.py

Redis client provider (cache and job broker).

Non-developer summary:
----------------------
The app keeps one Redis client (with its own connection pool) for its whole
life. If no REDIS_URL is configured there is no client; the status check then
reports redis as failing.
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as redis

from ..core.config import Settings

logger = logging.getLogger(__name__)


def create_redis(settings: Settings) -> Optional[redis.Redis]:
    """
    Build the Redis client if REDIS_URL is configured, otherwise None.
    The client connects lazily on first command.
    """
    if not settings.REDIS_URL:
        return None
    return redis.from_url(
        str(settings.REDIS_URL),
        decode_responses=True,
        socket_connect_timeout=settings.STATUS_CHECK_TIMEOUT_SEC,
    )


async def ping_redis(client: Optional[redis.Redis]) -> bool:
    if client is None:
        return False
    return bool(await client.ping())


async def close_redis(client: Optional[redis.Redis]) -> None:
    """
    Close the Redis client on shutdown.
    """
    if client is None:
        return
    try:
        await client.aclose()
    except redis.RedisError:
        logger.warning("error while closing redis client", exc_info=True)
