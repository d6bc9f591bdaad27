"""
infra/database.py

Relational store access (PostgreSQL through SQLAlchemy's asyncio engine).

Non-developer summary:
----------------------
One engine (connection pool) per application, created lazily on first use
and disposed on shutdown. Queries are bounded by the request deadline so a
slow database cannot hold a request past its timeout. Errors are left as
SQLAlchemy exceptions; the dispatch layer translates them for clients.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Mapping, Optional

from sqlalchemy import text
from sqlalchemy.engine import RowMapping
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from ..core.config import Settings
from ..core.context import RequestContext

logger = logging.getLogger(__name__)


class Database:
    def __init__(self, url: str, *, pool_size: int = 10, connect_timeout: float = 5.0):
        self.url = url
        self.pool_size = pool_size
        self.connect_timeout = connect_timeout
        self._engine: Optional[AsyncEngine] = None
        self._sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        return cls(
            settings.DATABASE_URL,
            pool_size=settings.DATABASE_POOL_SIZE,
            connect_timeout=settings.DATABASE_CONNECT_TIMEOUT_SEC,
        )

    # -------------------------------------------------------------------
    # Engine / sessions
    # -------------------------------------------------------------------
    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            kwargs: dict[str, Any] = {"pool_pre_ping": True}
            if self.url.startswith("postgresql"):
                kwargs["pool_size"] = self.pool_size
                kwargs["connect_args"] = {"timeout": self.connect_timeout}
            self._engine = create_async_engine(self.url, **kwargs)
            logger.info("database engine created")
        return self._engine

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        if self._sessionmaker is None:
            self._sessionmaker = async_sessionmaker(bind=self.engine, class_=AsyncSession, expire_on_commit=False)
        return self._sessionmaker

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Yield a session; roll back if the block raises."""
        async with self.sessionmaker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    # -------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------
    async def query(
        self,
        ctx: RequestContext,
        statement: str,
        params: Optional[Mapping[str, Any]] = None,
    ) -> List[RowMapping]:
        """
        Run a statement and return its rows as mappings, bounded by the
        request deadline (asyncio.TimeoutError when it runs out).
        """
        async def _run() -> List[RowMapping]:
            async with self.engine.begin() as conn:
                result = await conn.execute(text(statement), dict(params or {}))
                return list(result.mappings()) if result.returns_rows else []

        return await asyncio.wait_for(_run(), timeout=ctx.remaining())

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True

    async def close(self) -> None:
        if self._engine is not None:
            logger.info("disposing database engine")
            await self._engine.dispose()
            self._engine = None
            self._sessionmaker = None
