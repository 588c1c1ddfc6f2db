"""
Async SQLAlchemy engine and session management.

The engine lives inside an explicitly constructed ConnectionHandle owned by the
process (FastAPI lifespan or a sync command) and passed to whatever needs
persistence. Nothing here is a module-level singleton.
CRITICAL: expire_on_commit=False prevents lazy-loading issues in async contexts.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


def mask_database_url(url: str) -> str:
    """Render a database URL without its password, safe for logs."""
    if not url:
        return ""
    try:
        return make_url(url).render_as_string(hide_password=True)
    except Exception:
        return "<unparseable database url>"


class ConnectionHandle:
    """
    Lifecycle: open() -> healthcheck()/reconnect() as needed -> close().

    open() is idempotent. reconnect() disposes the pool so the next checkout
    opens fresh connections.
    """

    def __init__(self, database_url: str, **engine_kwargs):
        self.database_url = database_url
        self._engine_kwargs = engine_kwargs
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None

    @classmethod
    def from_settings(cls, settings) -> "ConnectionHandle":
        kwargs = {"pool_pre_ping": True}
        if not settings.database_url.startswith("sqlite"):
            kwargs.update(
                pool_size=settings.database_pool_size,
                max_overflow=settings.database_max_overflow,
                pool_timeout=settings.database_pool_timeout_seconds,
            )
        return cls(settings.database_url, **kwargs)

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise RuntimeError("ConnectionHandle is not open")
        return self._engine

    @property
    def target_descriptor(self) -> str:
        return mask_database_url(self.database_url)

    async def open(self) -> None:
        if self._engine is not None:
            return
        self._engine = create_async_engine(self.database_url, **self._engine_kwargs)
        self._session_factory = async_sessionmaker(
            self._engine, class_=AsyncSession, expire_on_commit=False
        )
        logger.info("Database handle opened: %s", self.target_descriptor)

    async def healthcheck(self) -> bool:
        """SELECT 1 against the pool. Returns False (and logs) on failure."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.warning("Database healthcheck failed: %s", str(e))
            return False

    async def reconnect(self) -> None:
        if self._engine is None:
            await self.open()
            return
        logger.info("Reconnecting database handle: %s", self.target_descriptor)
        await self._engine.dispose()

    async def close(self) -> None:
        if self._engine is None:
            return
        await self._engine.dispose()
        self._engine = None
        self._session_factory = None
        logger.info("Database handle closed")

    def session(self) -> AsyncSession:
        if self._session_factory is None:
            raise RuntimeError("ConnectionHandle is not open")
        return self._session_factory()

    @asynccontextmanager
    async def transaction(self) -> AsyncGenerator[AsyncSession, None]:
        """Session inside a transaction: commit on success, rollback on error."""
        async with self.session() as session:
            async with session.begin():
                yield session


def get_connection_handle(request: Request) -> ConnectionHandle:
    """FastAPI dependency returning the process-owned handle."""
    return request.app.state.db_handle
