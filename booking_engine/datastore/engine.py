"""
Database engine lifecycle (SQLAlchemy async engine, SQLite by default).
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from loguru import logger
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from booking_engine.datastore.models import Base


class Database:
    """
    Owns the async engine and session factory.

    The write lock serializes conflict-check-then-write sequences so two
    requests cannot both claim an overlapping interval.
    """

    def __init__(self, url: str, echo: bool = False):
        self.url = url
        self.echo = echo
        self.engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self.write_lock = asyncio.Lock()

    async def init(self) -> None:
        """Create the engine, session factory and tables."""
        kwargs: dict = {"echo": self.echo}
        if self.url.startswith("sqlite") and (
            ":memory:" in self.url or self.url.rstrip("/").endswith("aiosqlite:")
        ):
            # One shared connection, otherwise every session sees an empty database
            kwargs["poolclass"] = StaticPool
            kwargs["connect_args"] = {"check_same_thread": False}

        self.engine = create_async_engine(self.url, **kwargs)
        self._session_factory = async_sessionmaker(
            bind=self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized")

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        if self._session_factory is None:
            raise RuntimeError("Database not initialized. Call init() first.")
        return self._session_factory

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Session that commits on success and rolls back on error."""
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def close(self) -> None:
        """Dispose of the engine's connections."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self._session_factory = None
            logger.info("Database connections closed")
