"""Datastore client — the on-device database behind the draft store.

Owns the async SQLAlchemy engine and hands out sessions. Sessions do not
expire on commit, so snapshots can be built from rows after committing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from fleetzen.datastore.engines import create_engine

if TYPE_CHECKING:
    from sqlalchemy.orm import DeclarativeBase

    from fleetzen.config.settings import DatabaseConfig

logger = logging.getLogger(__name__)

_ERR_NOT_OPEN = "Datastore is not open. Call open() first."


class Datastore:
    """Engine plus session factory for one database.

    Usage::

        ds = Datastore(config.db)
        await ds.open()
        async with ds.session() as session:
            ...
        await ds.close()
    """

    def __init__(self, config: DatabaseConfig) -> None:
        self._config = config
        self._engine: AsyncEngine | None = None
        self._sessions: async_sessionmaker[AsyncSession] | None = None

    @property
    def is_open(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        """The async engine; ``RuntimeError`` while closed."""
        if self._engine is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._engine

    async def open(self, *, base: type[DeclarativeBase] | None = None) -> None:
        """Create the engine.

        Args:
            base: Declarative base whose tables are created right away.
                  Tests use this with in-memory SQLite; the engine runs
                  ``run_auto_migrate`` instead.
        """
        engine = create_engine(self._config)
        if base is not None:
            async with engine.begin() as conn:
                await conn.run_sync(base.metadata.create_all)
        self._engine = engine
        self._sessions = async_sessionmaker(engine, expire_on_commit=False)
        logger.debug("Datastore opened (%s)", self._config.engine)

    async def close(self) -> None:
        """Dispose the engine. Does nothing when already closed."""
        engine, self._engine = self._engine, None
        self._sessions = None
        if engine is not None:
            await engine.dispose()
            logger.debug("Datastore closed")

    def session(self) -> AsyncSession:
        """Return a new session; use it as an async context manager."""
        if self._sessions is None:
            raise RuntimeError(_ERR_NOT_OPEN)
        return self._sessions()

    async def ping(self) -> bool:
        """Run ``SELECT 1``; ``False`` if closed or the database does not answer."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except SQLAlchemyError:
            logger.warning("Datastore ping failed", exc_info=True)
            return False
        return True
