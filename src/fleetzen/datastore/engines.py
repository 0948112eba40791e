"""Database engine factories — SQLite, PostgreSQL.

Provides async SQLAlchemy engine creation with support for:
- SQLite (aiosqlite driver), the on-device default
- PostgreSQL (asyncpg driver)
- Configurable pool sizes and echo/debug settings
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

if TYPE_CHECKING:
    from fleetzen.config.settings import DatabaseConfig


def _configure_sqlite_connection(dbapi_connection, connection_record) -> None:  # type: ignore[no-untyped-def]
    """Enable foreign keys so photo rows cascade with their draft."""
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_engine(config: DatabaseConfig) -> AsyncEngine:
    """Create an async SQLAlchemy engine from database configuration.

    Args:
        config: Database configuration with DSN, pool settings, etc.

    Returns:
        A configured ``AsyncEngine`` ready for use.
    """
    kwargs: dict = {
        "echo": config.debug_sql,
    }

    # SQLite doesn't support pool settings in the same way
    is_sqlite = "sqlite" in config.dsn
    if not is_sqlite:
        kwargs["pool_size"] = config.max_idle_connections
        kwargs["max_overflow"] = config.max_open_connections - config.max_idle_connections
        kwargs["pool_pre_ping"] = True

    engine = create_async_engine(config.dsn, **kwargs)
    if is_sqlite:
        event.listen(engine.sync_engine, "connect", _configure_sqlite_connection)
    return engine
