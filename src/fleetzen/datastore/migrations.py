"""Schema setup for the draft tables.

On start the engine creates ``draft_interventions`` and ``draft_photos``
straight from the ORM metadata; ``create_all`` skips tables that already
exist, so a device keeps its drafts across restarts. Column changes for
devices already in the field go through the Alembic revisions instead.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fleetzen.engine.models import ALL_MODELS, Base

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

logger = logging.getLogger(__name__)


def _draft_tables() -> list[str]:
    return [model.__tablename__ for model in ALL_MODELS]


async def run_auto_migrate(engine: AsyncEngine) -> None:
    """Create any missing draft tables; existing rows are left alone."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Draft tables ready: %s", ", ".join(_draft_tables()))


async def drop_all_tables(engine: AsyncEngine) -> None:
    """Drop the draft tables and every draft on the device.

    Tests use it to simulate a storage medium that stopped answering.
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    logger.warning("Dropped draft tables: %s", ", ".join(_draft_tables()))
