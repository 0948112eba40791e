"""Shared test fixtures for the fleetzen test suite."""

from __future__ import annotations

import io
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest

from fleetzen.config.settings import DatabaseEngine

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fleetzen.datastore.client import Datastore
    from fleetzen.engine.services.draft_store import DraftStore

START = datetime(2026, 1, 1, 8, 0, tzinfo=UTC)


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def app_config():
    """Provide a test AppConfig with safe defaults."""
    from fleetzen.config.settings import (
        AppConfig,
        DatabaseConfig,
        DraftsConfig,
        SyncConfig,
        TaskConfig,
    )

    return AppConfig(
        debug=True,
        agent_id="agent-test",
        db=DatabaseConfig(
            engine=DatabaseEngine.SQLITE,
            dsn="sqlite+aiosqlite:///:memory:",
        ),
        drafts=DraftsConfig(compress_photos=False),
        sync=SyncConfig(base_url="https://fleetzen.test", token="test-token"),
        task=TaskConfig(enabled=False),
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def datastore(app_config) -> AsyncIterator[Datastore]:
    """Open an in-memory datastore with the draft tables created."""
    from fleetzen.datastore.client import Datastore
    from fleetzen.engine.models import Base

    ds = Datastore(app_config.db)
    await ds.open(base=Base)
    yield ds
    await ds.close()


@pytest.fixture
def store(datastore, app_config, clock) -> DraftStore:
    """Provide a DraftStore on the in-memory datastore and the fake clock."""
    from fleetzen.engine.services.draft_store import DraftStore

    return DraftStore(datastore, app_config.drafts, clock=clock)


@pytest.fixture
def make_image():
    """Return a factory encoding a solid-colour test image."""
    from PIL import Image

    def _make(size: tuple[int, int] = (64, 48), fmt: str = "PNG", mode: str = "RGB") -> bytes:
        color = (200, 30, 30, 128) if mode == "RGBA" else (200, 30, 30)
        out = io.BytesIO()
        Image.new(mode, size, color=color).save(out, format=fmt)
        return out.getvalue()

    return _make
