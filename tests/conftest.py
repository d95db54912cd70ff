"""Shared test fixtures for draftsync."""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from draftsync.config import Settings
from draftsync.database import ensure_tables
from draftsync.services.events import EventEmitter
from draftsync.services.ledger import Ledger
from draftsync.services.offline_storage_service import OfflineStorageService

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator, Iterator
    from pathlib import Path

    from draftsync.services.events import StorageEvent

TEST_SECRET_KEY = "test-secret-key-with-at-least-32-characters"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta | None = None, **kwargs: float) -> datetime:
        self.now += delta if delta is not None else timedelta(**kwargs)
        return self.now


class RecordingListener:
    """Collects every emitted (event, payload) pair."""

    def __init__(self) -> None:
        self.events: list[tuple[StorageEvent, object]] = []

    def __call__(self, event: StorageEvent, payload: object) -> None:
        self.events.append((event, payload))

    def names(self) -> list[str]:
        return [str(event) for event, _ in self.events]

    def payloads(self, event: StorageEvent) -> list[object]:
        return [payload for e, payload in self.events if e == event]


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Create test settings with a temporary database."""
    db_path = tmp_path / "test.db"
    return Settings(
        secret_key=TEST_SECRET_KEY,
        debug=False,
        database_url=f"sqlite+aiosqlite:///{db_path}",
    )


@pytest.fixture
def restore_root_logging() -> Iterator[None]:
    """Undo root logger changes made by _configure_logging."""
    root = logging.getLogger()
    before, level = set(root.handlers), root.level
    yield
    for handler in root.handlers[:]:
        if handler not in before:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def db_engine(test_settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a test database engine with the ledger schema."""
    engine = create_async_engine(
        test_settings.database_url,
        echo=False,
    )
    await ensure_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def ledger(session_factory: async_sessionmaker[AsyncSession], clock: FakeClock) -> Ledger:
    return Ledger(session_factory, clock=clock)


@pytest.fixture
def recorder() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def emitter(recorder: RecordingListener) -> EventEmitter:
    emitter = EventEmitter()
    emitter.subscribe_all(recorder)
    return emitter


@pytest.fixture
async def service(
    ledger: Ledger, test_settings: Settings, emitter: EventEmitter, clock: FakeClock
) -> AsyncGenerator[OfflineStorageService]:
    """A started storage service; closed after the test."""
    svc = OfflineStorageService(ledger, test_settings, emitter=emitter, clock=clock)
    await svc.start()
    yield svc
    await svc.close()
