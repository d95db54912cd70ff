"""Tests for the storage lifecycle and logging setup."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, patch

import pytest

from draftsync.config import Settings
from draftsync.main import _configure_logging, open_storage
from draftsync.services.events import EventEmitter, StorageEvent
from draftsync.services.offline_storage_service import OfflineStorageService

if TYPE_CHECKING:
    from pathlib import Path


def _settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        secret_key="test-secret-key-min-32-characters-long",
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'nested' / 'ledger.db'}",
    )


class TestOpenStorage:
    async def test_creates_database_and_persists_between_opens(self, tmp_path: Path) -> None:
        settings = _settings(tmp_path)
        async with open_storage(settings) as service:
            draft_id = await service.save_draft_offline({"title": "durable"})
        assert (tmp_path / "nested" / "ledger.db").exists()

        async with open_storage(settings) as service:
            draft = await service.get_draft_offline(draft_id)
            assert draft is not None
            assert draft.title == "durable"
            assert len(await service.get_pending_sync_tasks()) == 1

    async def test_passes_emitter_through(self, tmp_path: Path) -> None:
        emitter = EventEmitter()
        seen: list[StorageEvent] = []
        emitter.subscribe(StorageEvent.DRAFT_SAVED, lambda e, p: seen.append(e))
        async with open_storage(_settings(tmp_path), emitter=emitter) as service:
            await service.save_draft_offline()
        assert seen == [StorageEvent.DRAFT_SAVED]

    async def test_schema_failure_is_logged_and_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        with (
            patch("draftsync.main.ensure_tables", AsyncMock(side_effect=OSError("read-only"))),
            pytest.raises(OSError, match="read-only"),
        ):
            async with open_storage(_settings(tmp_path)):
                pass
        assert "Failed to create database schema" in caplog.text

    async def test_close_failure_is_logged_not_raised(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        real_close = OfflineStorageService.close

        async def failing_close(self: OfflineStorageService) -> None:
            await real_close(self)
            raise RuntimeError("stuck")

        with patch.object(OfflineStorageService, "close", failing_close):
            async with open_storage(_settings(tmp_path)):
                pass
        assert "Error stopping offline storage" in caplog.text


@pytest.mark.usefixtures("restore_root_logging")
class TestConfigureLogging:
    def test_debug_enables_sqlalchemy_logging(self) -> None:
        _configure_logging(debug=True)
        assert logging.getLogger().level == logging.DEBUG
        assert logging.getLogger("sqlalchemy.engine").level == logging.INFO

    def test_default_quiets_sqlalchemy(self) -> None:
        _configure_logging(debug=False)
        assert logging.getLogger().level == logging.INFO
        assert logging.getLogger("sqlalchemy.engine").level == logging.WARNING
