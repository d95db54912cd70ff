"""Tests for the ledger CRUD layer."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from draftsync.exceptions import EntityNotFoundError
from draftsync.models.draft import SyncState
from draftsync.models.image import UploadStatus
from draftsync.models.sync import TaskStatus

if TYPE_CHECKING:
    from draftsync.services.ledger import Ledger
    from tests.conftest import FakeClock


def _draft(**overrides: object) -> dict[str, object]:
    values: dict[str, object] = {
        "title": "Hello",
        "content": "body",
        "tags": ["a", "b"],
        "categories": [],
        "status": "draft",
        "is_local": True,
        "sync_status": SyncState.PENDING.value,
    }
    values.update(overrides)
    return values


def _image(**overrides: object) -> dict[str, object]:
    values: dict[str, object] = {
        "local_path": "/tmp/img.jpg",
        "original_name": "img.jpg",
        "size": 100,
        "mime_type": "image/jpeg",
    }
    values.update(overrides)
    return values


class TestDrafts:
    async def test_save_assigns_id_timestamps_and_version(
        self, ledger: Ledger, clock: FakeClock
    ) -> None:
        draft = await ledger.save_draft(_draft())
        assert len(draft.id) == 32
        assert draft.created_at == clock.now
        assert draft.last_modified == clock.now
        assert draft.version == 1
        assert draft.tags == ["a", "b"]

    async def test_get_returns_stored_draft(self, ledger: Ledger) -> None:
        saved = await ledger.save_draft(_draft(title="Stored"))
        loaded = await ledger.get_draft(saved.id)
        assert loaded is not None
        assert loaded.title == "Stored"
        assert loaded.last_modified.tzinfo is not None

    async def test_get_unknown_returns_none(self, ledger: Ledger) -> None:
        assert await ledger.get_draft("missing") is None

    async def test_update_applies_changes_and_bumps_version(self, ledger: Ledger) -> None:
        saved = await ledger.save_draft(_draft())
        updated = await ledger.update_draft(
            saved.id, {"title": "New", "tags": ["x"]}, bump_version=True
        )
        assert updated.title == "New"
        assert updated.tags == ["x"]
        assert updated.version == 2

    async def test_update_without_bump_keeps_version(self, ledger: Ledger) -> None:
        saved = await ledger.save_draft(_draft())
        updated = await ledger.update_draft(saved.id, {"sync_status": SyncState.SYNCED.value})
        assert updated.version == 1
        assert updated.sync_status == SyncState.SYNCED

    async def test_update_unknown_raises(self, ledger: Ledger) -> None:
        with pytest.raises(EntityNotFoundError, match="draft 'nope' not found"):
            await ledger.update_draft("nope", {"title": "x"})

    async def test_delete_unknown_raises(self, ledger: Ledger) -> None:
        with pytest.raises(EntityNotFoundError):
            await ledger.delete_draft("nope")

    async def test_list_orders_by_last_modified_desc(
        self, ledger: Ledger, clock: FakeClock
    ) -> None:
        first = await ledger.save_draft(_draft(title="first"))
        clock.advance(seconds=1)
        second = await ledger.save_draft(_draft(title="second"))
        drafts = await ledger.list_drafts()
        assert [d.id for d in drafts] == [second.id, first.id]

    async def test_list_filters_and_paginates(self, ledger: Ledger, clock: FakeClock) -> None:
        for i in range(4):
            clock.advance(seconds=1)
            status = SyncState.SYNCED.value if i % 2 else SyncState.PENDING.value
            await ledger.save_draft(_draft(title=f"d{i}", sync_status=status))
        synced = await ledger.list_drafts(sync_status=SyncState.SYNCED.value)
        assert [d.title for d in synced] == ["d3", "d1"]
        page = await ledger.list_drafts(limit=2, offset=1)
        assert [d.title for d in page] == ["d2", "d1"]
        assert await ledger.count_drafts() == 4


class TestImages:
    async def test_touching_read_advances_last_accessed(
        self, ledger: Ledger, clock: FakeClock
    ) -> None:
        saved = await ledger.save_image(_image())
        clock.advance(hours=1)
        touched = await ledger.get_image(saved.id, touch=True)
        assert touched is not None
        assert touched.last_accessed == clock.now
        assert touched.last_accessed > saved.last_accessed

    async def test_list_does_not_touch(self, ledger: Ledger, clock: FakeClock) -> None:
        saved = await ledger.save_image(_image())
        clock.advance(hours=1)
        [listed] = await ledger.list_images()
        assert listed.last_accessed == saved.last_accessed

    async def test_last_accessed_upper_bound(self, ledger: Ledger, clock: FakeClock) -> None:
        old = await ledger.save_image(_image(original_name="old.jpg"))
        clock.advance(days=10)
        await ledger.save_image(_image(original_name="new.jpg"))
        stale = await ledger.list_images(last_accessed_before=clock.now - timedelta(days=5))
        assert [i.id for i in stale] == [old.id]

    async def test_least_recently_used_order(self, ledger: Ledger, clock: FakeClock) -> None:
        a = await ledger.save_image(_image())
        clock.advance(minutes=1)
        b = await ledger.save_image(_image())
        clock.advance(minutes=1)
        await ledger.get_image(a.id, touch=True)
        lru = await ledger.list_images(least_recently_used=True)
        assert [i.id for i in lru] == [b.id, a.id]

    async def test_upload_status_filter_and_totals(self, ledger: Ledger) -> None:
        a = await ledger.save_image(_image(size=300))
        await ledger.save_image(_image(size=200))
        await ledger.update_image(a.id, {"upload_status": UploadStatus.UPLOADED.value})
        uploaded = await ledger.list_images(upload_status=UploadStatus.UPLOADED.value)
        assert [i.id for i in uploaded] == [a.id]
        assert await ledger.total_image_size() == 500
        assert await ledger.count_images() == 2

    async def test_total_size_of_empty_cache_is_zero(self, ledger: Ledger) -> None:
        assert await ledger.total_image_size() == 0

    async def test_update_unknown_image_raises(self, ledger: Ledger) -> None:
        with pytest.raises(EntityNotFoundError):
            await ledger.update_image("nope", {"size": 1})


class TestSyncTasks:
    async def test_pending_breaks_ties_by_insertion_order(self, ledger: Ledger) -> None:
        ids = []
        for i in range(3):
            task = await ledger.add_sync_task(
                entity_type="draft", entity_id=str(i), operation="create"
            )
            ids.append(task.id)
        pending = await ledger.pending_sync_tasks(10)
        assert [t.id for t in pending] == ids

    async def test_pending_respects_priority_and_limit(self, ledger: Ledger) -> None:
        low = await ledger.add_sync_task(
            entity_type="draft", entity_id="a", operation="create", priority=5
        )
        high = await ledger.add_sync_task(
            entity_type="draft", entity_id="b", operation="create", priority=1
        )
        assert [t.id for t in await ledger.pending_sync_tasks(10)] == [high.id, low.id]
        assert len(await ledger.pending_sync_tasks(1)) == 1

    async def test_delete_by_status_and_age(self, ledger: Ledger, clock: FakeClock) -> None:
        done = await ledger.add_sync_task(entity_type="draft", entity_id="a", operation="create")
        pending = await ledger.add_sync_task(
            entity_type="draft", entity_id="b", operation="create"
        )
        await ledger.update_sync_task(done.id, {"status": TaskStatus.DONE.value})
        clock.advance(days=8)
        removed = await ledger.delete_sync_tasks(
            created_before=clock.now - timedelta(days=7),
            statuses=[TaskStatus.DONE.value, TaskStatus.FAILED.value],
        )
        assert removed == 1
        remaining = await ledger.list_sync_tasks()
        assert [t.id for t in remaining] == [pending.id]

    async def test_update_unknown_task_raises(self, ledger: Ledger) -> None:
        with pytest.raises(EntityNotFoundError):
            await ledger.update_sync_task("nope", {"status": TaskStatus.DONE.value})


class TestConfig:
    async def test_set_is_an_upsert(self, ledger: Ledger) -> None:
        await ledger.set_config("k", "1")
        await ledger.set_config("k", "2", "other")
        assert await ledger.get_config("k") == "2"
        [entry] = await ledger.list_configs()
        assert entry.category == "other"

    async def test_missing_key_returns_none(self, ledger: Ledger) -> None:
        assert await ledger.get_config("missing") is None

    async def test_delete_reports_existence(self, ledger: Ledger) -> None:
        await ledger.set_config("k", "v")
        assert await ledger.delete_config("k") is True
        assert await ledger.delete_config("k") is False

    async def test_list_filters_by_category(self, ledger: Ledger) -> None:
        await ledger.set_config("a", "1", "general")
        await ledger.set_config("b", "2", "backup")
        assert [c.key for c in await ledger.list_configs(category="backup")] == ["b"]
        assert [c.key for c in await ledger.list_configs(exclude_category="backup")] == ["a"]
