"""Offline storage service: the single entry point for offline mutations.

Every draft and image mutation is persisted to the ledger and then recorded as
exactly one sync task, so that a transport can replay local changes once the
device is back online. The service also owns the periodic cleanup and
auto-backup timers and the background image compression tasks.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from draftsync.exceptions import CompressionError
from draftsync.models.draft import SyncState
from draftsync.models.image import UploadStatus
from draftsync.models.sync import EntityType, SyncOperation
from draftsync.schemas.draft import DEFAULT_TITLE, DraftInput, DraftUpdate
from draftsync.schemas.image import ImageInput
from draftsync.schemas.storage import CleanupOptions, OfflineStorageConfig, StorageStats
from draftsync.services.backup_service import BackupManager
from draftsync.services.datetime_service import format_iso, millis_to_seconds, now_utc, parse_iso
from draftsync.services.events import EventEmitter, StorageEvent
from draftsync.services.image_service import compress_image
from draftsync.services.retention_service import CleanupReport, CleanupStep, RetentionEnforcer
from draftsync.services.search_service import build_index, search
from draftsync.services.sync_queue import SyncQueueManager

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Coroutine
    from datetime import datetime
    from types import TracebackType

    from draftsync.config import Settings
    from draftsync.schemas.draft import DraftRead
    from draftsync.schemas.image import ImageRead
    from draftsync.schemas.search import SearchKind, SearchResult
    from draftsync.schemas.storage import BackupInfo, BackupType, RestoreOptions, RestoreResult
    from draftsync.schemas.sync import SyncTaskRead
    from draftsync.services.image_service import CompressionResult
    from draftsync.services.ledger import Ledger
    from draftsync.services.search_service import SortOrder

logger = logging.getLogger(__name__)

CONFIG_KEY = "offline_storage_config"
CONFIG_CATEGORY = "offline_storage"
LAST_CLEANUP_KEY = "last_cleanup_time"

# Draft columns that cannot be cleared by an update.
_REQUIRED_DRAFT_FIELDS = ("title", "content", "status", "tags", "categories")


class IntervalTimer:
    """Runs an async job every ``interval()`` milliseconds.

    Restarting, pausing or stopping only affects the wait between runs: a job
    already running is never cancelled, so it cannot be cut off between a
    ledger write and the sync task that records it.
    """

    def __init__(
        self, name: str, interval: Callable[[], int], job: Callable[[], Awaitable[object]]
    ) -> None:
        self._name = name
        self._interval = interval
        self._job = job
        self._wakeup = asyncio.Event()
        self._enabled = False
        self._task: asyncio.Task[None] | None = None

    @property
    def active(self) -> bool:
        return self._task is not None and not self._task.done()

    def restart(self) -> None:
        """Start the timer, or begin a fresh wait with the current interval."""
        self._enabled = True
        if self.active:
            self._wakeup.set()
            return
        self._wakeup.clear()
        self._task = asyncio.create_task(self._loop(), name=self._name)

    def pause(self) -> None:
        """Let the loop exit after the current wait or run."""
        self._enabled = False
        self._wakeup.set()

    async def stop(self) -> None:
        """Pause and wait for the loop, including a running job, to finish."""
        self.pause()
        task, self._task = self._task, None
        if task is not None:
            await task

    async def _loop(self) -> None:
        while self._enabled:
            try:
                await asyncio.wait_for(self._wakeup.wait(), millis_to_seconds(self._interval()))
            except TimeoutError:
                await self._job()
            else:
                self._wakeup.clear()


class OfflineStorageService:
    """Offline-first storage for drafts and images with a durable sync queue."""

    def __init__(
        self,
        ledger: Ledger,
        settings: Settings,
        *,
        emitter: EventEmitter | None = None,
        clock: Callable[[], datetime] = now_utc,
        compressor: Callable[..., CompressionResult] = compress_image,
    ) -> None:
        self._ledger = ledger
        self._settings = settings
        self._clock = clock
        self._compressor = compressor
        self.emitter = emitter or EventEmitter()
        self.queue = SyncQueueManager(
            ledger, self.emitter, clock=clock, max_retries=settings.sync_max_retries
        )
        self.retention = RetentionEnforcer(
            ledger,
            delete_image=self.delete_image_offline,
            delete_draft=self.delete_draft_offline,
            queue=self.queue,
            emitter=self.emitter,
            clock=clock,
        )
        self.backups = BackupManager(
            ledger,
            settings,
            replay_draft=self.save_draft_offline,
            overwrite_draft=self.update_draft_offline,
            clock=clock,
        )
        self._config = OfflineStorageConfig()
        self._running = False
        self._cleanup_timer = IntervalTimer(
            "offline-storage-cleanup",
            lambda: self._config.auto_cleanup_interval,
            lambda: self.perform_auto_cleanup(),
        )
        self._backup_timer = IntervalTimer(
            "offline-storage-backup",
            lambda: self._config.auto_backup_interval,
            lambda: self._run_auto_backup(),
        )
        self._background_tasks: set[asyncio.Task[None]] = set()

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        """Load the persisted config and start the cleanup and auto-backup timers."""
        await self._load_config()
        self._running = True
        self._reschedule()
        logger.info(
            "Offline storage started (cleanup every %ds)",
            millis_to_seconds(self._config.auto_cleanup_interval),
        )

    async def close(self) -> None:
        """Stop the timers after any job in progress, then drain compression work."""
        self._running = False
        await self._cleanup_timer.stop()
        await self._backup_timer.stop()
        await self.wait_for_background_tasks()
        logger.info("Offline storage stopped")

    async def __aenter__(self) -> OfflineStorageService:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()

    async def _load_config(self) -> None:
        raw = await self._ledger.get_config(CONFIG_KEY)
        if raw is None:
            self._config = OfflineStorageConfig()
            return
        try:
            self._config = OfflineStorageConfig.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Stored offline storage config is invalid, using defaults: %s", exc)
            self._config = OfflineStorageConfig()

    def _reschedule(self) -> None:
        """Apply the current config to both timers."""
        if not self._running:
            return
        self._cleanup_timer.restart()
        if self._config.auto_backup_enabled:
            self._backup_timer.restart()
        else:
            self._backup_timer.pause()

    async def _run_auto_backup(self) -> None:
        name = f"auto_backup_{self._clock():%Y%m%dT%H%M%S}"
        try:
            await self.create_backup(name, "incremental")
        except Exception:
            logger.exception("Automatic backup %s failed", name)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    async def wait_for_background_tasks(self) -> None:
        """Wait until every in-flight background compression has finished."""
        while self._background_tasks:
            await asyncio.gather(*self._background_tasks, return_exceptions=True)

    # -- drafts -------------------------------------------------------------

    async def save_draft_offline(self, draft: DraftInput | dict[str, Any] | None = None) -> str:
        """Persist a new local draft and queue its creation. Returns the draft id."""
        data = draft if isinstance(draft, DraftInput) else DraftInput.model_validate(draft or {})
        saved = await self._ledger.save_draft(
            {
                "title": data.title or DEFAULT_TITLE,
                "content": data.content or "",
                "excerpt": data.excerpt,
                "tags": data.tags or [],
                "categories": data.categories or [],
                "featured_image": data.featured_image,
                "status": data.status or "draft",
                "remote_id": data.remote_id,
                "is_local": True,
                "sync_status": SyncState.PENDING.value,
                "last_modified": self._clock(),
            }
        )
        await self.queue.enqueue(EntityType.DRAFT, saved.id, SyncOperation.CREATE)
        self.emitter.emit(StorageEvent.DRAFT_SAVED, saved)
        logger.debug("Saved draft %s offline", saved.id)
        return saved.id

    async def update_draft_offline(
        self, draft_id: str, updates: DraftUpdate | dict[str, Any]
    ) -> DraftRead:
        """Apply changes to a draft, mark it pending and queue the update.

        Raises EntityNotFoundError for an unknown id.
        """
        data = updates if isinstance(updates, DraftUpdate) else DraftUpdate.model_validate(updates)
        changes = data.model_dump(exclude_unset=True)
        for key in _REQUIRED_DRAFT_FIELDS:
            if key in changes and changes[key] is None:
                del changes[key]
        changes["last_modified"] = self._clock()
        changes["sync_status"] = SyncState.PENDING.value
        updated = await self._ledger.update_draft(draft_id, changes, bump_version=True)
        await self.queue.enqueue(EntityType.DRAFT, draft_id, SyncOperation.UPDATE)
        self.emitter.emit(StorageEvent.DRAFT_UPDATED, updated)
        return updated

    async def delete_draft_offline(self, draft_id: str) -> None:
        """Delete a draft and queue its remote deletion. Raises EntityNotFoundError."""
        await self._ledger.delete_draft(draft_id)
        await self.queue.enqueue(EntityType.DRAFT, draft_id, SyncOperation.DELETE)
        self.emitter.emit(StorageEvent.DRAFT_DELETED, {"id": draft_id})

    async def get_drafts_offline(
        self,
        *,
        status: str | None = None,
        sync_status: SyncState | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DraftRead]:
        return await self._ledger.list_drafts(
            status=status, sync_status=sync_status, limit=limit, offset=offset
        )

    async def get_draft_offline(self, draft_id: str) -> DraftRead | None:
        return await self._ledger.get_draft(draft_id)

    # -- images -------------------------------------------------------------

    async def save_image_offline(
        self, image: ImageInput | dict[str, Any], file: bytes | None = None
    ) -> str:
        """Cache an image for later upload and queue its creation.

        When ``file`` is given and compression is enabled, the bytes are
        compressed in the background; the call does not wait for it.
        """
        data = image if isinstance(image, ImageInput) else ImageInput.model_validate(image)
        saved = await self._ledger.save_image(
            {
                **data.model_dump(),
                "upload_status": UploadStatus.PENDING.value,
                "upload_progress": 0,
                "is_compressed": False,
            }
        )
        await self.queue.enqueue(EntityType.IMAGE, saved.id, SyncOperation.CREATE)
        self.emitter.emit(StorageEvent.IMAGE_SAVED, saved)
        if file is not None and self._config.compression_enabled:
            self._spawn(self._compress_in_background(saved.id, file))
        return saved.id

    async def _compress_in_background(self, image_id: str, data: bytes) -> None:
        try:
            result = await asyncio.to_thread(
                self._compressor,
                data,
                quality=self._settings.image_quality,
                max_width=self._settings.image_max_width,
                max_height=self._settings.image_max_height,
            )
        except CompressionError as exc:
            logger.warning("Compression of image %s failed, keeping original: %s", image_id, exc)
            return
        except Exception:
            logger.exception("Unexpected error compressing image %s", image_id)
            return

        if result.compressed_size >= len(data):
            logger.debug("Compressed image %s is not smaller, keeping original", image_id)
            return

        try:
            updated = await self._store_compressed(image_id, result)
        except Exception:
            logger.exception("Failed to store compressed image %s", image_id)
            return
        if updated is not None:
            self.emitter.emit(StorageEvent.IMAGE_COMPRESSED, updated)

    async def _store_compressed(self, image_id: str, result: CompressionResult) -> ImageRead | None:
        """Swap the compressed bytes in at ``local_path`` and record the new size.

        The bytes are staged in a sibling file and only moved over ``local_path``
        after the ledger row is updated; if the move fails the row is reverted.
        The file and the row therefore always describe the same representation.
        """
        current = await self._ledger.get_image(image_id)
        if current is None:
            logger.debug("Image %s was deleted before compression finished", image_id)
            return None
        path = Path(current.local_path)
        staged = path.with_name(f".{path.name}.{image_id}.compressed")
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(staged.write_bytes, result.data)
        try:
            updated = await self._ledger.update_image(
                image_id,
                {
                    "size": result.compressed_size,
                    "is_compressed": True,
                    "compressed_size": result.compressed_size,
                },
            )
            try:
                await asyncio.to_thread(os.replace, staged, path)
            except OSError:
                await self._ledger.update_image(
                    image_id,
                    {
                        "size": current.size,
                        "is_compressed": current.is_compressed,
                        "compressed_size": current.compressed_size,
                    },
                )
                raise
        finally:
            with contextlib.suppress(FileNotFoundError):
                await asyncio.to_thread(staged.unlink)
        return updated

    async def get_images_offline(
        self,
        *,
        upload_status: UploadStatus | str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ImageRead]:
        return await self._ledger.list_images(
            upload_status=upload_status, limit=limit, offset=offset
        )

    async def get_image_offline(self, image_id: str) -> ImageRead | None:
        """Read one image and mark it as recently used."""
        return await self._ledger.get_image(image_id, touch=True)

    async def delete_image_offline(self, image_id: str) -> None:
        """Delete an image entry and queue its remote deletion. Raises EntityNotFoundError."""
        await self._ledger.delete_image(image_id)
        await self.queue.enqueue(EntityType.IMAGE, image_id, SyncOperation.DELETE)
        self.emitter.emit(StorageEvent.IMAGE_DELETED, {"id": image_id})

    async def update_image_upload_status(
        self,
        image_id: str,
        status: UploadStatus,
        progress: int | None = None,
        remote_path: str | None = None,
    ) -> ImageRead:
        """Record upload progress reported by the transport.

        An ``uploaded`` image has its sync tasks acknowledged the same way as
        ``mark_synced``. No sync task is appended: this is bookkeeping, not a
        user mutation.
        """
        changes: dict[str, Any] = {"upload_status": status.value}
        if status is UploadStatus.UPLOADED:
            changes["upload_progress"] = 100
        elif progress is not None:
            changes["upload_progress"] = max(0, min(100, progress))
        if remote_path is not None:
            changes["remote_path"] = remote_path
        updated = await self._ledger.update_image(image_id, changes)
        if status is UploadStatus.UPLOADED:
            await self.queue.acknowledge(EntityType.IMAGE, image_id)
        return updated

    # -- sync ---------------------------------------------------------------

    async def mark_synced(
        self,
        entity_type: EntityType,
        entity_id: str,
        remote_id: str | None = None,
        *,
        through_task_id: str | None = None,
    ) -> int:
        """Record that the transport applied an entity's changes remotely.

        Only tasks up to the acknowledged one are completed (see
        ``SyncQueueManager.acknowledge``). A still-existing draft becomes
        ``synced`` once no open task remains for it; an edit queued while the
        sync was running keeps it ``pending``. ``last_modified`` is left
        untouched. Returns the number of sync tasks marked done.
        """
        completed = await self.queue.acknowledge(entity_type, entity_id, through_task_id)
        if entity_type is EntityType.DRAFT and await self._ledger.get_draft(entity_id):
            changes: dict[str, Any] = {}
            if remote_id is not None:
                changes["remote_id"] = remote_id
            if not await self.queue.has_open_tasks(entity_type, entity_id):
                changes["sync_status"] = SyncState.SYNCED.value
            if changes:
                await self._ledger.update_draft(entity_id, changes)
        return completed

    async def get_pending_sync_tasks(self, limit: int | None = None) -> list[SyncTaskRead]:
        """Return the next batch of pending tasks for the transport."""
        if limit is None:
            limit = self._settings.sync_batch_size
        return await self.queue.pending(limit)

    async def handle_network_online(self) -> list[SyncTaskRead]:
        """React to the device coming back online.

        When ``sync_on_network_restore`` is set, announces the restored network
        and, if anything is pending, a ``sync_required`` event carrying the
        pending batch. Returns that batch.
        """
        if not self._config.sync_on_network_restore:
            logger.debug("Network restored; sync on restore is disabled")
            return []
        self.emitter.emit(StorageEvent.NETWORK_RESTORED)
        pending = await self.queue.pending(self._settings.sync_batch_size)
        if pending:
            logger.info("Network restored with %d pending sync tasks", len(pending))
            self.emitter.emit(StorageEvent.SYNC_REQUIRED, pending)
        return pending

    def handle_network_offline(self) -> None:
        self.emitter.emit(StorageEvent.NETWORK_LOST)

    # -- stats & config -----------------------------------------------------

    async def get_storage_stats(self) -> StorageStats:
        """Summarize local storage use. Drafts do not count toward ``total_size``."""
        pending = await self.queue.pending(self._settings.stats_pending_cap)
        return StorageStats(
            total_size=await self._ledger.total_image_size(),
            draft_count=await self._ledger.count_drafts(),
            image_count=await self._ledger.count_images(),
            pending_sync_count=len(pending),
            last_cleanup=await self._last_cleanup_time(),
        )

    async def _last_cleanup_time(self) -> datetime | None:
        raw = await self._ledger.get_config(LAST_CLEANUP_KEY)
        if raw is None:
            return None
        try:
            return parse_iso(raw)
        except ValueError:
            logger.warning("Ignoring unparseable %s value %r", LAST_CLEANUP_KEY, raw)
            return None

    def get_config(self) -> OfflineStorageConfig:
        return self._config.model_copy()

    async def update_config(self, **changes: Any) -> OfflineStorageConfig:
        """Validate and persist config changes, then reschedule the timers.

        Raises ValueError for unknown keys and pydantic.ValidationError for
        invalid values; the active config is unchanged in both cases.
        """
        unknown = set(changes) - set(OfflineStorageConfig.model_fields)
        if unknown:
            msg = f"Unknown config keys: {sorted(unknown)}"
            raise ValueError(msg)
        new_config = OfflineStorageConfig.model_validate({**self._config.model_dump(), **changes})
        await self._ledger.set_config(CONFIG_KEY, new_config.model_dump_json(), CONFIG_CATEGORY)
        self._config = new_config
        self._reschedule()
        self.emitter.emit(StorageEvent.CONFIG_UPDATED, new_config)
        logger.info("Offline storage config updated: %s", sorted(changes))
        return new_config

    # -- cleanup ------------------------------------------------------------

    async def perform_auto_cleanup(self) -> CleanupReport:
        """Run every cleanup step in order. Never raises.

        Emits ``cleanup_completed`` when all steps succeed, otherwise
        ``cleanup_failed`` with the report.
        """
        logger.info("Starting automatic cleanup")
        report = await self.retention.run(self._config)
        try:
            await self._ledger.set_config(LAST_CLEANUP_KEY, format_iso(self._clock()), "general")
        except Exception:
            logger.exception("Failed to record last cleanup time")
            self.emitter.emit(StorageEvent.CLEANUP_FAILED, report)
            return report
        if report.ok:
            self.emitter.emit(StorageEvent.CLEANUP_COMPLETED, report)
            logger.info("Automatic cleanup completed")
        else:
            self.emitter.emit(StorageEvent.CLEANUP_FAILED, report)
            logger.warning("Automatic cleanup finished with failed steps: %s", list(report.errors))
        return report

    async def manual_cleanup(self, options: CleanupOptions | None = None) -> CleanupReport:
        """Run the selected cleanup steps on demand."""
        options = options or CleanupOptions()
        steps = [
            step
            for step, selected in (
                (CleanupStep.EXPIRED_IMAGES, options.clean_images),
                (CleanupStep.DRAFT_HISTORY, options.clean_drafts),
                (CleanupStep.SYNC_TASKS, options.clean_sync_tasks),
                (CleanupStep.QUOTA, options.enforce_quota),
            )
            if selected
        ]
        report = await self.retention.run(self._config, steps)
        self.emitter.emit(
            StorageEvent.MANUAL_CLEANUP_COMPLETED, {"options": options, "report": report}
        )
        return report

    # -- backups ------------------------------------------------------------

    async def create_backup(self, name: str, backup_type: BackupType = "full") -> BackupInfo:
        info = await self.backups.create_backup(name, backup_type, self._config)
        self.emitter.emit(StorageEvent.BACKUP_CREATED, info)
        return info

    async def restore_from_backup(
        self, backup_id: str, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Restore the selected sections of a backup and reload the config.

        Raises BackupNotFoundError or BackupCorruptedError.
        """
        result = await self.backups.restore(backup_id, options)
        await self._load_config()
        self._reschedule()
        self.emitter.emit(StorageEvent.BACKUP_RESTORED, result)
        return result

    async def list_backups(self) -> list[BackupInfo]:
        return await self.backups.list_backups()

    async def delete_backup(self, backup_id: str) -> None:
        await self.backups.delete_backup(backup_id)

    # -- search -------------------------------------------------------------

    async def search_offline(
        self,
        query: str,
        *,
        kind: SearchKind | None = None,
        limit: int = 50,
        sort_by: SortOrder = "relevance",
    ) -> list[SearchResult]:
        """Search cached drafts and images by title, tags, categories and text."""
        drafts = await self._ledger.list_drafts() if kind in (None, "draft") else []
        images = await self._ledger.list_images() if kind in (None, "image") else []
        return search(build_index(drafts, images), query, kind=kind, limit=limit, sort_by=sort_by)
