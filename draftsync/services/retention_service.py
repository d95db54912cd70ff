"""Quota and retention policy for the offline store.

Planning is done by pure functions over ledger snapshots; ``RetentionEnforcer``
applies the plans through caller-supplied delete paths so that every eviction
is recorded in the sync queue like a user delete.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import timedelta
from enum import StrEnum
from typing import TYPE_CHECKING

from draftsync.exceptions import EntityNotFoundError
from draftsync.models.draft import SyncState
from draftsync.services.datetime_service import now_utc
from draftsync.services.events import StorageEvent

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterable, Sequence
    from datetime import datetime

    from draftsync.schemas.draft import DraftRead
    from draftsync.schemas.image import ImageRead
    from draftsync.schemas.storage import OfflineStorageConfig
    from draftsync.services.events import EventEmitter
    from draftsync.services.ledger import Ledger
    from draftsync.services.sync_queue import SyncQueueManager

logger = logging.getLogger(__name__)

IMAGE_MAX_AGE = timedelta(days=30)
SYNC_TASK_RETENTION = timedelta(days=7)
QUOTA_TARGET_RATIO = 0.8


class CleanupStep(StrEnum):
    """Cleanup sub-steps, in the order a full cleanup runs them."""

    EXPIRED_IMAGES = "expired_images"
    DRAFT_HISTORY = "draft_history"
    SYNC_TASKS = "sync_tasks"
    QUOTA = "quota"


ALL_STEPS = tuple(CleanupStep)


@dataclass
class QuotaEviction:
    """Outcome of one quota enforcement run."""

    old_size: int
    new_size: int
    evicted: list[str] = field(default_factory=list)


@dataclass
class CleanupReport:
    """Per-step outcome of a cleanup run. Failed steps carry their error message."""

    expired_images: int = 0
    pruned_drafts: int = 0
    pruned_sync_tasks: int = 0
    quota: QuotaEviction | None = None
    completed: list[CleanupStep] = field(default_factory=list)
    errors: dict[CleanupStep, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.errors


def select_prunable_drafts(drafts: Iterable[DraftRead], max_history: int) -> list[DraftRead]:
    """Return the drafts beyond the newest ``max_history`` that are safe to delete.

    Only ``synced`` drafts are ever selected; pending or failed drafts beyond
    the limit are kept.
    """
    ordered = sorted(drafts, key=lambda d: d.last_modified, reverse=True)
    if len(ordered) <= max_history:
        return []
    return [d for d in ordered[max_history:] if d.sync_status == SyncState.SYNCED]


def plan_quota_eviction(
    images: Sequence[ImageRead],
    max_cache_size: int,
    target_ratio: float = QUOTA_TARGET_RATIO,
) -> tuple[list[ImageRead], int]:
    """Choose images to evict, least recently accessed first.

    Nothing is evicted while the total is within ``max_cache_size``. Once it is
    exceeded, images are evicted until the total is at most
    ``target_ratio * max_cache_size``. Returns the eviction list and the
    resulting total.
    """
    total = sum(image.size for image in images)
    if total <= max_cache_size:
        return [], total
    target = max_cache_size * target_ratio
    evict: list[ImageRead] = []
    for image in sorted(images, key=lambda i: (i.last_accessed, i.created_at)):
        if total <= target:
            break
        evict.append(image)
        total -= image.size
    return evict, total


class RetentionEnforcer:
    """Runs the cleanup sub-steps against the ledger."""

    def __init__(
        self,
        ledger: Ledger,
        *,
        delete_image: Callable[[str], Awaitable[None]],
        delete_draft: Callable[[str], Awaitable[None]],
        queue: SyncQueueManager,
        emitter: EventEmitter,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._ledger = ledger
        self._delete_image = delete_image
        self._delete_draft = delete_draft
        self._queue = queue
        self._emitter = emitter
        self._clock = clock

    @staticmethod
    async def _delete_if_present(
        delete: Callable[[str], Awaitable[None]], kind: str, entity_id: str
    ) -> bool:
        """Delete one entity; one removed concurrently is skipped rather than fatal."""
        try:
            await delete(entity_id)
        except EntityNotFoundError:
            logger.debug("%s %s was already removed; skipping", kind.capitalize(), entity_id)
            return False
        return True

    async def evict_expired_images(self) -> int:
        """Delete images not accessed within ``IMAGE_MAX_AGE``."""
        cutoff = self._clock() - IMAGE_MAX_AGE
        expired = await self._ledger.list_images(last_accessed_before=cutoff)
        evicted = 0
        for image in expired:
            if await self._delete_if_present(self._delete_image, "image", image.id):
                evicted += 1
        logger.info("Evicted %d expired images", evicted)
        return evicted

    async def prune_draft_history(self, max_history: int) -> int:
        """Delete synced drafts beyond the newest ``max_history``."""
        drafts = await self._ledger.list_drafts()
        prunable = select_prunable_drafts(drafts, max_history)
        pruned = 0
        for draft in prunable:
            if await self._delete_if_present(self._delete_draft, "draft", draft.id):
                pruned += 1
        if pruned:
            logger.info("Pruned %d synced drafts beyond history limit %d", pruned, max_history)
        return pruned

    async def prune_sync_tasks(self) -> int:
        """Delete finished sync tasks older than ``SYNC_TASK_RETENTION``."""
        return await self._queue.prune_completed(SYNC_TASK_RETENTION)

    async def enforce_quota(self, max_cache_size: int) -> QuotaEviction | None:
        """Evict images until the cache is back under its ceiling.

        Returns None when the cache was already within the limit.
        """
        images = await self._ledger.list_images(least_recently_used=True)
        old_size = sum(image.size for image in images)
        evict, _ = plan_quota_eviction(images, max_cache_size)
        if old_size <= max_cache_size:
            return None
        logger.warning("Image cache over quota: %d > %d bytes", old_size, max_cache_size)
        eviction = QuotaEviction(old_size=old_size, new_size=old_size)
        for image in evict:
            if await self._delete_if_present(self._delete_image, "image", image.id):
                eviction.evicted.append(image.id)
            eviction.new_size -= image.size
        self._emitter.emit(
            StorageEvent.STORAGE_LIMIT_EXCEEDED,
            {"old_size": old_size, "new_size": eviction.new_size, "evicted": eviction.evicted},
        )
        logger.info(
            "Evicted %d images, cache now %d bytes", len(eviction.evicted), eviction.new_size
        )
        return eviction

    async def run(
        self, config: OfflineStorageConfig, steps: Iterable[CleanupStep] = ALL_STEPS
    ) -> CleanupReport:
        """Run the selected steps in canonical order.

        A failing step is logged and recorded in the report; later steps still run.
        """
        selected = set(steps)
        report = CleanupReport()
        for step in ALL_STEPS:
            if step not in selected:
                continue
            try:
                if step is CleanupStep.EXPIRED_IMAGES:
                    report.expired_images = await self.evict_expired_images()
                elif step is CleanupStep.DRAFT_HISTORY:
                    report.pruned_drafts = await self.prune_draft_history(
                        config.max_draft_history
                    )
                elif step is CleanupStep.SYNC_TASKS:
                    report.pruned_sync_tasks = await self.prune_sync_tasks()
                else:
                    report.quota = await self.enforce_quota(config.max_cache_size)
            except Exception as exc:
                logger.exception("Cleanup step %s failed", step)
                report.errors[step] = str(exc)
            else:
                report.completed.append(step)
        return report
