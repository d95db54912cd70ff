"""Sync queue: append-only intent log with bounded, ordered retrieval."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from draftsync.exceptions import EntityNotFoundError
from draftsync.models.sync import OPEN_TASK_STATUSES, EntityType, SyncOperation, TaskStatus
from draftsync.services.datetime_service import now_utc
from draftsync.services.events import StorageEvent

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime, timedelta

    from draftsync.schemas.sync import SyncTaskRead
    from draftsync.services.events import EventEmitter
    from draftsync.services.ledger import Ledger

logger = logging.getLogger(__name__)

TERMINAL_TASK_STATUSES = (TaskStatus.DONE.value, TaskStatus.FAILED.value)


class SyncQueueManager:
    """Records sync intent and exposes it to the (external) transport.

    The core only appends tasks and does retry bookkeeping; it never sends
    anything and never retries ledger writes itself.
    """

    def __init__(
        self,
        ledger: Ledger,
        emitter: EventEmitter,
        *,
        clock: Callable[[], datetime] = now_utc,
        max_retries: int = 3,
    ) -> None:
        self._ledger = ledger
        self._emitter = emitter
        self._clock = clock
        self._max_retries = max_retries

    async def enqueue(
        self,
        entity_type: EntityType,
        entity_id: str,
        operation: SyncOperation,
        priority: int = 0,
    ) -> SyncTaskRead:
        """Append a pending task for one entity mutation.

        A ledger failure is logged and re-raised so the calling mutation
        reports that its sync intent was not recorded.
        """
        try:
            task = await self._ledger.add_sync_task(
                entity_type=entity_type.value,
                entity_id=entity_id,
                operation=operation.value,
                priority=priority,
            )
        except SQLAlchemyError as exc:
            logger.error(
                "Failed to enqueue %s %s for %s: %s", operation, entity_type, entity_id, exc
            )
            raise
        self._emitter.emit(StorageEvent.SYNC_TASK_ADDED, task)
        return task

    async def pending(self, limit: int = 50) -> list[SyncTaskRead]:
        """Return up to ``limit`` pending tasks, lowest priority value first."""
        if limit <= 0:
            return []
        return await self._ledger.pending_sync_tasks(limit)

    async def prune_completed(self, older_than: timedelta) -> int:
        """Delete terminal tasks older than the threshold. Returns the count."""
        cutoff = self._clock() - older_than
        removed = await self._ledger.delete_sync_tasks(
            created_before=cutoff, statuses=TERMINAL_TASK_STATUSES
        )
        logger.info("Pruned %d completed sync tasks older than %s", removed, older_than)
        return removed

    async def tasks_for(self, entity_type: EntityType, entity_id: str) -> list[SyncTaskRead]:
        """Return every task recorded for one entity, oldest first."""
        return await self._ledger.list_sync_tasks(
            entity_type=entity_type.value, entity_id=entity_id
        )

    async def mark_in_flight(self, task_id: str) -> SyncTaskRead:
        """Record that the transport picked up a task."""
        return await self._ledger.update_sync_task(
            task_id,
            {"status": TaskStatus.IN_FLIGHT.value, "last_attempt": self._clock()},
        )

    async def mark_done(self, task_id: str) -> SyncTaskRead:
        """Record that a task was applied remotely."""
        return await self._ledger.update_sync_task(
            task_id, {"status": TaskStatus.DONE.value, "error_message": None}
        )

    async def mark_failed(self, task_id: str, error: str) -> SyncTaskRead:
        """Record a failed attempt.

        The task returns to ``pending`` until ``max_retries`` attempts have
        failed, after which it is parked as ``failed``.
        """
        task = await self._ledger.get_sync_task(task_id)
        if task is None:
            raise EntityNotFoundError("sync task", task_id)
        retry_count = task.retry_count + 1
        status = TaskStatus.FAILED if retry_count >= self._max_retries else TaskStatus.PENDING
        if status is TaskStatus.FAILED:
            logger.warning(
                "Sync task %s (%s %s) failed permanently after %d attempts: %s",
                task_id,
                task.operation,
                task.entity_id,
                retry_count,
                error,
            )
        return await self._ledger.update_sync_task(
            task_id,
            {
                "status": status.value,
                "retry_count": retry_count,
                "error_message": error,
                "last_attempt": self._clock(),
            },
        )

    async def acknowledge(
        self,
        entity_type: EntityType,
        entity_id: str,
        through_task_id: str | None = None,
    ) -> int:
        """Mark the entity's open tasks done up to a boundary task. Returns the count.

        The boundary is ``through_task_id`` when given, otherwise the newest
        in-flight task, otherwise the oldest open task. Tasks appended after
        the boundary stay open, so edits made while a sync was running are
        not lost. Raises EntityNotFoundError if ``through_task_id`` is not a
        task of this entity.
        """
        tasks = await self.tasks_for(entity_type, entity_id)
        ids = [task.id for task in tasks]
        if through_task_id is not None:
            if through_task_id not in ids:
                raise EntityNotFoundError("sync task", through_task_id)
            boundary = ids.index(through_task_id)
        else:
            in_flight = [i for i, t in enumerate(tasks) if t.status is TaskStatus.IN_FLIGHT]
            open_ = [i for i, t in enumerate(tasks) if t.status.value in OPEN_TASK_STATUSES]
            if in_flight:
                boundary = in_flight[-1]
            elif open_:
                boundary = open_[0]
            else:
                return 0
        completed = 0
        for task in tasks[: boundary + 1]:
            if task.status.value in OPEN_TASK_STATUSES:
                await self.mark_done(task.id)
                completed += 1
        return completed

    async def has_open_tasks(self, entity_type: EntityType, entity_id: str) -> bool:
        """Return True while the entity has a pending or in-flight task."""
        return any(
            task.status.value in OPEN_TASK_STATUSES
            for task in await self.tasks_for(entity_type, entity_id)
        )
