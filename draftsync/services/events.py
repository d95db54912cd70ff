"""Signals emitted by the offline store and a minimal listener registry."""

from __future__ import annotations

import logging
from enum import StrEnum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)


class StorageEvent(StrEnum):
    """Distinguishable outcomes observers can react to without polling."""

    DRAFT_SAVED = "draft_saved_offline"
    DRAFT_UPDATED = "draft_updated_offline"
    DRAFT_DELETED = "draft_deleted_offline"
    IMAGE_SAVED = "image_saved_offline"
    IMAGE_COMPRESSED = "image_compressed"
    IMAGE_DELETED = "image_deleted_offline"
    SYNC_TASK_ADDED = "sync_task_added"
    SYNC_REQUIRED = "sync_required"
    CLEANUP_COMPLETED = "cleanup_completed"
    CLEANUP_FAILED = "cleanup_failed"
    MANUAL_CLEANUP_COMPLETED = "manual_cleanup_completed"
    CONFIG_UPDATED = "config_updated"
    STORAGE_LIMIT_EXCEEDED = "storage_limit_exceeded"
    BACKUP_CREATED = "backup_created"
    BACKUP_RESTORED = "backup_restored"
    NETWORK_RESTORED = "network_restored"
    NETWORK_LOST = "network_lost"


class EventEmitter:
    """Dispatch events synchronously to registered listeners.

    A listener that raises is logged and skipped; it never affects the
    operation that emitted the event or the other listeners.
    """

    def __init__(self) -> None:
        self._listeners: dict[StorageEvent | None, list[Callable[[StorageEvent, Any], None]]] = {}

    def subscribe(
        self, event: StorageEvent, listener: Callable[[StorageEvent, Any], None]
    ) -> Callable[[], None]:
        """Register a listener for one event. Returns a function that unsubscribes it."""
        self._listeners.setdefault(event, []).append(listener)
        return lambda: self._remove(event, listener)

    def subscribe_all(self, listener: Callable[[StorageEvent, Any], None]) -> Callable[[], None]:
        """Register a listener for every event."""
        self._listeners.setdefault(None, []).append(listener)
        return lambda: self._remove(None, listener)

    def _remove(
        self, event: StorageEvent | None, listener: Callable[[StorageEvent, Any], None]
    ) -> None:
        listeners = self._listeners.get(event, [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(self, event: StorageEvent, payload: Any = None) -> None:
        """Deliver an event to its listeners, then to catch-all listeners."""
        targets = [*self._listeners.get(event, []), *self._listeners.get(None, [])]
        for listener in targets:
            try:
                listener(event, payload)
            except Exception:
                logger.exception("Listener %r failed handling %s", listener, event.value)

    def clear(self) -> None:
        """Remove all listeners."""
        self._listeners.clear()
