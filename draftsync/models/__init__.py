"""SQLAlchemy ORM models for the draftsync ledger."""

from draftsync.models.base import Base
from draftsync.models.config import ConfigEntry
from draftsync.models.draft import Draft, SyncState
from draftsync.models.image import ImageCacheEntry, UploadStatus
from draftsync.models.sync import EntityType, SyncOperation, SyncTask, TaskStatus

__all__ = [
    "Base",
    "ConfigEntry",
    "Draft",
    "EntityType",
    "ImageCacheEntry",
    "SyncOperation",
    "SyncState",
    "SyncTask",
    "TaskStatus",
    "UploadStatus",
]
