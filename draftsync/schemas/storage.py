"""Engine configuration, statistics, cleanup and backup schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

BackupType = Literal["full", "incremental", "drafts-only", "images-only", "config-only"]
ConflictResolution = Literal["duplicate", "skip", "overwrite"]


class OfflineStorageConfig(BaseModel):
    """Runtime limits of the offline store, persisted as one ledger record."""

    model_config = ConfigDict(extra="ignore")

    max_cache_size: int = Field(default=100 * 1024 * 1024, ge=0)
    max_draft_history: int = Field(default=100, ge=0)
    auto_cleanup_interval: int = Field(default=24 * 60 * 60 * 1000, ge=1000)
    compression_enabled: bool = True
    encryption_enabled: bool = False
    sync_on_network_restore: bool = True
    auto_backup_enabled: bool = True
    auto_backup_interval: int = Field(default=24 * 60 * 60 * 1000, ge=1000)
    max_backup_count: int = Field(default=10, ge=1)


class ConfigEntryRead(BaseModel):
    """A key/value config row."""

    model_config = ConfigDict(from_attributes=True)

    key: str
    value: str
    category: str


class StorageStats(BaseModel):
    """Aggregate view of local storage use."""

    total_size: int
    draft_count: int
    image_count: int
    pending_sync_count: int
    last_cleanup: datetime | None = None


class CleanupOptions(BaseModel):
    """Which cleanup steps a manual cleanup should run."""

    clean_images: bool = False
    clean_drafts: bool = False
    clean_sync_tasks: bool = False
    enforce_quota: bool = False


class ItemCounts(BaseModel):
    """Number of records captured in a backup."""

    drafts: int = 0
    images: int = 0
    configs: int = 0


class BackupInfo(BaseModel):
    """Catalog record describing one stored backup."""

    id: str
    name: str
    type: BackupType
    size: int
    created_at: datetime
    format_version: int
    codec: str
    compressed: bool
    encrypted: bool
    checksum: str
    base_backup_id: str | None = None
    key_id: str | None = None
    item_counts: ItemCounts = Field(default_factory=ItemCounts)


class RestoreOptions(BaseModel):
    """What a restore replays and how it treats records that still exist locally.

    ``duplicate`` replays every draft as a new one; ``skip`` keeps the local
    record; ``overwrite`` replaces it in place. Configs are only kept on
    ``skip``. Images are never duplicated, since a backup carries no image file.
    """

    restore_drafts: bool = True
    restore_images: bool = True
    restore_configs: bool = True
    conflict_resolution: ConflictResolution = "duplicate"


class RestoreResult(BaseModel):
    """Outcome of replaying a backup."""

    backup_id: str
    drafts_restored: int = 0
    images_restored: int = 0
    configs_restored: int = 0
    skipped: int = 0
