"""Sync task schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator

from draftsync.models.sync import EntityType, SyncOperation, TaskStatus
from draftsync.services.datetime_service import as_utc


class SyncTaskRead(BaseModel):
    """Sync task as stored in the ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    entity_type: EntityType
    entity_id: str
    operation: SyncOperation
    status: TaskStatus
    retry_count: int
    priority: int
    last_attempt: datetime | None = None
    error_message: str | None = None
    created_at: datetime

    @field_validator("created_at")
    @classmethod
    def attach_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @field_validator("last_attempt")
    @classmethod
    def attach_utc_optional(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None
