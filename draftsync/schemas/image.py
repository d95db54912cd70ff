"""Image cache schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from draftsync.models.image import UploadStatus
from draftsync.services.datetime_service import as_utc


class ImageInput(BaseModel):
    """Metadata of an image being cached for later upload."""

    local_path: str = Field(min_length=1)
    original_name: str = Field(min_length=1)
    size: int = Field(ge=0)
    mime_type: str = Field(min_length=1)


class ImageRead(BaseModel):
    """Image cache entry as stored in the ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    local_path: str
    remote_path: str | None = None
    original_name: str
    size: int
    mime_type: str
    upload_status: UploadStatus
    upload_progress: int
    is_compressed: bool
    compressed_size: int | None = None
    created_at: datetime
    last_accessed: datetime

    @field_validator("created_at", "last_accessed")
    @classmethod
    def attach_utc(cls, v: datetime) -> datetime:
        return as_utc(v)
