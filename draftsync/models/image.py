"""Image cache models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from draftsync.models.base import Base, new_id


class UploadStatus(StrEnum):
    """Upload progress of a cached image."""

    PENDING = "pending"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    FAILED = "failed"


class ImageCacheEntry(Base):
    """Image stored on the device, tracked for upload and eviction."""

    __tablename__ = "image_cache"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    local_path: Mapped[str] = mapped_column(Text, nullable=False)
    remote_path: Mapped[str | None] = mapped_column(Text, nullable=True)
    original_name: Mapped[str] = mapped_column(Text, nullable=False)
    size: Mapped[int] = mapped_column(Integer, nullable=False)
    mime_type: Mapped[str] = mapped_column(String, nullable=False)
    upload_status: Mapped[str] = mapped_column(
        String, nullable=False, default=UploadStatus.PENDING.value
    )
    upload_progress: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_compressed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    compressed_size: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    last_accessed: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_images_upload_status", "upload_status"),
        Index("idx_images_last_accessed", "last_accessed"),
    )
