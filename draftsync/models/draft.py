"""Draft models."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from draftsync.models.base import Base, new_id


class SyncState(StrEnum):
    """Reconciliation state of a locally stored entity."""

    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class Draft(Base):
    """Locally authored draft awaiting (or past) remote reconciliation."""

    __tablename__ = "drafts"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    excerpt: Mapped[str | None] = mapped_column(Text, nullable=True)
    tags: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    categories: Mapped[str] = mapped_column(Text, nullable=False, default="[]")
    featured_image: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    is_local: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_modified: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sync_status: Mapped[str] = mapped_column(
        String, nullable=False, default=SyncState.PENDING.value
    )
    remote_id: Mapped[str | None] = mapped_column(String, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("idx_drafts_status", "status"),
        Index("idx_drafts_sync_status", "sync_status"),
        Index("idx_drafts_last_modified", "last_modified"),
    )
