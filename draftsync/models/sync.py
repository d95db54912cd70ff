"""Sync task model."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from draftsync.models.base import Base, new_id


class EntityType(StrEnum):
    """Kind of entity a sync task targets."""

    DRAFT = "draft"
    IMAGE = "image"
    SETTINGS = "settings"


class SyncOperation(StrEnum):
    """Remote operation a sync task asks for."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class TaskStatus(StrEnum):
    """Lifecycle of a sync task. The transport owns the terminal transitions."""

    PENDING = "pending"
    IN_FLIGHT = "in_flight"
    DONE = "done"
    FAILED = "failed"


OPEN_TASK_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_FLIGHT.value)


class SyncTask(Base):
    """Durable intent to apply one operation to one entity remotely."""

    __tablename__ = "sync_tasks"

    # Insertion order; breaks ties between tasks created in the same instant.
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True, default=new_id)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[str] = mapped_column(String, nullable=False)
    operation: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default=TaskStatus.PENDING.value)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_attempt: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_sync_tasks_status", "status"),
        Index("idx_sync_tasks_order", "priority", "created_at", "seq"),
        Index("idx_sync_tasks_entity", "entity_type", "entity_id"),
    )
