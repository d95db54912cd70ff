"""Key/value configuration model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from draftsync.models.base import Base


class ConfigEntry(Base):
    """Opaque configuration value scoped by category.

    Also holds the backup catalog (``backup_<id>`` / ``backup_data_<id>``).
    """

    __tablename__ = "config_entries"

    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String, nullable=False, default="general")
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (Index("idx_config_category", "category"),)
