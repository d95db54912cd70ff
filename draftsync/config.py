"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_SECRET_KEY = "change-me-in-production"


class Settings(BaseSettings):
    """draftsync process settings.

    Runtime engine limits (cache size, draft history, cleanup interval) live in
    ``OfflineStorageConfig`` and are persisted in the ledger instead.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    secret_key: str = DEFAULT_SECRET_KEY
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///data/db/draftsync.db"

    # Image compression
    image_quality: float = Field(default=0.8, gt=0, le=1)
    image_max_width: int = Field(default=1920, ge=1)
    image_max_height: int = Field(default=1080, ge=1)

    # Sync queue
    sync_batch_size: int = Field(default=50, ge=1)
    stats_pending_cap: int = Field(default=1000, ge=1)
    sync_max_retries: int = Field(default=3, ge=1)

    def validate_encryption_key(self) -> None:
        """Reject secrets too weak to derive a backup encryption key from."""
        if self.secret_key == DEFAULT_SECRET_KEY or len(self.secret_key) < 32:
            raise ValueError(
                "SECRET_KEY must be overridden with a high-entropy value (>=32 chars) "
                "before encrypted backups can be created or restored"
            )
