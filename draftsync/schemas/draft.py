"""Draft schemas."""

from __future__ import annotations

import json
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from draftsync.models.draft import SyncState
from draftsync.services.datetime_service import as_utc

DEFAULT_TITLE = "Untitled"


def _decode_list(value: object) -> object:
    """Tags and categories are stored as JSON text in the ledger."""
    if isinstance(value, str):
        return json.loads(value) if value else []
    return value


class DraftInput(BaseModel):
    """Partial draft supplied by the caller on save.

    Unknown keys are ignored so that records read back from a backup can be
    replayed as-is.
    """

    title: str | None = None
    content: str | None = None
    excerpt: str | None = None
    tags: list[str] | None = None
    categories: list[str] | None = None
    featured_image: str | None = None
    status: str | None = None
    remote_id: str | None = None


class DraftUpdate(BaseModel):
    """Fields a caller may change on an existing draft. Only set fields apply."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    content: str | None = None
    excerpt: str | None = None
    tags: list[str] | None = None
    categories: list[str] | None = None
    featured_image: str | None = None
    status: str | None = None
    remote_id: str | None = None


class DraftRead(BaseModel):
    """Draft as stored in the ledger."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    content: str
    excerpt: str | None = None
    tags: list[str] = Field(default_factory=list)
    categories: list[str] = Field(default_factory=list)
    featured_image: str | None = None
    status: str
    is_local: bool
    last_modified: datetime
    created_at: datetime
    sync_status: SyncState
    remote_id: str | None = None
    version: int

    @field_validator("tags", "categories", mode="before")
    @classmethod
    def decode_json_list(cls, v: object) -> object:
        return _decode_list(v)

    @field_validator("last_modified", "created_at")
    @classmethod
    def attach_utc(cls, v: datetime) -> datetime:
        return as_utc(v)
