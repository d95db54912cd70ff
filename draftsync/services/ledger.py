"""Ledger: durable per-record storage for drafts, images, sync tasks and config.

Every public method runs in its own session and commits before returning, so
each call is atomic at the single-record level (bulk deletes are a single
statement). Read methods return pydantic models, never live ORM rows.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, func, select

from draftsync.exceptions import EntityNotFoundError
from draftsync.models.base import new_id
from draftsync.models.config import ConfigEntry
from draftsync.models.draft import Draft
from draftsync.models.image import ImageCacheEntry
from draftsync.models.sync import SyncTask, TaskStatus
from draftsync.schemas.draft import DraftRead
from draftsync.schemas.image import ImageRead
from draftsync.schemas.storage import ConfigEntryRead
from draftsync.schemas.sync import SyncTaskRead
from draftsync.services.datetime_service import now_utc

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

_JSON_LIST_FIELDS = frozenset({"tags", "categories"})


def _encode_draft_values(values: dict[str, Any]) -> dict[str, Any]:
    """Serialize list fields to the JSON text stored in the drafts table."""
    encoded = dict(values)
    for key in _JSON_LIST_FIELDS & encoded.keys():
        encoded[key] = json.dumps(list(encoded[key] or []))
    return encoded


class Ledger:
    """Typed CRUD over the four ledger tables."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock

    # -- drafts -------------------------------------------------------------

    async def save_draft(self, values: dict[str, Any]) -> DraftRead:
        """Insert a new draft. ``created_at`` and ``last_modified`` default to now."""
        now = self._clock()
        row = Draft(**_encode_draft_values(values))
        row.id = row.id or new_id()
        row.created_at = now
        if row.last_modified is None:
            row.last_modified = now
        if row.version is None:
            row.version = 1
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return DraftRead.model_validate(row)

    async def update_draft(
        self, draft_id: str, changes: dict[str, Any], *, bump_version: bool = False
    ) -> DraftRead:
        """Apply field changes to a draft. Raises EntityNotFoundError."""
        async with self._session_factory() as session:
            row = await session.get(Draft, draft_id)
            if row is None:
                raise EntityNotFoundError("draft", draft_id)
            for key, value in _encode_draft_values(changes).items():
                setattr(row, key, value)
            if bump_version:
                row.version += 1
            await session.commit()
        return DraftRead.model_validate(row)

    async def delete_draft(self, draft_id: str) -> None:
        """Delete a draft. Raises EntityNotFoundError."""
        async with self._session_factory() as session:
            row = await session.get(Draft, draft_id)
            if row is None:
                raise EntityNotFoundError("draft", draft_id)
            await session.delete(row)
            await session.commit()

    async def get_draft(self, draft_id: str) -> DraftRead | None:
        """Return a single draft, or None."""
        async with self._session_factory() as session:
            row = await session.get(Draft, draft_id)
            return DraftRead.model_validate(row) if row is not None else None

    async def list_drafts(
        self,
        *,
        status: str | None = None,
        sync_status: str | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[DraftRead]:
        """List drafts, most recently modified first."""
        stmt = select(Draft)
        if status:
            stmt = stmt.where(Draft.status == status)
        if sync_status:
            stmt = stmt.where(Draft.sync_status == sync_status)
        stmt = stmt.order_by(Draft.last_modified.desc(), Draft.created_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [DraftRead.model_validate(row) for row in result.scalars().all()]

    async def count_drafts(self) -> int:
        """Return the number of stored drafts."""
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(Draft))
            return result.scalar() or 0

    # -- images -------------------------------------------------------------

    async def save_image(self, values: dict[str, Any]) -> ImageRead:
        """Insert a new image cache entry, stamped as created and accessed now."""
        now = self._clock()
        row = ImageCacheEntry(**values)
        row.id = row.id or new_id()
        row.created_at = now
        row.last_accessed = now
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return ImageRead.model_validate(row)

    async def update_image(self, image_id: str, changes: dict[str, Any]) -> ImageRead:
        """Apply field changes to an image entry. Raises EntityNotFoundError."""
        async with self._session_factory() as session:
            row = await session.get(ImageCacheEntry, image_id)
            if row is None:
                raise EntityNotFoundError("image", image_id)
            for key, value in changes.items():
                setattr(row, key, value)
            await session.commit()
        return ImageRead.model_validate(row)

    async def delete_image(self, image_id: str) -> None:
        """Delete an image entry. Raises EntityNotFoundError."""
        async with self._session_factory() as session:
            row = await session.get(ImageCacheEntry, image_id)
            if row is None:
                raise EntityNotFoundError("image", image_id)
            await session.delete(row)
            await session.commit()

    async def get_image(self, image_id: str, *, touch: bool = False) -> ImageRead | None:
        """Return a single image entry, advancing ``last_accessed`` when touch is set."""
        async with self._session_factory() as session:
            row = await session.get(ImageCacheEntry, image_id)
            if row is None:
                return None
            if touch:
                row.last_accessed = self._clock()
                await session.commit()
            return ImageRead.model_validate(row)

    async def list_images(
        self,
        *,
        upload_status: str | None = None,
        last_accessed_before: datetime | None = None,
        least_recently_used: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[ImageRead]:
        """List image entries without touching them.

        Newest first by default; ``least_recently_used`` orders by ascending
        ``last_accessed`` instead.
        """
        stmt = select(ImageCacheEntry)
        if upload_status:
            stmt = stmt.where(ImageCacheEntry.upload_status == upload_status)
        if last_accessed_before is not None:
            stmt = stmt.where(ImageCacheEntry.last_accessed < last_accessed_before)
        if least_recently_used:
            stmt = stmt.order_by(
                ImageCacheEntry.last_accessed.asc(), ImageCacheEntry.created_at.asc()
            )
        else:
            stmt = stmt.order_by(ImageCacheEntry.created_at.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [ImageRead.model_validate(row) for row in result.scalars().all()]

    async def count_images(self) -> int:
        """Return the number of cached images."""
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(ImageCacheEntry))
            return result.scalar() or 0

    async def total_image_size(self) -> int:
        """Return the summed ``size`` of all cached images, in bytes."""
        async with self._session_factory() as session:
            result = await session.execute(
                select(func.coalesce(func.sum(ImageCacheEntry.size), 0))
            )
            return int(result.scalar() or 0)

    # -- sync tasks ---------------------------------------------------------

    async def add_sync_task(
        self,
        *,
        entity_type: str,
        entity_id: str,
        operation: str,
        priority: int = 0,
    ) -> SyncTaskRead:
        """Append a pending sync task."""
        row = SyncTask(
            id=new_id(),
            entity_type=entity_type,
            entity_id=entity_id,
            operation=operation,
            status=TaskStatus.PENDING.value,
            retry_count=0,
            priority=priority,
            created_at=self._clock(),
        )
        async with self._session_factory() as session:
            session.add(row)
            await session.commit()
        return SyncTaskRead.model_validate(row)

    async def get_sync_task(self, task_id: str) -> SyncTaskRead | None:
        """Return a single sync task, or None."""
        async with self._session_factory() as session:
            result = await session.execute(select(SyncTask).where(SyncTask.id == task_id))
            row = result.scalar_one_or_none()
            return SyncTaskRead.model_validate(row) if row is not None else None

    async def update_sync_task(self, task_id: str, changes: dict[str, Any]) -> SyncTaskRead:
        """Apply bookkeeping changes to a sync task. Raises EntityNotFoundError."""
        async with self._session_factory() as session:
            result = await session.execute(select(SyncTask).where(SyncTask.id == task_id))
            row = result.scalar_one_or_none()
            if row is None:
                raise EntityNotFoundError("sync task", task_id)
            for key, value in changes.items():
                setattr(row, key, value)
            await session.commit()
        return SyncTaskRead.model_validate(row)

    async def list_sync_tasks(
        self,
        *,
        status: str | None = None,
        entity_type: str | None = None,
        entity_id: str | None = None,
    ) -> list[SyncTaskRead]:
        """List sync tasks in insertion order."""
        stmt = select(SyncTask)
        if status:
            stmt = stmt.where(SyncTask.status == status)
        if entity_type:
            stmt = stmt.where(SyncTask.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(SyncTask.entity_id == entity_id)
        stmt = stmt.order_by(SyncTask.seq.asc())
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [SyncTaskRead.model_validate(row) for row in result.scalars().all()]

    async def pending_sync_tasks(self, limit: int) -> list[SyncTaskRead]:
        """Return up to ``limit`` pending tasks: priority asc, then creation order."""
        stmt = (
            select(SyncTask)
            .where(SyncTask.status == TaskStatus.PENDING.value)
            .order_by(SyncTask.priority.asc(), SyncTask.created_at.asc(), SyncTask.seq.asc())
            .limit(limit)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [SyncTaskRead.model_validate(row) for row in result.scalars().all()]

    async def delete_sync_tasks(
        self, *, created_before: datetime, statuses: Iterable[str]
    ) -> int:
        """Delete tasks in the given statuses created before a cutoff. Returns the count."""
        stmt = delete(SyncTask).where(
            SyncTask.created_at < created_before,
            SyncTask.status.in_(list(statuses)),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount or 0

    # -- config -------------------------------------------------------------

    async def get_config(self, key: str) -> str | None:
        """Return the raw value stored under a key, or None."""
        async with self._session_factory() as session:
            row = await session.get(ConfigEntry, key)
            return row.value if row is not None else None

    async def set_config(self, key: str, value: str, category: str = "general") -> None:
        """Insert or replace a config entry."""
        async with self._session_factory() as session:
            row = await session.get(ConfigEntry, key)
            if row is None:
                row = ConfigEntry(key=key)
                session.add(row)
            row.value = value
            row.category = category
            row.updated_at = self._clock()
            await session.commit()

    async def delete_config(self, key: str) -> bool:
        """Delete a config entry. Returns False if it did not exist."""
        async with self._session_factory() as session:
            row = await session.get(ConfigEntry, key)
            if row is None:
                return False
            await session.delete(row)
            await session.commit()
            return True

    async def list_configs(
        self, *, category: str | None = None, exclude_category: str | None = None
    ) -> list[ConfigEntryRead]:
        """List config entries ordered by key."""
        stmt = select(ConfigEntry)
        if category:
            stmt = stmt.where(ConfigEntry.category == category)
        if exclude_category:
            stmt = stmt.where(ConfigEntry.category != exclude_category)
        stmt = stmt.order_by(ConfigEntry.key)
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            return [ConfigEntryRead.model_validate(row) for row in result.scalars().all()]
