"""Backup and restore of the offline store.

A backup is a versioned JSON document (drafts, image metadata without local
paths, config entries; the selective types carry one of those sections)
encoded through a named codec, optionally encrypted, and stored in the
ledger's config namespace:

- ``backup_<id>``: BackupInfo JSON (the catalog entry)
- ``backup_data_<id>``: the encoded payload
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
import logging
import zlib
from typing import TYPE_CHECKING, Any, Protocol

from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from draftsync.exceptions import BackupCorruptedError, BackupNotFoundError
from draftsync.models.base import new_id
from draftsync.schemas.draft import DraftInput, DraftUpdate
from draftsync.schemas.storage import BackupInfo, ItemCounts, RestoreOptions, RestoreResult
from draftsync.services.backup_cipher import cipher_for
from draftsync.services.datetime_service import format_iso, now_utc

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from datetime import datetime

    from draftsync.config import Settings
    from draftsync.schemas.storage import BackupType, ConflictResolution, OfflineStorageConfig
    from draftsync.services.backup_cipher import BackupCipher
    from draftsync.services.ledger import Ledger

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = 1
BACKUP_CATEGORY = "backup"
BACKUP_INFO_PREFIX = "backup_"
BACKUP_DATA_PREFIX = "backup_data_"


class BackupCodec(Protocol):
    """Reversible text transform applied to the serialized backup document."""

    name: str

    def encode(self, document: str) -> str: ...

    def decode(self, payload: str) -> str: ...


class PlainJsonCodec:
    """Stores the document as-is."""

    name = "json"

    def encode(self, document: str) -> str:
        return document

    def decode(self, payload: str) -> str:
        return payload


class ZlibBase64Codec:
    """zlib-deflated UTF-8, base64 encoded so it fits a text column."""

    name = "zlib+base64"

    def encode(self, document: str) -> str:
        return base64.b64encode(zlib.compress(document.encode(), 9)).decode("ascii")

    def decode(self, payload: str) -> str:
        return zlib.decompress(base64.b64decode(payload, validate=True)).decode()


CODECS: dict[str, BackupCodec] = {
    PlainJsonCodec.name: PlainJsonCodec(),
    ZlibBase64Codec.name: ZlibBase64Codec(),
}


def get_codec(name: str) -> BackupCodec:
    """Look up a codec by name. Raises ValueError if unknown."""
    codec = CODECS.get(name)
    if codec is None:
        msg = f"Unknown backup codec: {name!r}. Available: {list(CODECS)}"
        raise ValueError(msg)
    return codec


# Record sections each backup type captures.
BACKUP_SECTIONS: dict[str, frozenset[str]] = {
    "full": frozenset({"drafts", "images", "configs"}),
    "incremental": frozenset({"drafts", "images", "configs"}),
    "drafts-only": frozenset({"drafts"}),
    "images-only": frozenset({"images"}),
    "config-only": frozenset({"configs"}),
}

# Image fields a restore may write back; the file-describing ones stay local.
_RESTORABLE_IMAGE_FIELDS = ("original_name", "remote_path", "upload_status", "upload_progress")


def _checksum(document: str) -> str:
    return hashlib.sha256(document.encode()).hexdigest()


class BackupManager:
    """Creates, lists, restores and deletes backups stored in the ledger."""

    def __init__(
        self,
        ledger: Ledger,
        settings: Settings,
        *,
        replay_draft: Callable[[DraftInput], Awaitable[str]],
        overwrite_draft: Callable[[str, DraftUpdate], Awaitable[object]],
        clock: Callable[[], datetime] = now_utc,
    ) -> None:
        self._ledger = ledger
        self._settings = settings
        self._replay_draft = replay_draft
        self._overwrite_draft = overwrite_draft
        self._clock = clock

    def _cipher(self) -> BackupCipher:
        self._settings.validate_encryption_key()
        return cipher_for(self._settings.secret_key)

    async def create_backup(
        self, name: str, backup_type: BackupType, config: OfflineStorageConfig
    ) -> BackupInfo:
        """Snapshot the store and persist it as a new backup.

        ``drafts-only``, ``images-only`` and ``config-only`` capture a single
        section. An incremental backup only carries drafts modified and images
        created since the most recent full or incremental backup; with no such
        backup it is a full one. Older backups beyond ``max_backup_count`` are
        pruned afterwards.
        """
        if backup_type not in BACKUP_SECTIONS:
            msg = f"Unknown backup type: {backup_type!r}. Available: {list(BACKUP_SECTIONS)}"
            raise ValueError(msg)
        cipher = self._cipher() if config.encryption_enabled else None

        backup_id = new_id()
        created_at = self._clock()

        base: BackupInfo | None = None
        if backup_type == "incremental":
            earlier = [
                b for b in await self.list_backups() if b.type in ("full", "incremental")
            ]
            if earlier:
                base = earlier[0]
            else:
                logger.info("No earlier backup; creating %r as a full backup", name)
                backup_type = "full"

        sections = BACKUP_SECTIONS[backup_type]
        drafts = await self._ledger.list_drafts() if "drafts" in sections else []
        images = await self._ledger.list_images() if "images" in sections else []
        configs = (
            await self._ledger.list_configs(exclude_category=BACKUP_CATEGORY)
            if "configs" in sections
            else []
        )
        if base is not None:
            drafts = [d for d in drafts if d.last_modified > base.created_at]
            images = [i for i in images if i.created_at > base.created_at]

        data: dict[str, list[dict[str, Any]]] = {}
        if "drafts" in sections:
            data["drafts"] = [d.model_dump(mode="json") for d in drafts]
        if "images" in sections:
            data["images"] = [i.model_dump(mode="json", exclude={"local_path"}) for i in images]
        if "configs" in sections:
            data["configs"] = [c.model_dump(mode="json") for c in configs]
        document: dict[str, Any] = {
            "format_version": BACKUP_FORMAT_VERSION,
            "created_at": format_iso(created_at),
            "type": backup_type,
            "base_backup_id": base.id if base else None,
            "data": data,
        }
        plain = json.dumps(document, sort_keys=True, separators=(",", ":"))

        codec_name = ZlibBase64Codec.name if config.compression_enabled else PlainJsonCodec.name
        codec = get_codec(codec_name)
        payload = codec.encode(plain)
        if cipher is not None:
            payload = cipher.encrypt(payload)

        info = BackupInfo(
            id=backup_id,
            name=name,
            type=backup_type,
            size=len(payload.encode()),
            created_at=created_at,
            format_version=BACKUP_FORMAT_VERSION,
            codec=codec.name,
            compressed=config.compression_enabled,
            encrypted=cipher is not None,
            checksum=_checksum(plain),
            base_backup_id=base.id if base else None,
            key_id=cipher.key_id if cipher is not None else None,
            item_counts=ItemCounts(drafts=len(drafts), images=len(images), configs=len(configs)),
        )
        # Payload first: a catalog entry must never point at a missing payload.
        await self._ledger.set_config(BACKUP_DATA_PREFIX + backup_id, payload, BACKUP_CATEGORY)
        await self._ledger.set_config(
            BACKUP_INFO_PREFIX + backup_id, info.model_dump_json(), BACKUP_CATEGORY
        )
        logger.info(
            "Created %s backup %s (%r): %d drafts, %d images, %d configs, %d bytes",
            backup_type,
            backup_id,
            name,
            info.item_counts.drafts,
            info.item_counts.images,
            info.item_counts.configs,
            info.size,
        )
        await self.prune(config.max_backup_count)
        return info

    async def get_backup(self, backup_id: str) -> BackupInfo:
        """Return a backup's catalog entry. Raises BackupNotFoundError."""
        raw = await self._ledger.get_config(BACKUP_INFO_PREFIX + backup_id)
        if raw is None:
            raise BackupNotFoundError(f"Backup {backup_id!r} not found")
        try:
            return BackupInfo.model_validate_json(raw)
        except ValidationError as exc:
            raise BackupCorruptedError(f"Backup {backup_id!r} has invalid metadata") from exc

    async def load_document(self, backup_id: str) -> tuple[BackupInfo, dict[str, Any]]:
        """Load, decrypt, decode and verify a backup document.

        Raises BackupNotFoundError if the metadata or payload is missing and
        BackupCorruptedError if the payload does not verify.
        """
        info = await self.get_backup(backup_id)
        payload = await self._ledger.get_config(BACKUP_DATA_PREFIX + backup_id)
        if payload is None:
            raise BackupNotFoundError(f"Backup {backup_id!r} has no stored payload")

        if info.encrypted:
            cipher = self._cipher()
            if info.key_id is not None and info.key_id != cipher.key_id:
                raise BackupCorruptedError(
                    f"Backup {backup_id!r} cannot be decrypted: it was encrypted with another key"
                )
            try:
                payload = cipher.decrypt(payload)
            except ValueError as exc:
                raise BackupCorruptedError(f"Backup {backup_id!r} cannot be decrypted") from exc

        try:
            plain = get_codec(info.codec).decode(payload)
        except (ValueError, binascii.Error, zlib.error) as exc:
            raise BackupCorruptedError(f"Backup {backup_id!r} cannot be decoded: {exc}") from exc

        if _checksum(plain) != info.checksum:
            raise BackupCorruptedError(f"Backup {backup_id!r} failed checksum verification")

        try:
            document = json.loads(plain)
        except json.JSONDecodeError as exc:
            raise BackupCorruptedError(f"Backup {backup_id!r} is not valid JSON") from exc
        version = document.get("format_version")
        if version != BACKUP_FORMAT_VERSION:
            raise BackupCorruptedError(
                f"Backup {backup_id!r} has unsupported format version {version!r}"
            )
        return info, document

    async def restore(
        self, backup_id: str, options: RestoreOptions | None = None
    ) -> RestoreResult:
        """Replay a backup into the store.

        Drafts go through the normal mutation path so they re-enter the sync
        queue as pending: as new drafts, or as updates of the local draft with
        the same id under ``overwrite``. Image entries only refresh upload
        metadata of entries still cached locally. See ``RestoreOptions`` for
        how existing records are treated.
        """
        options = options or RestoreOptions()
        _info, document = await self.load_document(backup_id)
        data = document.get("data", {})
        result = RestoreResult(backup_id=backup_id)

        if options.restore_drafts:
            for raw_draft in data.get("drafts", []):
                await self._restore_draft(raw_draft, options.conflict_resolution, result)
        if options.restore_images:
            for raw_image in data.get("images", []):
                await self._restore_image(raw_image, options.conflict_resolution, result)
        if options.restore_configs:
            for entry in data.get("configs", []):
                exists = await self._ledger.get_config(entry["key"]) is not None
                if exists and options.conflict_resolution == "skip":
                    result.skipped += 1
                    continue
                await self._ledger.set_config(entry["key"], entry["value"], entry["category"])
                result.configs_restored += 1

        logger.info(
            "Restored backup %s: %d drafts, %d images, %d configs, %d skipped",
            backup_id,
            result.drafts_restored,
            result.images_restored,
            result.configs_restored,
            result.skipped,
        )
        return result

    async def _restore_draft(
        self, raw: dict[str, Any], resolution: ConflictResolution, result: RestoreResult
    ) -> None:
        draft_id = raw.get("id")
        if resolution != "duplicate" and draft_id and await self._ledger.get_draft(draft_id):
            if resolution == "skip":
                result.skipped += 1
                return
            fields = DraftUpdate.model_fields.keys() & raw.keys()
            await self._overwrite_draft(
                draft_id, DraftUpdate.model_validate({key: raw[key] for key in fields})
            )
        else:
            await self._replay_draft(DraftInput.model_validate(raw))
        result.drafts_restored += 1

    async def _restore_image(
        self, raw: dict[str, Any], resolution: ConflictResolution, result: RestoreResult
    ) -> None:
        image_id = raw.get("id")
        if resolution == "skip" or not image_id or await self._ledger.get_image(image_id) is None:
            logger.debug("Not restoring image entry %s", image_id)
            result.skipped += 1
            return
        await self._ledger.update_image(
            image_id, {key: raw[key] for key in _RESTORABLE_IMAGE_FIELDS if key in raw}
        )
        result.images_restored += 1

    async def list_backups(self) -> list[BackupInfo]:
        """Return the backup catalog, newest first. Unreadable entries are skipped."""
        backups: list[BackupInfo] = []
        for entry in await self._ledger.list_configs(category=BACKUP_CATEGORY):
            if entry.key.startswith(BACKUP_DATA_PREFIX):
                continue
            try:
                backups.append(BackupInfo.model_validate_json(entry.value))
            except ValidationError:
                logger.warning("Skipping unreadable backup catalog entry %s", entry.key)
        backups.sort(key=lambda b: b.created_at, reverse=True)
        return backups

    async def delete_backup(self, backup_id: str) -> None:
        """Remove a backup's catalog entry and payload. Raises BackupNotFoundError."""
        removed_info = await self._ledger.delete_config(BACKUP_INFO_PREFIX + backup_id)
        removed_data = await self._ledger.delete_config(BACKUP_DATA_PREFIX + backup_id)
        if not (removed_info or removed_data):
            raise BackupNotFoundError(f"Backup {backup_id!r} not found")
        logger.info("Deleted backup %s", backup_id)

    async def prune(self, max_count: int) -> list[str]:
        """Delete the oldest backups beyond ``max_count``. Returns the deleted ids.

        A backup that fails to delete is logged and left for the next run.
        """
        deleted: list[str] = []
        for info in (await self.list_backups())[max_count:]:
            try:
                await self.delete_backup(info.id)
            except (BackupNotFoundError, SQLAlchemyError) as exc:
                logger.warning("Failed to prune backup %s (%r): %s", info.id, info.name, exc)
                continue
            deleted.append(info.id)
        if deleted:
            logger.info("Pruned %d backups beyond the limit of %d", len(deleted), max_count)
        return deleted
