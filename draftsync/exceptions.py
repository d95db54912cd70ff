"""Application-level exception types.

Convention:
- ``EntityNotFoundError`` / ``BackupNotFoundError``: an explicit user action
  referenced a record that does not exist. Always propagated to the caller.
- ``BackupCorruptedError``: a stored backup cannot be decrypted, decoded or
  verified. Propagated; there is no degraded restore.
- ``CompressionError``: image bytes could not be decoded. Raised by the
  compressor only; the storage service logs it and keeps the original entry.

Ledger I/O failures surface as ``sqlalchemy.exc.SQLAlchemyError`` and are not
wrapped.
"""

from __future__ import annotations


class EntityNotFoundError(LookupError):
    """Raised when a draft, image or sync task id is unknown to the ledger."""

    def __init__(self, entity_type: str, entity_id: str) -> None:
        super().__init__(f"{entity_type} {entity_id!r} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class BackupNotFoundError(LookupError):
    """Raised when backup metadata or its payload is missing."""


class BackupCorruptedError(ValueError):
    """Raised when a backup payload fails decryption, decoding or verification."""


class CompressionError(RuntimeError):
    """Raised when image bytes cannot be decoded for compression."""
