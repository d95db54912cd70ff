"""Encryption of backup payloads at rest."""

from __future__ import annotations

import base64
import hashlib
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

_KDF_INFO = b"draftsync backup payload v1"


class BackupCipher:
    """Fernet cipher keyed from the application secret.

    The key is derived once per secret with HKDF-SHA256. ``key_id`` is a short
    fingerprint of the derived key, recorded with each encrypted backup so a
    restore can tell a changed secret apart from a damaged payload.
    """

    def __init__(self, secret_key: str) -> None:
        key = HKDF(
            algorithm=hashes.SHA256(),
            length=32,
            salt=None,
            info=_KDF_INFO,
        ).derive(secret_key.encode())
        self._fernet = Fernet(base64.urlsafe_b64encode(key))
        self.key_id = hashlib.sha256(key).hexdigest()[:16]

    def encrypt(self, payload: str) -> str:
        return self._fernet.encrypt(payload.encode()).decode("ascii")

    def decrypt(self, token: str) -> str:
        """Raises ValueError if the token is malformed or was sealed with another key."""
        try:
            return self._fernet.decrypt(token.encode()).decode()
        except InvalidToken as exc:
            raise ValueError("Failed to decrypt backup payload") from exc


@lru_cache(maxsize=4)
def cipher_for(secret_key: str) -> BackupCipher:
    """Return the cipher for a secret, deriving its key only on first use."""
    return BackupCipher(secret_key)
