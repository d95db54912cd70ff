"""Tests for backup payload encryption."""

from __future__ import annotations

import pytest

from draftsync.services.backup_cipher import BackupCipher, cipher_for

SECRET = "backup-secret-that-is-long-enough-to-use"


class TestBackupCipher:
    def test_round_trip(self) -> None:
        cipher = BackupCipher(SECRET)
        payload = '{"format_version": 1, "data": {"drafts": []}}'
        token = cipher.encrypt(payload)
        assert token != payload
        assert cipher.decrypt(token) == payload

    def test_other_secret_cannot_decrypt(self) -> None:
        token = BackupCipher(SECRET).encrypt("draft body")
        with pytest.raises(ValueError, match="Failed to decrypt"):
            BackupCipher("another-secret-of-sufficient-length").decrypt(token)

    def test_garbage_token_raises(self) -> None:
        with pytest.raises(ValueError, match="Failed to decrypt"):
            BackupCipher(SECRET).decrypt("not-a-fernet-token")

    def test_tokens_are_salted(self) -> None:
        cipher = BackupCipher(SECRET)
        first, second = cipher.encrypt("same"), cipher.encrypt("same")
        assert first != second
        assert cipher.decrypt(first) == cipher.decrypt(second) == "same"

    def test_unicode_round_trip(self) -> None:
        cipher = BackupCipher(SECRET)
        payload = "Brouillon été 草稿"
        assert cipher.decrypt(cipher.encrypt(payload)) == payload

    def test_key_id_identifies_the_secret(self) -> None:
        assert BackupCipher(SECRET).key_id == BackupCipher(SECRET).key_id
        assert BackupCipher(SECRET).key_id != BackupCipher(SECRET + "!").key_id
        assert len(BackupCipher(SECRET).key_id) == 16

    def test_cipher_for_derives_once_per_secret(self) -> None:
        assert cipher_for(SECRET) is cipher_for(SECRET)
        assert cipher_for(SECRET) is not cipher_for(SECRET + "!")
