"""Tests for password encryption and the key file."""

from __future__ import annotations

import base64
import logging
import os
import stat
from pathlib import Path

import pytest

from dbdesk.db.exceptions import KeyFileError
from dbdesk.storage.crypto import KEY_LENGTH, PasswordCipher, load_or_create_key


@pytest.fixture
def cipher() -> PasswordCipher:
    return PasswordCipher(os.urandom(KEY_LENGTH))


class TestPasswordCipher:
    """AES-GCM encryption with legacy base64 fallback."""

    @pytest.mark.parametrize("password", ["", "s3cret", "pässwörd ✓", "x" * 500, "a'b\"c\\d"])
    def test_round_trip(self, cipher: PasswordCipher, password: str) -> None:
        assert cipher.decrypt(cipher.encrypt(password)) == password

    def test_fresh_nonce_per_encryption(self, cipher: PasswordCipher) -> None:
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_ciphertext_does_not_contain_plaintext(self, cipher: PasswordCipher) -> None:
        stored = base64.b64decode(cipher.encrypt("hunter2hunter2"))
        assert b"hunter2" not in stored

    @pytest.mark.parametrize("password", ["old-password", "", "a much longer legacy password value"])
    def test_legacy_base64_values(self, cipher: PasswordCipher, password: str) -> None:
        """Values stored as plain base64 still decrypt to their plaintext."""
        legacy = base64.b64encode(password.encode("utf-8")).decode("ascii")
        assert cipher.decrypt(legacy) == password

    def test_non_base64_returned_unchanged(self, cipher: PasswordCipher) -> None:
        assert cipher.decrypt("not base64!") == "not base64!"

    def test_other_key_falls_back(self) -> None:
        """A value sealed under another key is not authenticated and is not an error."""
        stored = PasswordCipher(os.urandom(KEY_LENGTH)).encrypt("secret")
        result = PasswordCipher(os.urandom(KEY_LENGTH)).decrypt(stored)
        assert result != "secret"

    def test_rejects_short_key(self) -> None:
        with pytest.raises(ValueError, match="32 bytes"):
            PasswordCipher(b"short")


class TestKeyFile:
    """Key file creation and validation."""

    def test_creates_key_with_owner_only_mode(self, tmp_path: Path) -> None:
        path = tmp_path / "keys" / "connections.key"

        key, created = load_or_create_key(path)

        assert created is True
        assert len(key) == KEY_LENGTH
        assert path.read_bytes() == key
        assert stat.S_IMODE(path.stat().st_mode) == 0o600

    def test_loads_existing_key(self, tmp_path: Path) -> None:
        path = tmp_path / "connections.key"
        first, _ = load_or_create_key(path)

        second, created = load_or_create_key(path)

        assert created is False
        assert second == first

    def test_wrong_length_key_is_not_replaced(self, tmp_path: Path) -> None:
        path = tmp_path / "connections.key"
        path.write_bytes(b"truncated")

        with pytest.raises(KeyFileError) as exc_info:
            load_or_create_key(path)

        assert exc_info.value.hint
        assert path.read_bytes() == b"truncated"

    def test_key_generation_is_a_warning(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        path = tmp_path / "connections.key"

        with caplog.at_level(logging.WARNING, logger="dbdesk.storage.crypto"):
            load_or_create_key(path)
            load_or_create_key(path)

        generated = [r for r in caplog.records if "Generated new encryption key" in r.message]
        assert [r.levelno for r in generated] == [logging.WARNING]
