"""Password encryption for saved connection profiles.

AES-256-GCM with a fresh 96-bit nonce per encryption. Stored form:

    base64(nonce || ciphertext || tag)

Values written by the earlier scheme (plain base64 of the password) still
decrypt: anything that is not valid AES-GCM framing under the current key
is read back as legacy base64 plaintext.
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
from pathlib import Path

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..db.exceptions import KeyFileError

logger = logging.getLogger(__name__)

KEY_LENGTH = 32  # AES-256
NONCE_LENGTH = 12  # 96-bit nonce
TAG_LENGTH = 16


class PasswordCipher:
    """Encrypts and decrypts passwords with one AES-256-GCM key.

    Example:
        cipher = PasswordCipher(load_or_create_key(path)[0])
        stored = cipher.encrypt("s3cret")
        assert cipher.decrypt(stored) == "s3cret"
    """

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_LENGTH:
            raise ValueError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}")
        self._aesgcm = AESGCM(key)

    def encrypt(self, plaintext: str) -> str:
        nonce = os.urandom(NONCE_LENGTH)
        ct_with_tag = self._aesgcm.encrypt(nonce, plaintext.encode("utf-8"), None)
        return base64.b64encode(nonce + ct_with_tag).decode("ascii")

    def decrypt(self, stored: str) -> str:
        """Decrypt a stored value, falling back to legacy base64 plaintext.

        - not base64 at all: returned unchanged
        - too short for nonce + tag: decoded bytes as UTF-8
        - authentication fails: decoded bytes as UTF-8
        """
        try:
            data = base64.b64decode(stored, validate=True)
        except (binascii.Error, ValueError):
            return stored

        if len(data) < NONCE_LENGTH + TAG_LENGTH:
            return data.decode("utf-8", errors="replace")

        nonce, ct_with_tag = data[:NONCE_LENGTH], data[NONCE_LENGTH:]
        try:
            return self._aesgcm.decrypt(nonce, ct_with_tag, None).decode("utf-8")
        except (InvalidTag, UnicodeDecodeError):
            return data.decode("utf-8", errors="replace")


def load_or_create_key(key_path: str | Path) -> tuple[bytes, bool]:
    """Load the key file, generating it when it does not exist.

    A new key file is written with mode 0600. An existing key file is never
    overwritten, since that would strand every stored password.

    Returns:
        (key bytes, True if the key was newly generated)

    Raises:
        KeyFileError: If the key file exists but is unreadable or not 32 bytes
    """
    path = Path(key_path)

    if path.exists():
        try:
            key = path.read_bytes()
        except OSError as e:
            raise KeyFileError(f"Cannot read encryption key file {path}: {e}") from e
        if len(key) != KEY_LENGTH:
            raise KeyFileError(
                f"Encryption key file {path} is {len(key)} bytes, expected {KEY_LENGTH}",
                hint="Restore the original key file or remove it to start over "
                "(saved passwords will then need to be re-entered).",
            )
        return key, False

    key = os.urandom(KEY_LENGTH)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key)
        path.chmod(0o600)
    except OSError as e:
        raise KeyFileError(f"Cannot write encryption key file {path}: {e}") from e

    logger.warning(f"Generated new encryption key: {path}")
    return key, True
