"""Authenticated encryption of stored database credentials (AES-256-GCM).

The key comes only from configuration. A missing or malformed key is a
fatal :class:`ConfigurationError`; a key is never generated in-process,
because secrets encrypted under a throwaway key are lost on restart.
"""

from __future__ import annotations

import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from twoine.domain.entities import EncryptedSecret
from twoine.domain.errors import ConfigurationError, TwoineError

KEY_HEX_LENGTH = 64
IV_BYTES = 12
TAG_BYTES = 16


class SecretBox:
    """Encrypt/decrypt short secrets with a fresh random IV per record."""

    def __init__(self, key: bytes) -> None:
        if len(key) != KEY_HEX_LENGTH // 2:
            msg = "Encryption key must be exactly 32 bytes"
            raise ConfigurationError(msg)
        self._aead = AESGCM(key)

    @classmethod
    def from_hex(cls, key_hex: str | None) -> SecretBox:
        """Build from the configured ``databases.encryption_key``."""
        if not key_hex:
            msg = (
                "databases.encryption_key is not configured. Set it to 64 hex "
                "characters (e.g. from `openssl rand -hex 32`) in twoine.toml "
                "or TWOINE_DATABASES__ENCRYPTION_KEY."
            )
            raise ConfigurationError(msg, detail={"setting": "databases.encryption_key"})
        if len(key_hex) != KEY_HEX_LENGTH:
            msg = f"databases.encryption_key must be {KEY_HEX_LENGTH} hex characters"
            raise ConfigurationError(msg, detail={"setting": "databases.encryption_key"})
        try:
            key = bytes.fromhex(key_hex)
        except ValueError as exc:
            msg = "databases.encryption_key is not valid hexadecimal"
            raise ConfigurationError(msg, detail={"setting": "databases.encryption_key"}) from exc
        return cls(key)

    def encrypt(self, plaintext: str) -> EncryptedSecret:
        iv = os.urandom(IV_BYTES)
        sealed = self._aead.encrypt(iv, plaintext.encode("utf-8"), None)
        return EncryptedSecret(
            iv=iv.hex(),
            ciphertext=sealed[:-TAG_BYTES].hex(),
            tag=sealed[-TAG_BYTES:].hex(),
        )

    def decrypt(self, secret: EncryptedSecret) -> str:
        """Return the plaintext, or raise if the record was tampered with."""
        try:
            sealed = bytes.fromhex(secret.ciphertext) + bytes.fromhex(secret.tag)
            plain = self._aead.decrypt(bytes.fromhex(secret.iv), sealed, None)
        except (InvalidTag, ValueError) as exc:
            msg = "Stored secret could not be decrypted (wrong key or corrupted record)"
            raise TwoineError(msg) from exc
        return plain.decode("utf-8")
