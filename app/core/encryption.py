"""
Field-level encryption for sensitive booking details.

AES-256-GCM with a random 128-bit IV per call and a 128-bit authentication
tag. Bundles are plain dicts so they can live in a JSON column:

    {"iv": <hex>, "encryptedData": <hex>, "authTag": <hex>, "kid": <hex>}

``kid`` fingerprints the key that sealed the bundle so a partially completed
key rotation can tell migrated records apart.
"""
import binascii
import hashlib
import json
import logging
import os
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Dict

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .config import get_settings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
TAG_BYTES = 16
_HEX_KEY = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class DecryptionFailure:
    """Returned instead of plaintext when a bundle cannot be opened."""

    reason: str
    failed: bool = True


def key_fingerprint(key: bytes) -> str:
    return hashlib.sha256(key).hexdigest()[:8]


class FieldCipher:
    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
            raise ConfigurationError("Encryption key must be exactly 256 bits")
        self._aead = AESGCM(bytes(key))
        self.kid = key_fingerprint(bytes(key))

    @classmethod
    def from_hex(cls, value: str | None) -> "FieldCipher":
        key = (value or "").strip()
        if not key:
            raise ConfigurationError(
                "Encryption key is not set. Provide a 64-character hex string (32 bytes)."
            )
        if not _HEX_KEY.match(key):
            raise ConfigurationError(
                "Encryption key is invalid. It must be a 64-character hex string (32 bytes)."
            )
        return cls(bytes.fromhex(key))

    def seal(self, data: Dict[str, Any]) -> Dict[str, str]:
        iv = os.urandom(IV_BYTES)
        plaintext = json.dumps(data, ensure_ascii=False).encode("utf-8")
        sealed = self._aead.encrypt(iv, plaintext, None)
        ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
        return {
            "iv": iv.hex(),
            "encryptedData": ciphertext.hex(),
            "authTag": tag.hex(),
            "kid": self.kid,
        }

    def open(self, bundle: Any) -> Dict[str, Any] | DecryptionFailure:
        """Verify and decrypt a bundle. Never raises."""
        if not isinstance(bundle, dict):
            return DecryptionFailure("Invalid encrypted data format")
        iv_hex = bundle.get("iv")
        data_hex = bundle.get("encryptedData")
        tag_hex = bundle.get("authTag")
        if not isinstance(iv_hex, str) or not isinstance(data_hex, str) or not isinstance(tag_hex, str):
            return DecryptionFailure("Invalid encrypted data format")

        kid = bundle.get("kid")
        if kid is not None and kid != self.kid:
            return DecryptionFailure("Sealed with a different key")

        try:
            iv = bytes.fromhex(iv_hex)
            ciphertext = bytes.fromhex(data_hex)
            tag = bytes.fromhex(tag_hex)
        except (ValueError, binascii.Error):
            return DecryptionFailure("Invalid encrypted data format")
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            return DecryptionFailure("Invalid encrypted data format")

        try:
            plaintext = self._aead.decrypt(iv, ciphertext + tag, None)
        except InvalidTag:
            return DecryptionFailure("Authentication tag mismatch")

        try:
            data = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            return DecryptionFailure("Corrupted plaintext")
        if not isinstance(data, dict):
            return DecryptionFailure("Corrupted plaintext")
        return data


@lru_cache(maxsize=1)
def get_field_cipher() -> FieldCipher:
    return FieldCipher.from_hex(get_settings().encryption_key)
