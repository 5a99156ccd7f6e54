"""Symmetric key material for vault encryption.

Keys are 32 random bytes (AES-256). Their textual form is URL-safe base64
without padding, which fits on a single line in a keyfile or in an
environment variable value.
"""

from __future__ import annotations

import base64
import binascii
import re
import secrets
from typing import Final

from envbuddel.exceptions import InvalidKeyEncodingError

# AES-256-GCM key size
KEY_SIZE: Final[int] = 32

_ALPHABET_RE: Final = re.compile(r"[A-Za-z0-9_-]*")


class KeyMaterial:
    """Immutable symmetric key."""

    __slots__ = ("_raw",)

    def __init__(self, raw: bytes) -> None:
        """Initialize key material.

        Args:
            raw: Raw key bytes

        Raises:
            InvalidKeyEncodingError: If raw is not exactly KEY_SIZE bytes
        """
        if not isinstance(raw, (bytes, bytearray)) or len(raw) != KEY_SIZE:
            raise InvalidKeyEncodingError(
                f"Invalid key length: expected {KEY_SIZE} bytes"
            )
        self._raw = bytes(raw)

    @classmethod
    def generate(cls) -> KeyMaterial:
        """Generate a new key from the system CSPRNG.

        Returns:
            Fresh KeyMaterial
        """
        return cls(secrets.token_bytes(KEY_SIZE))

    @classmethod
    def decode(cls, text: str) -> KeyMaterial:
        """Decode a key from its textual form.

        Args:
            text: URL-safe base64 key (padding optional)

        Returns:
            Decoded KeyMaterial

        Raises:
            InvalidKeyEncodingError: If the text is not a valid encoded key
        """
        stripped = text.strip().rstrip("=")
        if not stripped:
            raise InvalidKeyEncodingError("Key is empty")

        # b64decode silently drops unknown characters, so check the alphabet first
        if not _ALPHABET_RE.fullmatch(stripped):
            raise InvalidKeyEncodingError(
                "Key contains characters outside the base64 alphabet"
            )

        padding = (4 - len(stripped) % 4) % 4
        try:
            raw = base64.urlsafe_b64decode(stripped + "=" * padding)
        except (binascii.Error, ValueError) as e:
            raise InvalidKeyEncodingError(f"Failed to decode base64 key: {e}") from e

        if len(raw) != KEY_SIZE:
            raise InvalidKeyEncodingError(
                f"Invalid key length: expected {KEY_SIZE} bytes, got {len(raw)}"
            )
        return cls(raw)

    def encode(self) -> str:
        """Encode the key as URL-safe base64 without padding."""
        return base64.urlsafe_b64encode(self._raw).decode("ascii").rstrip("=")

    @property
    def raw(self) -> bytes:
        return self._raw

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, KeyMaterial):
            return NotImplemented
        return secrets.compare_digest(self._raw, other._raw)

    def __hash__(self) -> int:
        return hash(self._raw)

    def __repr__(self) -> str:
        return "KeyMaterial(<redacted>)"


def encode_key(key: KeyMaterial) -> str:
    """Encode a key to its single-line textual form."""
    return key.encode()


def decode_key(text: str) -> KeyMaterial:
    """Decode a key from its textual form.

    Raises:
        InvalidKeyEncodingError: If the text is not a valid encoded key
    """
    return KeyMaterial.decode(text)
