"""Vault encryption/decryption using AES-256-GCM.

This module provides authenticated encryption for serialized environment
trees.

Binary vault layout::

    magic       8 bytes   b"EBVAULT1" (also bound as associated data)
    nonce      12 bytes   random per seal
    ciphertext  n bytes
    tag        16 bytes   GCM authentication tag

The armored form is the binary layout base64-encoded and wrapped at 64
columns below an ``ENVBUDDEL_VAULT_V1:`` header line, which keeps vault
files readable in diffs.

Security notes:
- Random 96-bit nonce for every seal, never reused deliberately
- A wrong key, a modified vault and a malformed file all raise the same
  AuthenticationFailedError with the same message
- No key recovery - a lost key means lost data
"""

from __future__ import annotations

import base64
import binascii
import os
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from envbuddel.exceptions import AuthenticationFailedError
from envbuddel.key import KeyMaterial

VAULT_MAGIC: Final[bytes] = b"EBVAULT1"

# 96-bit GCM nonce
NONCE_SIZE: Final[int] = 12

TAG_SIZE: Final[int] = 16

ARMOR_HEADER: Final[str] = "ENVBUDDEL_VAULT_V1:"
ARMOR_WIDTH: Final[int] = 64

_OPEN_FAILED: Final[str] = "Failed to open vault: wrong key or corrupted data"


class Vault:
    """Sealed vault: nonce, ciphertext and authentication tag."""

    __slots__ = ("nonce", "ciphertext", "tag")

    def __init__(self, nonce: bytes, ciphertext: bytes, tag: bytes) -> None:
        if len(nonce) != NONCE_SIZE or len(tag) != TAG_SIZE:
            raise AuthenticationFailedError(_OPEN_FAILED)
        self.nonce = nonce
        self.ciphertext = ciphertext
        self.tag = tag

    def to_bytes(self) -> bytes:
        """Serialize to the binary vault layout."""
        return VAULT_MAGIC + self.nonce + self.ciphertext + self.tag

    @classmethod
    def from_bytes(cls, data: bytes) -> Vault:
        """Parse the binary vault layout.

        Raises:
            AuthenticationFailedError: If the data is not a vault
        """
        minimum = len(VAULT_MAGIC) + NONCE_SIZE + TAG_SIZE
        if len(data) < minimum or not data.startswith(VAULT_MAGIC):
            raise AuthenticationFailedError(_OPEN_FAILED)

        body = data[len(VAULT_MAGIC) :]
        return cls(
            nonce=body[:NONCE_SIZE],
            ciphertext=body[NONCE_SIZE:-TAG_SIZE],
            tag=body[-TAG_SIZE:],
        )

    def to_armor(self) -> bytes:
        """Serialize to the armored text form."""
        encoded = base64.b64encode(self.to_bytes()).decode("ascii")
        lines = [ARMOR_HEADER]
        lines.extend(
            encoded[i : i + ARMOR_WIDTH] for i in range(0, len(encoded), ARMOR_WIDTH)
        )
        return ("\n".join(lines) + "\n").encode("ascii")

    @classmethod
    def from_armor(cls, data: bytes) -> Vault:
        """Parse the armored text form.

        Raises:
            AuthenticationFailedError: If the data is not an armored vault
        """
        try:
            text = data.decode("ascii")
        except UnicodeDecodeError as e:
            raise AuthenticationFailedError(_OPEN_FAILED) from e

        lines = [line.strip() for line in text.splitlines() if line.strip()]
        if not lines or lines[0] != ARMOR_HEADER:
            raise AuthenticationFailedError(_OPEN_FAILED)

        try:
            raw = base64.b64decode("".join(lines[1:]), validate=True)
        except (binascii.Error, ValueError) as e:
            raise AuthenticationFailedError(_OPEN_FAILED) from e
        return cls.from_bytes(raw)


def is_armored(data: bytes) -> bool:
    """Check if vault data uses the armored text form."""
    return data.lstrip().startswith(ARMOR_HEADER.encode("ascii"))


def is_vault(data: bytes) -> bool:
    """Check if data looks like a vault (binary or armored).

    This only inspects the header; it does not authenticate anything.
    """
    return data.startswith(VAULT_MAGIC) or is_armored(data)


def read_vault(data: bytes) -> Vault:
    """Parse vault file contents in either form.

    Raises:
        AuthenticationFailedError: If the data is not a vault
    """
    if is_armored(data):
        return Vault.from_armor(data)
    return Vault.from_bytes(data)


def seal(plaintext: bytes, key: KeyMaterial) -> Vault:
    """Encrypt plaintext under a fresh random nonce.

    Args:
        plaintext: Serialized tree (may be empty)
        key: Encryption key

    Returns:
        Sealed Vault
    """
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key.raw).encrypt(nonce, plaintext, VAULT_MAGIC)
    return Vault(nonce=nonce, ciphertext=sealed[:-TAG_SIZE], tag=sealed[-TAG_SIZE:])


def open_vault(vault: Vault, key: KeyMaterial) -> bytes:
    """Verify and decrypt a vault.

    Args:
        vault: Sealed vault
        key: Decryption key

    Returns:
        Decrypted plaintext

    Raises:
        AuthenticationFailedError: If the key is wrong or the vault was modified
    """
    try:
        return AESGCM(key.raw).decrypt(
            vault.nonce, vault.ciphertext + vault.tag, VAULT_MAGIC
        )
    except InvalidTag as e:
        raise AuthenticationFailedError(_OPEN_FAILED) from e


def encrypt(plaintext: bytes, key: KeyMaterial, armor: bool = False) -> bytes:
    """Seal plaintext and return vault file contents."""
    vault = seal(plaintext, key)
    return vault.to_armor() if armor else vault.to_bytes()


def decrypt(data: bytes, key: KeyMaterial) -> bytes:
    """Open vault file contents in either form.

    Raises:
        AuthenticationFailedError: If the data is not a vault, the key is
            wrong or the vault was modified
    """
    return open_vault(read_vault(data), key)
