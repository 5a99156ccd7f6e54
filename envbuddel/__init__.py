"""Envbuddel - File-based secret manager for CI/CD pipelines.

Envbuddel packs a configuration file or folder into a single encrypted
vault that can be committed next to the code, and restores it with:
- A symmetric AES-256-GCM key from a keyfile or environment variable
- Canonical, length-prefixed serialization of file trees
- Tamper detection for the whole vault
- CLI tool for init, encrypt, decrypt and info
"""

from __future__ import annotations

from envbuddel import tree, vault
from envbuddel.exceptions import (
    AuthenticationFailedError,
    CorruptTreeError,
    DestinationNotEmptyError,
    EnvbuddelError,
    InvalidKeyEncodingError,
    KeyfileAlreadyExistsError,
    NoKeyAvailableError,
    SourceNotFoundError,
    SourceUnreadableError,
    StorageError,
    UnsafePathError,
    UnsupportedEntryError,
)
from envbuddel.key import KEY_SIZE, KeyMaterial, decode_key, encode_key
from envbuddel.keysource import KeyOrigin, ResolvedKey, resolve_key
from envbuddel.operations import (
    InfoReport,
    run_decrypt,
    run_encrypt,
    run_info,
    run_init,
)
from envbuddel.settings import Settings

__version__ = "0.1.0"

__all__ = [
    # Core classes
    "KeyMaterial",
    "Settings",
    "InfoReport",
    "KeyOrigin",
    "ResolvedKey",
    "KEY_SIZE",
    # Functions
    "encode_key",
    "decode_key",
    "resolve_key",
    "run_init",
    "run_encrypt",
    "run_decrypt",
    "run_info",
    # Modules
    "tree",
    "vault",
    # Exceptions
    "EnvbuddelError",
    "NoKeyAvailableError",
    "InvalidKeyEncodingError",
    "KeyfileAlreadyExistsError",
    "SourceNotFoundError",
    "SourceUnreadableError",
    "UnsupportedEntryError",
    "UnsafePathError",
    "CorruptTreeError",
    "DestinationNotEmptyError",
    "AuthenticationFailedError",
    "StorageError",
]
