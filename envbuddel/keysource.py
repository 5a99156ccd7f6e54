"""Key resolution and keyfile storage.

The active key comes from, in order of precedence:

1. A key passed explicitly for this invocation
2. The designated environment variable (CI_SECRET by default)
3. The keyfile
"""

from __future__ import annotations

import enum
import logging
import os
from pathlib import Path
from typing import NamedTuple

from envbuddel.exceptions import (
    InvalidKeyEncodingError,
    KeyfileAlreadyExistsError,
    NoKeyAvailableError,
    StorageError,
)
from envbuddel.key import KeyMaterial

logger = logging.getLogger(__name__)


class KeyOrigin(enum.Enum):
    """Where a resolved key came from."""

    EXPLICIT = "explicit"
    ENVIRONMENT = "environment"
    KEYFILE = "keyfile"


class ResolvedKey(NamedTuple):
    key: KeyMaterial
    origin: KeyOrigin


def read_keyfile(path: Path | str) -> KeyMaterial:
    """Load a key from a keyfile.

    Args:
        path: Keyfile path

    Returns:
        Decoded key

    Raises:
        NoKeyAvailableError: If the keyfile does not exist
        InvalidKeyEncodingError: If the keyfile is empty or invalid
        StorageError: If the keyfile cannot be read
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except FileNotFoundError as e:
        raise NoKeyAvailableError(f"Keyfile '{path}' not found") from e
    except (OSError, UnicodeDecodeError) as e:
        raise StorageError(f"Failed to read keyfile '{path}': {e}") from e

    if not content.strip():
        raise InvalidKeyEncodingError(f"Keyfile '{path}' is empty")

    try:
        return KeyMaterial.decode(content)
    except InvalidKeyEncodingError as e:
        raise InvalidKeyEncodingError(f"Keyfile '{path}': {e}") from e


def write_keyfile(path: Path | str, key: KeyMaterial, overwrite: bool = False) -> None:
    """Write a key to a keyfile with owner-only permissions.

    Args:
        path: Keyfile path
        key: Key to store
        overwrite: Replace an existing keyfile

    Raises:
        KeyfileAlreadyExistsError: If the keyfile exists and overwrite is False
        StorageError: If the keyfile cannot be written
    """
    path = Path(path)
    flags = os.O_WRONLY | os.O_CREAT | (os.O_TRUNC if overwrite else os.O_EXCL)

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(path, flags, 0o600)
    except FileExistsError as e:
        raise KeyfileAlreadyExistsError(
            f"Keyfile '{path}' already exists, refusing to overwrite it"
        ) from e
    except OSError as e:
        raise StorageError(f"Failed to create keyfile '{path}': {e}") from e

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(key.encode() + "\n")
        # Set secure permissions (owner read/write only)
        path.chmod(0o600)
    except OSError as e:
        raise StorageError(f"Failed to write keyfile '{path}': {e}") from e

    logger.debug(f"Wrote keyfile {path}")


def resolve_key(
    explicit: str | None = None,
    environ_value: str | None = None,
    keyfile: Path | str | None = None,
) -> ResolvedKey:
    """Resolve the key for this invocation.

    Empty or whitespace-only values count as absent.

    Args:
        explicit: Key supplied directly for this invocation
        environ_value: Value of the key environment variable
        keyfile: Keyfile path

    Returns:
        ResolvedKey with the key and its origin

    Raises:
        NoKeyAvailableError: If no source provides a key
        InvalidKeyEncodingError: If the winning source holds an invalid key
    """
    if explicit and explicit.strip():
        key = KeyMaterial.decode(explicit)
        logger.debug("Using explicitly supplied key")
        return ResolvedKey(key, KeyOrigin.EXPLICIT)

    if environ_value and environ_value.strip():
        key = KeyMaterial.decode(environ_value)
        logger.debug("Using key from environment")
        return ResolvedKey(key, KeyOrigin.ENVIRONMENT)

    if keyfile is not None:
        key = read_keyfile(keyfile)
        logger.debug(f"Using key from {keyfile}")
        return ResolvedKey(key, KeyOrigin.KEYFILE)

    raise NoKeyAvailableError("No key supplied and no keyfile configured")
