"""Command operations: init, encrypt, decrypt and info.

Each operation takes an explicit Settings instance and either returns a
result or raises an EnvbuddelError. Nothing here prints or exits; rendering
and exit codes belong to the CLI.
"""

from __future__ import annotations

import logging
import os
import stat
import tempfile
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final, NamedTuple

from envbuddel import tree, vault
from envbuddel.exceptions import EnvbuddelError, NoKeyAvailableError, StorageError
from envbuddel.gitignore import update_gitignore
from envbuddel.key import KeyMaterial
from envbuddel.keysource import KeyOrigin, read_keyfile, resolve_key, write_keyfile
from envbuddel.settings import Settings

logger = logging.getLogger(__name__)

NEW_VAULT_MODE: Final[int] = 0o644


def _atomic_write(path: Path, data: bytes) -> None:
    """Write data to path through a temporary file and rename.

    An existing file keeps its permission bits; a new one gets
    NEW_VAULT_MODE.

    Raises:
        StorageError: If writing fails
    """
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            mode = stat.S_IMODE(path.stat().st_mode)
        except FileNotFoundError:
            mode = NEW_VAULT_MODE
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{path.name}.", suffix=".tmp", dir=path.parent
        )
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_name, mode)
        os.replace(tmp_name, path)
    except OSError as e:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
        raise StorageError(f"Failed to write {path}: {e}") from e


def run_init(
    settings: Settings,
    as_folder: bool = False,
    overwrite: bool = False,
    gitignore: bool = False,
    gitignore_start: Path | str | None = None,
) -> KeyMaterial:
    """Create a key, an empty environment and an initial vault.

    An existing environment file or folder is left untouched. The .gitignore
    is updated last; failing to update it only logs a warning.

    Args:
        settings: Command settings
        as_folder: Create the environment as a folder instead of a file
        overwrite: Replace an existing keyfile
        gitignore: Add keyfile and environment to .gitignore
        gitignore_start: Directory to search for .gitignore (default: cwd)

    Returns:
        The generated key

    Raises:
        KeyfileAlreadyExistsError: If the keyfile exists and overwrite is False
        StorageError: If files cannot be created
    """
    key = KeyMaterial.generate()
    write_keyfile(settings.keyfile, key, overwrite=overwrite)
    logger.info(f"Key written to {settings.keyfile}")

    source = settings.source
    try:
        if as_folder:
            source.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created folder {source}")
        elif not source.exists():
            source.parent.mkdir(parents=True, exist_ok=True)
            source.touch()
            logger.info(f"Created file {source}")
        else:
            logger.info(f"Keeping existing environment {source}")
    except OSError as e:
        raise StorageError(f"Failed to create {source}: {e}") from e

    run_encrypt(settings, key)

    if gitignore:
        start = Path(gitignore_start) if gitignore_start else Path.cwd()
        try:
            update_gitignore(start, [settings.keyfile, source])
        except StorageError as e:
            logger.warning(f"Could not update .gitignore: {e}")
    return key


def run_encrypt(settings: Settings, key: KeyMaterial, armor: bool = False) -> Path:
    """Pack the environment and write it sealed to the vault file.

    Args:
        settings: Command settings
        key: Encryption key
        armor: Write the armored text form instead of binary

    Returns:
        Path of the written vault

    Raises:
        SourceNotFoundError: If the environment does not exist
        SourceUnreadableError: If the environment cannot be read
        StorageError: If the vault cannot be written
    """
    plaintext = tree.pack(settings.source)
    data = vault.encrypt(plaintext, key, armor=armor)
    _atomic_write(settings.vault, data)
    logger.info(f"Encrypted content successfully written to {settings.vault}")
    return settings.vault


def run_decrypt(
    settings: Settings, key: KeyMaterial, overwrite: bool = False
) -> list[Path]:
    """Open the vault and restore the environment.

    Args:
        settings: Command settings
        key: Decryption key
        overwrite: Replace existing files instead of requiring an empty
            destination

    Returns:
        Paths of the restored files

    Raises:
        StorageError: If the vault cannot be read
        AuthenticationFailedError: If the key is wrong or the vault is damaged
        CorruptTreeError: If the decrypted content is malformed
        UnsafePathError: If a packed path escapes the destination
        DestinationNotEmptyError: If the destination holds data
    """
    try:
        data = settings.vault.read_bytes()
    except OSError as e:
        raise StorageError(f"Failed to read vault {settings.vault}: {e}") from e

    plaintext = vault.decrypt(data, key)
    written = tree.unpack(plaintext, settings.source, overwrite=overwrite)
    logger.info(f"Decrypted content successfully written to {settings.source}")
    return written


class PathStatus(NamedTuple):
    """Existence and readability of one configured path."""

    path: Path
    kind: str  # "file", "folder", "other", "missing" or "unknown"
    readable: bool

    @property
    def exists(self) -> bool:
        return self.kind != "missing"

    @classmethod
    def probe(cls, path: Path) -> PathStatus:
        try:
            path.lstat()
        except (FileNotFoundError, NotADirectoryError):
            return cls(path, "missing", False)
        except OSError:
            return cls(path, "unknown", False)
        try:
            mode = path.stat().st_mode
        except OSError:
            # dangling or looping symbolic link
            return cls(path, "other", False)

        if stat.S_ISREG(mode):
            kind = "file"
        elif stat.S_ISDIR(mode):
            kind = "folder"
        else:
            kind = "other"
        access = os.R_OK | (os.X_OK if kind == "folder" else 0)
        return cls(path, kind, os.access(path, access))


class KeyStatus(NamedTuple):
    """Diagnostics for one possible key origin."""

    origin: KeyOrigin
    present: bool
    valid: bool
    error: str | None = None


class InfoReport(NamedTuple):
    """Structured result of run_info."""

    keyfile: PathStatus
    source: PathStatus
    vault: PathStatus
    keys: list[KeyStatus]
    resolved_origin: KeyOrigin | None
    key_error: str | None
    vault_decrypts: bool | None
    vault_files: int | None

    @property
    def ok(self) -> bool:
        return self.resolved_origin is not None and self.vault_decrypts is not False

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""

        def path_dict(status: PathStatus) -> dict[str, Any]:
            return {
                "path": str(status.path),
                "kind": status.kind,
                "readable": status.readable,
            }

        return {
            "keyfile": path_dict(self.keyfile),
            "source": path_dict(self.source),
            "vault": path_dict(self.vault),
            "keys": [
                {
                    "origin": status.origin.value,
                    "present": status.present,
                    "valid": status.valid,
                    "error": status.error,
                }
                for status in self.keys
            ],
            "resolved_origin": (
                self.resolved_origin.value if self.resolved_origin else None
            ),
            "key_error": self.key_error,
            "vault_decrypts": self.vault_decrypts,
            "vault_files": self.vault_files,
        }


def _check_text_key(origin: KeyOrigin, value: str | None) -> KeyStatus:
    if not value or not value.strip():
        return KeyStatus(origin, present=False, valid=False)
    try:
        KeyMaterial.decode(value)
    except EnvbuddelError as e:
        return KeyStatus(origin, present=True, valid=False, error=str(e))
    return KeyStatus(origin, present=True, valid=True)


def _check_keyfile(path: Path) -> KeyStatus:
    try:
        read_keyfile(path)
    except NoKeyAvailableError:
        return KeyStatus(KeyOrigin.KEYFILE, present=False, valid=False)
    except EnvbuddelError as e:
        return KeyStatus(KeyOrigin.KEYFILE, present=True, valid=False, error=str(e))
    return KeyStatus(KeyOrigin.KEYFILE, present=True, valid=True)


def run_info(
    settings: Settings,
    explicit_key: str | None = None,
    environ: Mapping[str, str] | None = None,
) -> InfoReport:
    """Collect diagnostics about the configured paths and keys.

    Performs no mutation and never raises for missing or invalid inputs;
    problems are reported in the returned InfoReport.

    Args:
        settings: Command settings
        explicit_key: Key supplied directly for this invocation
        environ: Environment mapping (defaults to os.environ)

    Returns:
        InfoReport
    """
    environ_value = settings.key_from_env(environ)
    keys = [
        _check_text_key(KeyOrigin.EXPLICIT, explicit_key),
        _check_text_key(KeyOrigin.ENVIRONMENT, environ_value),
        _check_keyfile(settings.keyfile),
    ]

    resolved_origin = None
    key_error = None
    key = None
    try:
        key, resolved_origin = resolve_key(
            explicit_key, environ_value, settings.keyfile
        )
    except EnvbuddelError as e:
        key_error = str(e)

    vault_status = PathStatus.probe(settings.vault)
    vault_decrypts = None
    vault_files = None
    if key is not None and vault_status.kind == "file" and vault_status.readable:
        try:
            plaintext = vault.decrypt(settings.vault.read_bytes(), key)
            vault_files = len(tree.parse(plaintext).entries)
            vault_decrypts = True
        except (EnvbuddelError, OSError) as e:
            logger.debug(f"Vault check failed: {e}")
            vault_decrypts = False

    return InfoReport(
        keyfile=PathStatus.probe(settings.keyfile),
        source=PathStatus.probe(settings.source),
        vault=vault_status,
        keys=keys,
        resolved_origin=resolved_origin,
        key_error=key_error,
        vault_decrypts=vault_decrypts,
        vault_files=vault_files,
    )
