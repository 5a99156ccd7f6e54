"""Runtime settings for envbuddel commands.

Settings are resolved once per invocation and passed explicitly into every
operation. Each value comes from, in order: an explicit override, an
``ENVBUDDEL_*`` environment variable, the built-in default.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Final

DEFAULT_KEYFILE: Final[str] = "safe.key"
DEFAULT_ENV_CONF: Final[str] = ".env"
DEFAULT_VAULT: Final[str] = "env.enc"
DEFAULT_KEY_ENV: Final[str] = "CI_SECRET"

# Environment variable names
ENV_KEYFILE: Final[str] = "ENVBUDDEL_KEYFILE"
ENV_ENV_CONF: Final[str] = "ENVBUDDEL_ENV_CONF"
ENV_VAULT: Final[str] = "ENVBUDDEL_VAULT"
ENV_KEY_ENV: Final[str] = "ENVBUDDEL_KEY_ENV"


class Settings:
    """Paths and names used by a single envbuddel command."""

    def __init__(
        self,
        keyfile: Path | str = DEFAULT_KEYFILE,
        source: Path | str = DEFAULT_ENV_CONF,
        vault: Path | str = DEFAULT_VAULT,
        key_env: str = DEFAULT_KEY_ENV,
    ) -> None:
        """Initialize settings.

        Args:
            keyfile: Path to the keyfile
            source: Path to the environment file or folder
            vault: Path to the vault file
            key_env: Name of the environment variable holding the key
        """
        if not key_env:
            raise ValueError("Key environment variable name cannot be empty")

        self.keyfile = Path(keyfile).expanduser()
        self.source = Path(source).expanduser()
        self.vault = Path(vault).expanduser()
        self.key_env = key_env

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        keyfile: Path | str | None = None,
        source: Path | str | None = None,
        vault: Path | str | None = None,
        key_env: str | None = None,
    ) -> Settings:
        """Build settings from overrides, environment and defaults.

        Args:
            environ: Environment mapping (defaults to os.environ)
            keyfile: Explicit keyfile path
            source: Explicit environment file or folder
            vault: Explicit vault path
            key_env: Explicit key environment variable name

        Returns:
            Settings instance
        """
        if environ is None:
            environ = os.environ

        return cls(
            keyfile=keyfile or environ.get(ENV_KEYFILE) or DEFAULT_KEYFILE,
            source=source or environ.get(ENV_ENV_CONF) or DEFAULT_ENV_CONF,
            vault=vault or environ.get(ENV_VAULT) or DEFAULT_VAULT,
            key_env=key_env or environ.get(ENV_KEY_ENV) or DEFAULT_KEY_ENV,
        )

    def key_from_env(self, environ: Mapping[str, str] | None = None) -> str | None:
        """Get the textual key from the designated environment variable."""
        if environ is None:
            environ = os.environ
        return environ.get(self.key_env) or None

    def __repr__(self) -> str:
        return (
            f"Settings(keyfile={str(self.keyfile)!r}, source={str(self.source)!r}, "
            f"vault={str(self.vault)!r}, key_env={self.key_env!r})"
        )
