"""Exception classes for envbuddel."""

from __future__ import annotations


class EnvbuddelError(Exception):
    """Base exception for all envbuddel errors."""

    pass


class NoKeyAvailableError(EnvbuddelError):
    """Raised when no key was supplied, found in the environment or keyfile."""

    pass


class InvalidKeyEncodingError(EnvbuddelError):
    """Raised when a textual key does not decode to a valid key."""

    pass


class KeyfileAlreadyExistsError(EnvbuddelError):
    """Raised when init would overwrite an existing keyfile."""

    pass


class SourceNotFoundError(EnvbuddelError):
    """Raised when the environment file or folder does not exist."""

    pass


class SourceUnreadableError(EnvbuddelError):
    """Raised when the environment file or folder cannot be read."""

    pass


class UnsupportedEntryError(SourceUnreadableError):
    """Raised for symbolic links and special files inside the source."""

    pass


class UnsafePathError(EnvbuddelError):
    """Raised when a packed path would escape the destination directory."""

    pass


class CorruptTreeError(EnvbuddelError):
    """Raised when serialized tree data is malformed."""

    pass


class DestinationNotEmptyError(EnvbuddelError):
    """Raised when decrypting would overwrite existing files."""

    pass


class AuthenticationFailedError(EnvbuddelError):
    """Raised when a vault cannot be opened (wrong key or damaged data)."""

    pass


class StorageError(EnvbuddelError):
    """Raised on generic filesystem I/O failures."""

    pass
