"""Canonical serialization of an environment file or folder.

A source is either a single regular file or a directory tree of regular
files. Both are flattened into an ordered list of PlaintextEntry records
(POSIX relative path + content) and framed with explicit length prefixes, so
arbitrary binary content is safe and the output is reproducible.

Byte layout (big-endian integers)::

    magic    4 bytes  b"EBT1"
    kind     1 byte   b"F" (single file) or b"D" (directory)
    count    4 bytes  number of records
    record:
        path_len     4 bytes
        path         UTF-8, "/" separated
        content_len  8 bytes
        content

Symbolic links and special files are rejected when packing. Empty
directories are not represented.
"""

from __future__ import annotations

import logging
import os
import re
import stat
import struct
from pathlib import Path
from typing import Final, Iterable, Iterator, NamedTuple

from envbuddel.exceptions import (
    CorruptTreeError,
    DestinationNotEmptyError,
    SourceNotFoundError,
    SourceUnreadableError,
    StorageError,
    UnsafePathError,
    UnsupportedEntryError,
)

logger = logging.getLogger(__name__)

TREE_MAGIC: Final[bytes] = b"EBT1"
KIND_FILE: Final[bytes] = b"F"
KIND_DIRECTORY: Final[bytes] = b"D"

SEPARATOR: Final[str] = "/"

_HEADER = struct.Struct(">4scI")
_PATH_LEN = struct.Struct(">I")
_CONTENT_LEN = struct.Struct(">Q")

_DRIVE_RE: Final = re.compile(r"^[A-Za-z]:")


class PlaintextEntry(NamedTuple):
    """One file of a packed tree."""

    path: str
    content: bytes


class SerializedTree(NamedTuple):
    """Parsed form of serialized tree data."""

    kind: bytes
    entries: list[PlaintextEntry]


def validate_relative_path(path: str) -> str:
    """Check that a packed path is a safe relative POSIX path.

    Args:
        path: Relative path using "/" as separator

    Returns:
        The path unchanged

    Raises:
        UnsafePathError: If the path is absolute, empty or contains
            traversal segments, backslashes or NUL bytes
    """
    if not path:
        raise UnsafePathError("Empty path in tree")
    if "\\" in path or "\x00" in path:
        raise UnsafePathError(f"Path contains forbidden characters: {path!r}")
    if path.startswith(SEPARATOR) or _DRIVE_RE.match(path):
        raise UnsafePathError(f"Absolute path in tree: {path!r}")

    for segment in path.split(SEPARATOR):
        if segment in ("", ".", ".."):
            raise UnsafePathError(f"Invalid path segment in {path!r}")
    return path


def _walk(root: Path, prefix: tuple[str, ...] = ()) -> Iterator[tuple[str, Path]]:
    """Yield (relative path, absolute path) for every regular file below root."""
    try:
        with os.scandir(root) as it:
            children = list(it)
    except PermissionError as e:
        raise SourceUnreadableError(f"Permission denied: {root}") from e
    except OSError as e:
        raise SourceUnreadableError(f"Failed to list {root}: {e}") from e

    for child in children:
        segments = prefix + (child.name,)
        if child.is_symlink():
            raise UnsupportedEntryError(
                f"Symbolic links are not supported: {Path(child.path)}"
            )
        if child.is_dir(follow_symlinks=False):
            yield from _walk(Path(child.path), segments)
        elif child.is_file(follow_symlinks=False):
            yield SEPARATOR.join(segments), Path(child.path)
        else:
            raise UnsupportedEntryError(
                f"Not a regular file or directory: {Path(child.path)}"
            )


def _sort_key(item: tuple[str, Path]) -> bytes:
    return item[0].encode("utf-8", errors="surrogateescape")


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except PermissionError as e:
        raise SourceUnreadableError(f"Permission denied: {path}") from e
    except OSError as e:
        raise SourceUnreadableError(f"Failed to read {path}: {e}") from e


def _source_kind(source: Path) -> bytes:
    try:
        mode = source.lstat().st_mode
    except (FileNotFoundError, NotADirectoryError) as e:
        raise SourceNotFoundError(f"Path {source} does not exist") from e
    except PermissionError as e:
        raise SourceUnreadableError(f"Permission denied: {source}") from e
    except OSError as e:
        raise SourceUnreadableError(f"Failed to access {source}: {e}") from e

    if stat.S_ISLNK(mode):
        raise UnsupportedEntryError(f"Symbolic links are not supported: {source}")
    if stat.S_ISREG(mode):
        return KIND_FILE
    if stat.S_ISDIR(mode):
        return KIND_DIRECTORY
    raise UnsupportedEntryError(
        f"Path {source} exists but is neither a file nor a folder"
    )


def iter_entries(source: Path | str) -> Iterator[PlaintextEntry]:
    """Iterate over the files of a source in canonical order.

    A single file yields one entry named after the file. A directory yields
    every regular file below it, sorted by relative path.

    Args:
        source: Environment file or folder

    Yields:
        PlaintextEntry records

    Raises:
        SourceNotFoundError: If the source does not exist
        SourceUnreadableError: If a file or directory cannot be read
        UnsupportedEntryError: On symbolic links or special files
        UnsafePathError: If a file name cannot be represented portably
    """
    source = Path(source)
    if _source_kind(source) == KIND_FILE:
        yield PlaintextEntry(validate_relative_path(source.name), _read(source))
        return

    for relative, path in sorted(_walk(source), key=_sort_key):
        yield PlaintextEntry(validate_relative_path(relative), _read(path))


def serialize(kind: bytes, entries: Iterable[PlaintextEntry]) -> bytes:
    """Frame entries into serialized tree bytes.

    Args:
        kind: KIND_FILE or KIND_DIRECTORY
        entries: Entries in canonical order

    Returns:
        Serialized tree
    """
    records = []
    count = 0
    for entry in entries:
        validate_relative_path(entry.path)
        try:
            path_bytes = entry.path.encode("utf-8")
        except UnicodeEncodeError as e:
            raise UnsupportedEntryError(
                f"File name is not valid UTF-8: {entry.path!r}"
            ) from e
        records.append(_PATH_LEN.pack(len(path_bytes)))
        records.append(path_bytes)
        records.append(_CONTENT_LEN.pack(len(entry.content)))
        records.append(entry.content)
        count += 1

    header = _HEADER.pack(TREE_MAGIC, kind, count)
    return header + b"".join(records)


def pack(source: Path | str) -> bytes:
    """Serialize an environment file or folder.

    Args:
        source: Environment file or folder

    Returns:
        Serialized tree bytes

    Raises:
        SourceNotFoundError: If the source does not exist
        SourceUnreadableError: If the source cannot be read
    """
    source = Path(source)
    kind = _source_kind(source)
    entries = list(iter_entries(source))
    logger.debug(f"Packed {len(entries)} file(s) from {source}")
    return serialize(kind, entries)


def _take(view: memoryview, offset: int, size: int) -> tuple[bytes, int]:
    end = offset + size
    if end > len(view):
        raise CorruptTreeError("Length prefix exceeds remaining data")
    return bytes(view[offset:end]), end


def parse(data: bytes) -> SerializedTree:
    """Parse serialized tree bytes.

    Args:
        data: Serialized tree

    Returns:
        SerializedTree with kind and entries

    Raises:
        CorruptTreeError: If the framing is malformed
        UnsafePathError: If a record path is unsafe
    """
    view = memoryview(data)
    header, offset = _take(view, 0, _HEADER.size)
    magic, kind, count = _HEADER.unpack(header)

    if magic != TREE_MAGIC:
        raise CorruptTreeError("Not a serialized tree (bad magic)")
    if kind not in (KIND_FILE, KIND_DIRECTORY):
        raise CorruptTreeError(f"Unknown tree kind: {kind!r}")
    if kind == KIND_FILE and count != 1:
        raise CorruptTreeError(f"File tree must hold one record, found {count}")

    entries: list[PlaintextEntry] = []
    seen: set[str] = set()
    for _ in range(count):
        raw, offset = _take(view, offset, _PATH_LEN.size)
        (path_len,) = _PATH_LEN.unpack(raw)
        raw_path, offset = _take(view, offset, path_len)
        raw, offset = _take(view, offset, _CONTENT_LEN.size)
        (content_len,) = _CONTENT_LEN.unpack(raw)
        content, offset = _take(view, offset, content_len)

        try:
            path = raw_path.decode("utf-8")
        except UnicodeDecodeError as e:
            raise CorruptTreeError("Record path is not valid UTF-8") from e
        validate_relative_path(path)

        if path in seen:
            raise CorruptTreeError(f"Duplicate path in tree: {path}")
        seen.add(path)
        entries.append(PlaintextEntry(path, content))

    if offset != len(view):
        raise CorruptTreeError(
            f"{len(view) - offset} trailing byte(s) after last record"
        )

    # a path cannot be both a file and the parent directory of another file
    for path in seen:
        segments = path.split(SEPARATOR)
        for i in range(1, len(segments)):
            if SEPARATOR.join(segments[:i]) in seen:
                raise CorruptTreeError(f"Path conflicts with a file: {path}")

    return SerializedTree(kind, entries)


def _check_destination(
    tree: SerializedTree, destination: Path, overwrite: bool
) -> None:
    if destination.is_symlink():
        raise UnsafePathError(f"Destination is a symbolic link: {destination}")

    if tree.kind == KIND_FILE:
        if destination.is_dir():
            raise DestinationNotEmptyError(
                f"Destination {destination} is a directory, expected a file"
            )
        if (
            not overwrite
            and destination.exists()
            and destination.stat().st_size > 0
        ):
            raise DestinationNotEmptyError(
                f"Destination file {destination} is not empty"
            )
        return

    if destination.exists() and not destination.is_dir():
        raise DestinationNotEmptyError(
            f"Destination {destination} is a file, expected a folder"
        )
    if not overwrite and destination.is_dir() and any(destination.iterdir()):
        raise DestinationNotEmptyError(
            f"Destination folder {destination} is not empty"
        )


def _targets(tree: SerializedTree, destination: Path) -> list[tuple[Path, bytes]]:
    if tree.kind == KIND_FILE:
        return [(destination, tree.entries[0].content)]

    root = destination.resolve()
    targets = []
    for entry in tree.entries:
        target = root.joinpath(*entry.path.split(SEPARATOR))
        resolved = target.resolve()
        if resolved == root or not resolved.is_relative_to(root):
            raise UnsafePathError(f"Path escapes destination: {entry.path}")
        if target.is_dir():
            raise DestinationNotEmptyError(
                f"Destination {target} is a directory, expected a file"
            )
        for parent in target.relative_to(root).parents:
            blocker = root / parent
            if blocker != root and blocker.exists() and not blocker.is_dir():
                raise DestinationNotEmptyError(
                    f"Destination {blocker} is a file, expected a folder"
                )
        targets.append((target, entry.content))
    return targets


def unpack(data: bytes, destination: Path | str, overwrite: bool = False) -> list[Path]:
    """Restore serialized tree bytes onto the filesystem.

    A single-file tree is written to ``destination`` itself, a directory tree
    below it. Nothing is written unless every record has been parsed and
    checked.

    Args:
        data: Serialized tree
        destination: Environment file or folder to restore
        overwrite: Replace existing files instead of requiring an empty
            destination

    Returns:
        Paths of the written files

    Raises:
        CorruptTreeError: If the framing is malformed
        UnsafePathError: If a record would escape the destination
        DestinationNotEmptyError: If the destination holds data and
            overwrite is False, or an existing file or folder is in the way
            of a record
        StorageError: If writing fails
    """
    destination = Path(destination)
    tree = parse(data)

    try:
        _check_destination(tree, destination, overwrite)
        targets = _targets(tree, destination)

        if tree.kind == KIND_DIRECTORY:
            destination.mkdir(parents=True, exist_ok=True)

        for target, content in targets:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(content)
            logger.debug(f"Restored {target} ({len(content)} bytes)")
    except OSError as e:
        raise StorageError(f"Failed to write {destination}: {e}") from e

    return [target for target, _ in targets]
