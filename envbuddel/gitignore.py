"""Keep secret files out of version control."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from envbuddel.exceptions import StorageError

logger = logging.getLogger(__name__)

GITIGNORE: str = ".gitignore"


def find_gitignore(start: Path | str) -> Path | None:
    """Search upward from start for a .gitignore file.

    Args:
        start: Directory to start from

    Returns:
        Path to the nearest .gitignore, or None if there is none
    """
    current = Path(start).resolve()
    for directory in (current, *current.parents):
        candidate = directory / GITIGNORE
        if candidate.is_file():
            return candidate
    return None


def add_entries(content: str, entries: Iterable[str]) -> str:
    """Append entries that are not yet listed.

    Args:
        content: Current .gitignore content
        entries: Lines to ensure

    Returns:
        Updated content, newline terminated
    """
    lines = [line.rstrip() for line in content.splitlines()]
    existing = {line.strip() for line in lines}

    for entry in entries:
        if entry not in existing:
            lines.append(entry)
            existing.add(entry)

    return "\n".join(lines) + "\n" if lines else ""


def entry_for(path: Path | str, base: Path | str) -> str | None:
    """Express path as a .gitignore line relative to base.

    Returns:
        Anchored "/"-separated entry, or None if path is outside base
    """
    try:
        relative = Path(path).resolve().relative_to(Path(base).resolve())
    except ValueError:
        return None
    if not relative.parts:
        return None
    return "/" + relative.as_posix()


def update_gitignore(start: Path | str, paths: Iterable[Path | str]) -> Path:
    """Ignore paths in the nearest .gitignore, creating one in start if needed.

    Paths outside the directory of the .gitignore are skipped.

    Args:
        start: Directory to start the search from
        paths: Files or folders to ignore

    Returns:
        Path of the updated .gitignore

    Raises:
        StorageError: If the .gitignore cannot be read or written
    """
    try:
        path = find_gitignore(start)
        if path is None:
            path = Path(start) / GITIGNORE
            content = ""
            logger.debug(f"No .gitignore found, creating {path}")
        else:
            content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise StorageError(f"Failed to read .gitignore: {e}") from e

    entries = []
    for item in paths:
        entry = entry_for(item, path.parent)
        if entry is None:
            logger.warning(f"{item} is outside {path.parent}, not adding it")
        else:
            entries.append(entry)

    updated = add_entries(content, entries)
    if updated != content:
        try:
            path.write_text(updated, encoding="utf-8")
        except OSError as e:
            raise StorageError(f"Failed to write {path}: {e}") from e
        logger.info(f"Updated {path}")
    return path
