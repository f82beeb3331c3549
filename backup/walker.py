"""Enumerate candidate files under a source root."""
from __future__ import annotations

import fnmatch
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from .types import FileRecord

LOGGER = logging.getLogger("chronovault.backup.walker")


def normalize_patterns(raw: Iterable[str]) -> Tuple[str, ...]:
    """Lower-cased shell patterns; ``txt`` and ``.txt`` become ``*.txt``."""
    patterns: List[str] = []
    for item in raw:
        text = str(item).strip().lower()
        if not text:
            continue
        if not any(ch in text for ch in "*?["):
            text = "*." + text.lstrip(".")
        if text not in patterns:
            patterns.append(text)
    return tuple(patterns)


def matches(name: str, patterns: Sequence[str]) -> bool:
    lowered = name.lower()
    return any(fnmatch.fnmatchcase(lowered, pattern) for pattern in patterns)


def _mtime(entry: os.DirEntry) -> datetime:
    return datetime.fromtimestamp(entry.stat().st_mtime, tz=timezone.utc)


def enumerate_files(
    root: Path,
    patterns: Iterable[str],
    *,
    recursive: bool,
    modified_after: Optional[datetime] = None,
    exclude: Iterable[Path] = (),
) -> Iterator[FileRecord]:
    """Yield matching files under *root* lazily, each at most once.

    Directories are visited through an explicit worklist. With
    ``modified_after`` set, files modified at or before that instant are
    skipped. Failing to list *root* propagates; failing to list a
    subdirectory is logged and the subdirectory skipped.
    """
    base = Path(root)
    compiled = normalize_patterns(patterns)
    excluded = {Path(path).resolve() for path in exclude}
    if modified_after is not None and modified_after.tzinfo is None:
        modified_after = modified_after.astimezone(timezone.utc)
    pending: List[Tuple[Path, Path]] = [(base, Path())]
    while pending:
        directory, relative = pending.pop()
        try:
            with os.scandir(directory) as iterator:
                entries = sorted(iterator, key=lambda item: item.name)
        except OSError as exc:
            if directory == base:
                raise
            LOGGER.warning("Skipping unreadable directory %s: %s", directory, exc)
            continue
        subdirs: List[Tuple[Path, Path]] = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if recursive and Path(entry.path).resolve() not in excluded:
                        subdirs.append((Path(entry.path), relative / entry.name))
                    continue
                if not entry.is_file() or not matches(entry.name, compiled):
                    continue
                modified = _mtime(entry)
                size = entry.stat().st_size
            except OSError as exc:
                LOGGER.warning("Skipping %s: %s", entry.path, exc)
                continue
            if modified_after is not None and modified <= modified_after:
                continue
            yield FileRecord(
                path=Path(entry.path),
                relative_path=relative / entry.name,
                modified_at=modified,
                size_hint=size,
            )
        # reversed so subdirectories are visited in name order
        pending.extend(reversed(subdirs))


__all__ = ["enumerate_files", "matches", "normalize_patterns"]
