"""Retention ring bookkeeping recovered purely from slot directory names."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from .slots import parse_slot_index

LOGGER = logging.getLogger("chronovault.backup.retention")


def resume_index(root: Path, max_backups: int) -> int:
    """Highest slot index found under *root*, clamped to *max_backups*.

    Names whose leading token is not numeric are skipped and logged. A missing
    or empty root yields ``0``.
    """
    base = Path(root)
    highest = 0
    if base.is_dir():
        for child in base.iterdir():
            if not child.is_dir():
                continue
            index = parse_slot_index(child.name)
            if index is None:
                LOGGER.info("Ignoring %s: no leading slot index", child.name)
                continue
            highest = max(highest, index)
    if highest >= max_backups:
        highest = max_backups
    if highest:
        LOGGER.info("Found backups up to index %d", highest)
    else:
        LOGGER.info("No previous backups found in %s", base)
    return highest


def initial_index(found: int, max_backups: int) -> int:
    """Index for the first cycle after a (re)start."""
    if found >= max_backups:
        return max_backups
    return found + 1


def advance(index: int, max_backups: int) -> int:
    return (index % max_backups) + 1


@dataclass(slots=True)
class RetentionRing:
    """Current ring position; resolved from disk on first use, in memory after."""

    root: Path
    max_backups: int
    _current: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_backups < 1:
            raise ValueError(f"max_backups must be >= 1, got {self.max_backups}")
        self.root = Path(self.root)

    @property
    def resolved(self) -> bool:
        return self._current is not None

    def current(self) -> int:
        if self._current is None:
            self._current = initial_index(resume_index(self.root, self.max_backups), self.max_backups)
            LOGGER.info("Resuming at index %d", self._current)
        return self._current

    def advance(self) -> int:
        self._current = advance(self.current(), self.max_backups)
        return self._current


__all__ = ["RetentionRing", "advance", "initial_index", "resume_index"]
