"""On-disk slot directories: one directory per ring index.

Slot names follow ``<index>_<HH-mm_dd-MM-yyyy>``. The timestamp carries its
own ``_`` separator, so splitting a name on ``_`` yields three tokens.
"""
from __future__ import annotations

import logging
import shutil
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import SlotIOError
from .types import BackupSlot

LOGGER = logging.getLogger("chronovault.backup.slots")

SLOT_TIME_FORMAT = "%H-%M_%d-%m-%Y"


def format_slot_name(index: int, created_at: datetime) -> str:
    if index < 1:
        raise ValueError(f"slot index must be >= 1, got {index}")
    if created_at.tzinfo is not None:
        created_at = created_at.astimezone()
    return f"{int(index)}_{created_at.strftime(SLOT_TIME_FORMAT)}"


def parse_slot_index(name: str) -> Optional[int]:
    """Leading numeric token of *name*, or ``None`` when it does not parse."""
    token = name.split("_", 1)[0]
    if not (token.isascii() and token.isdigit()):
        return None
    return int(token)


def parse_slot_name(name: str) -> Optional[Tuple[int, datetime]]:
    parts = name.split("_")
    if len(parts) != 3:
        return None
    index = parse_slot_index(name)
    if index is None or index < 1:
        return None
    try:
        created = datetime.strptime(f"{parts[1]}_{parts[2]}", SLOT_TIME_FORMAT)
    except ValueError:
        return None
    return index, created


def _slot_dirs(root: Path) -> List[Path]:
    if not root.is_dir():
        return []
    return sorted(child for child in root.iterdir() if child.is_dir())


def find_by_index_prefix(root: Path, index: int) -> Optional[Path]:
    prefix = f"{int(index)}_"
    for child in _slot_dirs(Path(root)):
        if child.name.startswith(prefix):
            return child
    return None


def discard(path: Path) -> None:
    """Recursively delete *path*; a missing path is not an error."""
    target = Path(path)
    if not target.exists():
        return
    try:
        shutil.rmtree(target)
    except FileNotFoundError:
        return
    except OSError as exc:
        raise SlotIOError(f"failed to delete slot {target}: {exc}") from exc


def replace(root: Path, index: int, *, now: Optional[datetime] = None) -> BackupSlot:
    """Destroy whatever occupies *index* and create a fresh, empty slot for it."""
    base = Path(root)
    created = now or datetime.now()
    if created.tzinfo is not None:
        created = created.astimezone().replace(tzinfo=None)
    prefix = f"{int(index)}_"
    try:
        base.mkdir(parents=True, exist_ok=True)
        existing = [child for child in _slot_dirs(base) if child.name.startswith(prefix)]
    except OSError as exc:
        raise SlotIOError(f"cannot scan backup root {base}: {exc}") from exc
    for child in existing:
        LOGGER.info("Replacing slot %s", child.name)
        discard(child)
    path = base / format_slot_name(index, created)
    try:
        path.mkdir(parents=True)
    except OSError as exc:
        raise SlotIOError(f"cannot create slot {path}: {exc}") from exc
    return BackupSlot(index=int(index), created_at=created, path=path)


def list_slots(root: Path) -> List[BackupSlot]:
    """Parseable slots under *root*, oldest first (newest last)."""
    slots: List[Tuple[datetime, int, int, BackupSlot]] = []
    for child in _slot_dirs(Path(root)):
        parsed = parse_slot_name(child.name)
        if parsed is None:
            LOGGER.info("Skipping %s: not a slot directory name", child.name)
            continue
        index, created = parsed
        try:
            mtime = child.stat().st_mtime_ns
        except OSError:
            mtime = 0
        slots.append((created, mtime, index, BackupSlot(index=index, created_at=created, path=child)))
    slots.sort(key=lambda item: item[:3])
    return [item[3] for item in slots]


__all__ = [
    "SLOT_TIME_FORMAT",
    "discard",
    "find_by_index_prefix",
    "format_slot_name",
    "list_slots",
    "parse_slot_index",
    "parse_slot_name",
    "replace",
]
