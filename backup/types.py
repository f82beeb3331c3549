"""Common dataclasses shared across backup modules."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional


@dataclass(slots=True)
class BackupSlot:
    """One indexed, timestamped directory holding a single cycle's output."""

    index: int
    created_at: Optional[datetime]
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


@dataclass(slots=True)
class FileRecord:
    """Candidate file produced by the walker; not persisted beyond a cycle."""

    path: Path
    relative_path: Path
    modified_at: datetime
    size_hint: int


@dataclass(slots=True)
class PatchArtifact:
    signature_path: Path
    delta_path: Optional[Path] = None


@dataclass(slots=True)
class FileFailure:
    relative_path: str
    kind: str
    message: str


@dataclass(slots=True)
class CycleResult:
    slot: BackupSlot
    started_at: datetime
    finished_at: datetime
    files_written: int = 0
    deltas_written: int = 0
    failures: List[FileFailure] = field(default_factory=list)
    rolled_back: bool = False


@dataclass(slots=True)
class RestoreResult:
    slot_path: Path
    restored: List[str] = field(default_factory=list)
    failures: List[FileFailure] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.restored)


@dataclass(slots=True)
class Notification:
    """Plain event handed to the shell: cycle completed, restore completed or error."""

    kind: str
    context: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


__all__ = [
    "BackupSlot",
    "CycleResult",
    "FileFailure",
    "FileRecord",
    "Notification",
    "PatchArtifact",
    "RestoreResult",
]
