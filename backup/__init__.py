"""Rotating snapshot slots and restore for ChronoVault."""
from __future__ import annotations

from .api import BackupService
from .create import SnapshotEngine
from .errors import ArtifactCollision, BackupError, BasisMissing, InvalidSelection, RestoreBusy, SlotIOError, SlotNotFound
from .restore import restore_slot
from .retention import RetentionRing
from .types import BackupSlot, CycleResult, FileFailure, Notification, RestoreResult

__all__ = [
    "ArtifactCollision",
    "BackupError",
    "BackupService",
    "BackupSlot",
    "BasisMissing",
    "CycleResult",
    "FileFailure",
    "InvalidSelection",
    "Notification",
    "RestoreBusy",
    "RestoreResult",
    "RetentionRing",
    "SlotIOError",
    "SlotNotFound",
    "SnapshotEngine",
    "restore_slot",
]
