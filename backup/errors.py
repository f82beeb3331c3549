"""Error hierarchy for backup operations."""
from __future__ import annotations


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class SlotNotFound(BackupError):
    """Raised when a restore targets a slot directory that does not exist."""


class SlotIOError(BackupError):
    """Raised when a slot-level directory operation fails; aborts the cycle."""


class BasisMissing(BackupError):
    """Raised for a single file whose delta basis is absent or unreadable."""


class RestoreBusy(BackupError):
    """Raised when a restore is requested while a backup cycle is running."""


class InvalidSelection(BackupError):
    """Raised when a restore selection does not name a listed slot."""


class ArtifactCollision(BackupError):
    """Raised for a source file whose name is taken by another file's patch artifact."""


__all__ = ["ArtifactCollision", "BackupError", "BasisMissing", "InvalidSelection", "RestoreBusy", "SlotIOError", "SlotNotFound"]
