"""Public API for snapshot and restore operations."""
from __future__ import annotations

import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, TYPE_CHECKING

from core.paths import resolve_working_dir
from delta import DeltaError

from . import slots
from .create import SnapshotEngine
from .errors import BackupError, InvalidSelection, RestoreBusy, SlotNotFound
from .logs import BackupLogger
from .restore import restore_slot
from .types import BackupSlot, CycleResult, Notification, RestoreResult

if TYPE_CHECKING:  # pragma: no cover - typing guard
    from core.settings import VaultConfig

LOGGER = logging.getLogger("chronovault.backup.api")

Listener = Callable[[Notification], None]


class BackupService:
    """Serialise snapshot cycles and restores and report them as notifications.

    Cycle failures never escape :meth:`run_cycle`; they become ``error``
    notifications. Restores raise to the caller as well as notifying.
    """

    def __init__(
        self,
        config: "VaultConfig",
        *,
        working_dir: Optional[Path] = None,
        logger: Optional[BackupLogger] = None,
    ) -> None:
        self._config = config
        self._working_dir = Path(working_dir or resolve_working_dir())
        self._logger = logger or BackupLogger(self._working_dir)
        self._engine = SnapshotEngine(
            source=config.source,
            backup_root=config.backup_root,
            patterns=config.file_types,
            max_backups=config.max_backups,
            logger=self._logger,
            recursive=config.allow_subfolders,
            modified_only=config.backup_modified_only,
            block_size=config.delta_block_size,
        )
        self._lock = threading.Lock()
        self._listeners: List[Listener] = []

    # ------------------------------------------------------------------
    @property
    def config(self) -> "VaultConfig":
        return self._config

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    @property
    def engine(self) -> SnapshotEngine:
        return self._engine

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    # ------------------------------------------------------------------
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, kind: str, **context: object) -> Notification:
        note = Notification(kind=kind, context=dict(context))
        self._logger.notification(note)
        for listener in list(self._listeners):
            try:
                listener(note)
            except Exception:  # listeners belong to the shell
                LOGGER.exception("Notification listener failed for %s", kind)
        return note

    # ------------------------------------------------------------------
    def run_cycle(self, *, modified_after: Optional[datetime] = None, now: Optional[datetime] = None) -> Optional[CycleResult]:
        with self._lock:
            try:
                result = self._engine.run_cycle(modified_after=modified_after, now=now)
            except (BackupError, DeltaError, OSError) as exc:
                self._notify("error", operation="backup", error=str(exc), type=type(exc).__name__)
                return None
            except Exception as exc:
                LOGGER.exception("Unexpected failure during backup cycle")
                self._notify("error", operation="backup", error=str(exc), type=type(exc).__name__)
                return None
        self._notify(
            "cycle_completed",
            files=result.files_written,
            deltas=result.deltas_written,
            failed=len(result.failures),
            index=result.slot.index,
            slot=result.slot.name,
            rolled_back=result.rolled_back,
            timestamp=result.started_at.isoformat(),
        )
        return result

    # ------------------------------------------------------------------
    def list_slots(self) -> List[BackupSlot]:
        return slots.list_slots(self._config.backup_root)

    def select_slot(self, selection: int) -> BackupSlot:
        """Slot at 1-based *selection* in the oldest-first listing."""
        available = self.list_slots()
        if not isinstance(selection, int) or selection < 1 or selection > len(available):
            raise InvalidSelection(f"selection must be between 1 and {len(available)}, got {selection!r}")
        return available[selection - 1]

    def find_slot(self, name: str) -> BackupSlot:
        for slot in self.list_slots():
            if slot.name == name:
                return slot
        raise SlotNotFound(f"slot {name} not found under {self._config.backup_root}")

    def restore(self, slot: BackupSlot | Path) -> RestoreResult:
        slot_path = slot.path if isinstance(slot, BackupSlot) else Path(slot)
        if not self._lock.acquire(blocking=False):
            self._notify("error", operation="restore", slot=slot_path.name, error="backup cycle in progress")
            raise RestoreBusy("a backup cycle is running; retry the restore once it finishes")
        try:
            result = restore_slot(
                slot_path,
                self._config.source,
                logger=self._logger,
                verify_basis=self._config.verify_basis,
            )
        except BackupError as exc:
            self._notify("error", operation="restore", slot=slot_path.name, error=str(exc), type=type(exc).__name__)
            raise
        finally:
            self._lock.release()
        self._notify(
            "restore_completed",
            slot=slot_path.name,
            restored=result.count,
            failed=len(result.failures),
        )
        return result

    def restore_selection(self, selection: int) -> RestoreResult:
        return self.restore(self.select_slot(selection))


__all__ = ["BackupService", "Listener"]
