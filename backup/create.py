"""Run one snapshot cycle into the next retention slot."""
from __future__ import annotations

import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional

from delta import DeltaError, Signature, build_delta, build_signature
from delta.formats import DELTA_SUFFIX, SIGNATURE_SUFFIX, is_signature_file, read_signature, write_delta, write_signature
from delta.signature import DEFAULT_BLOCK_SIZE

from . import slots
from .errors import ArtifactCollision, BackupError, BasisMissing, SlotIOError
from .logs import BackupLogger
from .retention import RetentionRing
from .types import BackupSlot, CycleResult, FileFailure, FileRecord, PatchArtifact
from .walker import enumerate_files, matches, normalize_patterns


def _artifact_paths(target: Path) -> PatchArtifact:
    return PatchArtifact(
        signature_path=target.with_name(target.name + SIGNATURE_SUFFIX),
        delta_path=target.with_name(target.name + DELTA_SUFFIX),
    )


class SnapshotEngine:
    """Copy (or delta-encode) the source tree into the ring's current slot."""

    def __init__(
        self,
        *,
        source: Path,
        backup_root: Path,
        patterns: Iterable[str],
        max_backups: int,
        logger: BackupLogger,
        recursive: bool = True,
        modified_only: bool = False,
        block_size: int = DEFAULT_BLOCK_SIZE,
    ) -> None:
        self._source = Path(source)
        self._backup_root = Path(backup_root)
        self._patterns = normalize_patterns(patterns)
        self._recursive = bool(recursive)
        self._modified_only = bool(modified_only)
        self._block_size = int(block_size)
        self._logger = logger
        self._ring = RetentionRing(self._backup_root, int(max_backups))

    # ------------------------------------------------------------------
    @property
    def ring(self) -> RetentionRing:
        return self._ring

    @property
    def modified_only(self) -> bool:
        return self._modified_only

    # ------------------------------------------------------------------
    def _prior_signature(self, relative: Path, current: BackupSlot) -> Optional[Signature]:
        """Most recent stored signature for *relative* outside the current slot."""
        for slot in reversed(slots.list_slots(self._backup_root)):
            if slot.path == current.path:
                continue
            candidate = _artifact_paths(slot.path / relative).signature_path
            if not candidate.is_file():
                continue
            try:
                if not is_signature_file(candidate):
                    # a user file that merely ends in .sig (full-copy slot)
                    continue
                return read_signature(candidate)
            except (OSError, DeltaError) as exc:
                raise BasisMissing(f"unreadable signature {candidate}: {exc}") from exc
        return None

    def _check_collision(self, record: FileRecord) -> None:
        name = record.path.name
        for suffix in (SIGNATURE_SUFFIX, DELTA_SUFFIX):
            if not name.endswith(suffix):
                continue
            stem = record.path.with_name(name[: -len(suffix)])
            if stem.is_file() and matches(stem.name, self._patterns):
                raise ArtifactCollision(
                    f"{record.relative_path.as_posix()} collides with the {suffix} artifact of {stem.name}"
                )

    def _store(self, record: FileRecord, slot: BackupSlot) -> bool:
        """Write one file into *slot*; True when a delta was stored instead of a copy."""
        target = slot.path / record.relative_path
        target.parent.mkdir(parents=True, exist_ok=True)
        if not self._modified_only:
            shutil.copy2(record.path, target)
            return False

        self._check_collision(record)
        content = record.path.read_bytes()
        signature = build_signature(content, block_size=self._block_size)
        artifact = _artifact_paths(target)
        prior = self._prior_signature(record.relative_path, slot)
        if prior is None:
            target.write_bytes(content)
            shutil.copystat(record.path, target)
            write_signature(artifact.signature_path, signature)
            return False
        delta = build_delta(content, prior)
        write_delta(artifact.delta_path, delta)
        write_signature(artifact.signature_path, signature)
        self._logger.info(
            "delta_written",
            path=record.relative_path.as_posix(),
            copied=delta.copied_bytes,
            literal=delta.literal_bytes,
        )
        return True

    # ------------------------------------------------------------------
    def run_cycle(self, *, modified_after: Optional[datetime] = None, now: Optional[datetime] = None) -> CycleResult:
        started = now or datetime.now(timezone.utc)
        index = self._ring.current()
        slot = slots.replace(self._backup_root, index, now=started)
        self._logger.event(event="cycle_start", phase="create", ok=True, slot=slot.name, index=index)

        failures: List[FileFailure] = []
        written = 0
        deltas = 0
        records = enumerate_files(
            self._source,
            self._patterns,
            recursive=self._recursive,
            modified_after=modified_after if self._modified_only else None,
            exclude=[self._backup_root],
        )
        try:
            for record in records:
                try:
                    stored_delta = self._store(record, slot)
                except (BackupError, DeltaError, OSError) as exc:
                    failure = FileFailure(record.relative_path.as_posix(), type(exc).__name__, str(exc))
                    failures.append(failure)
                    self._logger.file_failed(failure, phase="create", slot=slot.name)
                    continue
                written += 1
                deltas += int(stored_delta)
        except OSError as exc:
            self._logger.error("cycle_failed", slot=slot.name, index=index, error=str(exc))
            try:
                slots.discard(slot.path)
            except SlotIOError as discard_exc:
                raise SlotIOError(
                    f"cannot walk source {self._source}: {exc}; slot {slot.name} left behind: {discard_exc}"
                ) from exc
            raise SlotIOError(f"cannot walk source {self._source}: {exc}") from exc

        rolled_back = written == 0
        if rolled_back:
            slots.discard(slot.path)
            self._logger.info("cycle_empty", slot=slot.name, index=index)
        else:
            self._ring.advance()
        finished = datetime.now(timezone.utc)
        self._logger.event(
            event="cycle_complete",
            phase="create",
            ok=not failures,
            slot=slot.name,
            index=index,
            files=written,
            deltas=deltas,
            failed=len(failures),
        )
        return CycleResult(
            slot=slot,
            started_at=started,
            finished_at=finished,
            files_written=written,
            deltas_written=deltas,
            failures=failures,
            rolled_back=rolled_back,
        )


__all__ = ["SnapshotEngine"]
