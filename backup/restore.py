"""Restore tracked files from a slot back over the source tree.

Restores are destructive: every file the slot holds overwrites its
counterpart under the source root. Delta artifacts are replayed against the
file currently at the source location, which must be the basis the delta was
built from. Pass ``verify_basis=True`` to refuse a basis that has drifted.
"""
from __future__ import annotations

import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterator, List, Tuple

from delta import DeltaError, apply_delta
from delta.formats import DELTA_SUFFIX, SIGNATURE_SUFFIX, is_delta_file, is_signature_file, read_delta

from .errors import BackupError, BasisMissing, SlotNotFound
from .logs import BackupLogger
from .types import FileFailure, RestoreResult


def _walk_slot(slot_path: Path) -> Iterator[Tuple[Path, Path]]:
    """Yield ``(absolute, relative)`` for every file in the slot, in name order."""
    pending: List[Path] = [slot_path]
    while pending:
        directory = pending.pop()
        children = sorted(directory.iterdir(), key=lambda item: item.name)
        subdirs: List[Path] = []
        for child in children:
            if child.is_dir() and not child.is_symlink():
                subdirs.append(child)
            elif child.is_file():
                yield child, child.relative_to(slot_path)
        pending.extend(reversed(subdirs))


def _strip_suffix(name: str, suffix: str) -> str:
    return name[: -len(suffix)]


def _write_atomic(target: Path, data: bytes) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    handle, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=target.parent)
    try:
        with os.fdopen(handle, "wb") as stream:
            stream.write(data)
        os.replace(temp_name, target)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _copy_over(source: Path, target: Path) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    shutil.copy2(source, target)


def _restore_delta(artifact: Path, target: Path, *, verify_basis: bool) -> None:
    delta = read_delta(artifact)
    literal = artifact.with_name(_strip_suffix(artifact.name, DELTA_SUFFIX))
    if target.is_file():
        basis = target.read_bytes()
    elif literal.is_file():
        _copy_over(literal, target)
        return
    elif not delta.has_copies:
        basis = b""
        verify_basis = False
    else:
        raise BasisMissing(f"basis {target} is missing and the delta references it")
    _write_atomic(target, apply_delta(basis, delta, verify=verify_basis))


def _is_patch_delta(path: Path) -> bool:
    return path.name.endswith(DELTA_SUFFIX) and path.is_file() and is_delta_file(path)


def _is_bookkeeping(artifact: Path) -> bool:
    """Signatures written next to a stored file or delta are never restored."""
    name = artifact.name
    if not name.endswith(SIGNATURE_SUFFIX) or not is_signature_file(artifact):
        return False
    stem = _strip_suffix(name, SIGNATURE_SUFFIX)
    return artifact.with_name(stem).exists() or artifact.with_name(stem + DELTA_SUFFIX).exists()


def restore_slot(
    slot_path: Path,
    source_root: Path,
    *,
    logger: BackupLogger,
    verify_basis: bool = False,
) -> RestoreResult:
    slot_path = Path(slot_path)
    source_root = Path(source_root)
    if not slot_path.is_dir():
        raise SlotNotFound(f"slot {slot_path} does not exist")

    result = RestoreResult(slot_path=slot_path)
    logger.event(event="restore_start", phase="restore", ok=True, slot=slot_path.name)
    for artifact, relative in _walk_slot(slot_path):
        rel_target = relative
        try:
            if _is_bookkeeping(artifact):
                continue
            if _is_patch_delta(artifact):
                rel_target = relative.with_name(_strip_suffix(artifact.name, DELTA_SUFFIX))
                _restore_delta(artifact, source_root / rel_target, verify_basis=verify_basis)
            elif _is_patch_delta(artifact.with_name(artifact.name + DELTA_SUFFIX)):
                # only the fallback basis for the delta beside it
                continue
            else:
                _copy_over(artifact, source_root / rel_target)
        except (BackupError, DeltaError, OSError) as exc:
            failure = FileFailure(rel_target.as_posix(), type(exc).__name__, str(exc))
            result.failures.append(failure)
            logger.file_failed(failure, phase="restore", slot=slot_path.name)
            continue
        result.restored.append(rel_target.as_posix())

    logger.event(
        event="restore_complete",
        phase="restore",
        ok=not result.failures,
        slot=slot_path.name,
        restored=result.count,
        failed=len(result.failures),
    )
    return result


__all__ = ["restore_slot"]
