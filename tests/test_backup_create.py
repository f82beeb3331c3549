import os
from datetime import datetime, timedelta, timezone

import pytest

from backup import create as create_module
from backup.create import SnapshotEngine
from backup.errors import SlotIOError
from delta import apply_delta
from delta.formats import read_delta, read_signature


class StubLogger:
    def __init__(self) -> None:
        self.events = []

    def info(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("info", event, extra))

    def warning(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("warning", event, extra))

    def error(self, event: str, **extra):  # pragma: no cover - simple recorder
        self.events.append(("error", event, extra))

    def event(self, *, event: str, phase: str, ok: bool, **extra):  # pragma: no cover - simple recorder
        self.events.append(("event", event, phase, ok, extra))

    def file_failed(self, failure, *, phase: str, slot=None):  # pragma: no cover - simple recorder
        self.events.append(("file_failed", failure.relative_path, phase, slot))


def _write(path, content, *, mtime=None):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)
    if mtime is not None:
        stamp = mtime.timestamp()
        os.utime(path, (stamp, stamp))


def _engine(source, root, logger, **overrides):
    options = dict(
        source=source,
        backup_root=root,
        patterns=["txt"],
        max_backups=3,
        logger=logger,
        recursive=True,
        modified_only=False,
        block_size=64,
    )
    options.update(overrides)
    return SnapshotEngine(**options)


def _slot_names(root):
    return sorted(child.name for child in root.iterdir())


def _files(slot_path):
    return sorted(path.relative_to(slot_path).as_posix() for path in slot_path.rglob("*") if path.is_file())


def test_ring_of_three_wraps_after_four_cycles(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha")
    engine = _engine(source, root, StubLogger())
    base = datetime(2024, 1, 1, 10, 0)

    indices = []
    for minute in range(4):
        result = engine.run_cycle(now=base + timedelta(minutes=minute))
        indices.append(result.slot.index)

    assert indices == [1, 2, 3, 1]
    assert _slot_names(root) == ["1_10-03_01-01-2024", "2_10-01_01-01-2024", "3_10-02_01-01-2024"]
    assert engine.ring.current() == 2


def test_restart_resumes_after_highest_slot(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha")
    (root / "2_09-00_01-01-2024").mkdir(parents=True)

    result = _engine(source, root, StubLogger()).run_cycle(now=datetime(2024, 1, 1, 10, 0))

    assert result.slot.index == 3


def test_full_copy_mirrors_subdirectories(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha")
    _write(source / "docs" / "b.txt", b"beta")
    _write(source / "docs" / "skip.bin", b"binary")

    result = _engine(source, root, StubLogger()).run_cycle(now=datetime(2024, 1, 1, 10, 0))

    assert result.files_written == 2
    assert not result.rolled_back
    assert _files(result.slot.path) == ["a.txt", "docs/b.txt"]
    assert (result.slot.path / "docs" / "b.txt").read_bytes() == b"beta"


def test_flat_mode_skips_subdirectories(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha")
    _write(source / "docs" / "b.txt", b"beta")

    result = _engine(source, root, StubLogger(), recursive=False).run_cycle()

    assert _files(result.slot.path) == ["a.txt"]


def test_empty_cycle_discards_slot_and_keeps_index(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    root = tmp_path / "backups"
    logger = StubLogger()
    engine = _engine(source, root, logger)

    result = engine.run_cycle()

    assert result.rolled_back
    assert result.files_written == 0
    assert _slot_names(root) == []
    assert engine.ring.current() == 1
    assert any(entry[1] == "cycle_empty" for entry in logger.events)


def test_backup_root_inside_source_is_not_copied(tmp_path):
    source = tmp_path / "source"
    root = source / "backups"
    _write(source / "a.txt", b"alpha")
    engine = _engine(source, root, StubLogger())

    engine.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    second = engine.run_cycle(now=datetime(2024, 1, 1, 10, 1))

    assert _files(second.slot.path) == ["a.txt"]


def test_modified_only_writes_signature_then_delta(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    cutoff = (datetime.now(timezone.utc) - timedelta(minutes=10)).replace(microsecond=0)
    old_b = bytes(range(256)) * 4
    new_b = old_b[:500] + b"edited" + old_b[500:]
    _write(source / "a.txt", b"untouched " * 20, mtime=cutoff - timedelta(hours=1))
    _write(source / "b.txt", old_b, mtime=cutoff - timedelta(hours=1))
    engine = _engine(source, root, StubLogger(), modified_only=True)

    first = engine.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    assert _files(first.slot.path) == ["a.txt", "a.txt.sig", "b.txt", "b.txt.sig"]
    assert first.deltas_written == 0

    _write(source / "b.txt", new_b, mtime=cutoff + timedelta(minutes=1))
    second = engine.run_cycle(modified_after=cutoff, now=datetime(2024, 1, 1, 10, 1))

    assert second.files_written == 1
    assert second.deltas_written == 1
    assert _files(second.slot.path) == ["b.txt.delta", "b.txt.sig"]
    delta = read_delta(second.slot.path / "b.txt.delta")
    assert delta.has_copies
    assert apply_delta(old_b, delta, verify=True) == new_b
    assert read_signature(second.slot.path / "b.txt.sig").file_size == len(new_b)


def test_modified_only_without_changes_rolls_back(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    cutoff = (datetime.now(timezone.utc) - timedelta(minutes=10)).replace(microsecond=0)
    _write(source / "a.txt", b"alpha", mtime=cutoff - timedelta(hours=1))
    engine = _engine(source, root, StubLogger(), modified_only=True)

    result = engine.run_cycle(modified_after=cutoff, now=datetime(2024, 1, 1, 10, 0))

    assert result.rolled_back
    assert engine.ring.current() == 1


def test_modified_after_is_ignored_for_full_copies(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    cutoff = (datetime.now(timezone.utc) - timedelta(minutes=10)).replace(microsecond=0)
    _write(source / "a.txt", b"alpha", mtime=cutoff - timedelta(hours=1))

    result = _engine(source, root, StubLogger()).run_cycle(modified_after=cutoff)

    assert result.files_written == 1


def test_corrupt_prior_signature_fails_only_that_file(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha" * 30)
    _write(source / "b.txt", b"beta" * 30)
    logger = StubLogger()
    engine = _engine(source, root, logger, modified_only=True)
    first = engine.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    stored = first.slot.path / "a.txt.sig"
    stored.write_bytes(stored.read_bytes()[:20])

    second = engine.run_cycle(now=datetime(2024, 1, 1, 10, 1))

    assert second.files_written == 1
    assert [failure.relative_path for failure in second.failures] == ["a.txt"]
    assert second.failures[0].kind == "BasisMissing"
    assert ("file_failed", "a.txt", "create", second.slot.name) in logger.events


def test_modified_only_refuses_source_file_named_like_an_artifact(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha" * 30)
    _write(source / "a.txt.sig", b"user notes")
    _write(source / "b.delta", b"standalone")

    result = _engine(source, root, StubLogger(), patterns=["*"], modified_only=True).run_cycle()

    assert [(failure.relative_path, failure.kind) for failure in result.failures] == [("a.txt.sig", "ArtifactCollision")]
    assert _files(result.slot.path) == ["a.txt", "a.txt.sig", "b.delta", "b.delta.sig"]
    assert read_signature(result.slot.path / "a.txt.sig").file_size == 150


def test_user_sig_file_in_full_copy_slot_is_not_a_basis(tmp_path):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha" * 30)
    _write(source / "a.txt.sig", b"user notes")
    _engine(source, root, StubLogger(), patterns=["*"]).run_cycle(now=datetime(2024, 1, 1, 10, 0))

    result = _engine(source, root, StubLogger(), modified_only=True).run_cycle(now=datetime(2024, 1, 1, 10, 1))

    assert result.failures == []
    assert result.deltas_written == 0
    assert _files(result.slot.path) == ["a.txt", "a.txt.sig"]


def test_copy_failure_is_isolated(tmp_path, monkeypatch):
    source = tmp_path / "source"
    root = tmp_path / "backups"
    _write(source / "a.txt", b"alpha")
    _write(source / "b.txt", b"beta")
    real_copy = create_module.shutil.copy2

    def flaky_copy(src, dst, *args, **kwargs):
        if str(src).endswith("a.txt"):
            raise PermissionError("locked")
        return real_copy(src, dst, *args, **kwargs)

    monkeypatch.setattr(create_module.shutil, "copy2", flaky_copy)

    result = _engine(source, root, StubLogger()).run_cycle()

    assert result.files_written == 1
    assert [failure.relative_path for failure in result.failures] == ["a.txt"]
    assert _files(result.slot.path) == ["b.txt"]


def test_unreadable_source_root_discards_slot(tmp_path):
    root = tmp_path / "backups"
    engine = _engine(tmp_path / "missing", root, StubLogger())

    with pytest.raises(SlotIOError):
        engine.run_cycle()

    assert _slot_names(root) == []
    assert engine.ring.current() == 1


def test_walk_failure_survives_failed_discard(tmp_path, monkeypatch):
    root = tmp_path / "backups"
    engine = _engine(tmp_path / "missing", root, StubLogger())

    def stuck_discard(path):
        raise SlotIOError(f"cannot remove slot {path}: busy")

    monkeypatch.setattr(create_module.slots, "discard", stuck_discard)

    with pytest.raises(SlotIOError) as excinfo:
        engine.run_cycle()

    assert "cannot walk source" in str(excinfo.value)
    assert "left behind" in str(excinfo.value)
    assert isinstance(excinfo.value.__cause__, OSError)
