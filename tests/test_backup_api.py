import json
import threading
from datetime import datetime

import pytest

from backup.api import BackupService
from backup.errors import InvalidSelection, RestoreBusy, SlotNotFound
from core.settings import VaultConfig


def _config(tmp_path, **overrides):
    values = dict(
        source=tmp_path / "source",
        backup_root=tmp_path / "backups",
        file_types=["txt"],
        max_backups=3,
        seconds_between_backups=60,
    )
    values.update(overrides)
    return VaultConfig(**values)


@pytest.fixture()
def service(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    (source / "a.txt").write_text("alpha", encoding="utf-8")
    return BackupService(_config(tmp_path), working_dir=tmp_path / "work")


def test_cycle_emits_completed_notification(service, tmp_path):
    notes = []
    service.subscribe(notes.append)

    result = service.run_cycle(now=datetime(2024, 1, 1, 10, 0))

    assert result is not None and result.files_written == 1
    assert [note.kind for note in notes] == ["cycle_completed"]
    assert notes[0].context["index"] == 1
    assert notes[0].context["files"] == 1
    lines = (tmp_path / "work" / "logs" / "backup.jsonl").read_text(encoding="utf-8").splitlines()
    events = [json.loads(line)["event"] for line in lines]
    assert "cycle_complete" in events
    assert "notify_cycle_completed" in events


def test_cycle_failure_becomes_error_notification(tmp_path):
    notes = []
    service = BackupService(_config(tmp_path), working_dir=tmp_path / "work")
    service.subscribe(notes.append)

    assert service.run_cycle() is None

    assert [note.kind for note in notes] == ["error"]
    assert notes[0].context["operation"] == "backup"


def test_unexpected_cycle_failure_becomes_error_notification(service, monkeypatch):
    notes = []
    service.subscribe(notes.append)

    def broken_cycle(**kwargs):
        raise ValueError("invalid literal for int()")

    monkeypatch.setattr(service.engine, "run_cycle", broken_cycle)

    assert service.run_cycle() is None

    assert [note.kind for note in notes] == ["error"]
    assert notes[0].context["type"] == "ValueError"
    assert not service.busy


def test_empty_cycle_reports_zero_files(tmp_path):
    (tmp_path / "source").mkdir()
    notes = []
    service = BackupService(_config(tmp_path), working_dir=tmp_path / "work")
    service.subscribe(notes.append)

    result = service.run_cycle()

    assert result.rolled_back
    assert [note.kind for note in notes] == ["cycle_completed"]
    assert notes[0].context["files"] == 0
    assert notes[0].context["rolled_back"] is True
    assert not (tmp_path / "backups").exists() or list((tmp_path / "backups").iterdir()) == []


def test_unsubscribe_stops_delivery(service):
    notes = []
    unsubscribe = service.subscribe(notes.append)
    unsubscribe()

    service.run_cycle()

    assert notes == []


def test_selection_uses_oldest_first_listing(service, tmp_path):
    service.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    service.run_cycle(now=datetime(2024, 1, 1, 11, 0))

    assert service.select_slot(1).name == "1_10-00_01-01-2024"
    assert service.select_slot(2).name == "2_11-00_01-01-2024"
    with pytest.raises(InvalidSelection):
        service.select_slot(0)
    with pytest.raises(InvalidSelection):
        service.select_slot(3)
    with pytest.raises(SlotNotFound):
        service.find_slot("7_10-00_01-01-2024")


def test_restore_selection_overwrites_source(service, tmp_path):
    notes = []
    service.subscribe(notes.append)
    service.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    (tmp_path / "source" / "a.txt").write_text("changed", encoding="utf-8")

    result = service.restore_selection(1)

    assert result.restored == ["a.txt"]
    assert (tmp_path / "source" / "a.txt").read_text(encoding="utf-8") == "alpha"
    assert notes[-1].kind == "restore_completed"
    assert notes[-1].context["restored"] == 1


def test_restore_of_missing_slot_raises_and_notifies(service, tmp_path):
    notes = []
    service.subscribe(notes.append)

    with pytest.raises(SlotNotFound):
        service.restore(tmp_path / "backups" / "1_10-00_01-01-2024")

    assert notes[-1].kind == "error"
    assert not service.busy


def test_restore_during_cycle_is_refused(service, tmp_path, monkeypatch):
    service.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    slot = service.select_slot(1)
    entered = threading.Event()
    release = threading.Event()
    real_cycle = service.engine.run_cycle

    def slow_cycle(**kwargs):
        entered.set()
        release.wait(timeout=5)
        return real_cycle(**kwargs)

    monkeypatch.setattr(service.engine, "run_cycle", slow_cycle)
    worker = threading.Thread(target=service.run_cycle)
    worker.start()
    try:
        assert entered.wait(timeout=5)
        assert service.busy
        with pytest.raises(RestoreBusy):
            service.restore(slot)
    finally:
        release.set()
        worker.join(timeout=5)

    assert not service.busy
    assert service.restore(slot).count == 1
