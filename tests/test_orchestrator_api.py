import threading
from datetime import datetime

import pytest
from fastapi.testclient import TestClient

from core.settings import VaultConfig
from orchestrator.api import VaultService, create_app


@pytest.fixture()
def vault(tmp_path):
    source = tmp_path / "source"
    source.mkdir()
    (source / "a.txt").write_text("alpha", encoding="utf-8")
    config = VaultConfig(
        source=source,
        backup_root=tmp_path / "backups",
        file_types=["txt"],
        max_backups=3,
        seconds_between_backups=3600,
    )
    return VaultService(config, working_dir=tmp_path / "work")


@pytest.fixture()
def client(vault):
    return TestClient(create_app(vault))


def test_status_reports_schedule(client):
    response = client.get("/v1/vault/status")

    assert response.status_code == 200
    body = response.json()
    assert body["paused"] is False
    assert body["running"] is False
    assert body["max_backups"] == 3
    assert body["last_backup_at"] is None


def test_pause_and_resume(client, vault):
    assert client.post("/v1/vault/pause").json()["paused"] is True
    assert vault.scheduler.is_paused
    assert client.post("/v1/vault/resume").json()["paused"] is False
    assert not vault.scheduler.is_paused


def test_slots_listing(client, vault):
    vault.backup.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    vault.backup.run_cycle(now=datetime(2024, 1, 1, 11, 0))

    body = client.get("/v1/vault/slots").json()

    assert [(slot["position"], slot["name"]) for slot in body["slots"]] == [
        (1, "1_10-00_01-01-2024"),
        (2, "2_11-00_01-01-2024"),
    ]


def test_restore_by_selection_and_name(client, vault, tmp_path):
    vault.backup.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    target = tmp_path / "source" / "a.txt"
    target.write_text("changed", encoding="utf-8")

    response = client.post("/v1/vault/restore", json={"selection": 1})

    assert response.status_code == 200
    assert response.json()["restored"] == ["a.txt"]
    assert target.read_text(encoding="utf-8") == "alpha"

    target.write_text("changed again", encoding="utf-8")
    response = client.post("/v1/vault/restore", json={"slot": "1_10-00_01-01-2024"})
    assert response.status_code == 200
    assert target.read_text(encoding="utf-8") == "alpha"


def test_restore_errors_map_to_status_codes(client, vault):
    vault.backup.run_cycle(now=datetime(2024, 1, 1, 10, 0))

    assert client.post("/v1/vault/restore", json={"selection": 5}).status_code == 400
    assert client.post("/v1/vault/restore", json={}).status_code == 400
    assert client.post("/v1/vault/restore", json={"selection": 1, "slot": "x"}).status_code == 400
    assert client.post("/v1/vault/restore", json={"slot": "9_10-00_01-01-2024"}).status_code == 404


def test_restore_while_cycle_running_conflicts(client, vault, monkeypatch):
    vault.backup.run_cycle(now=datetime(2024, 1, 1, 10, 0))
    entered = threading.Event()
    release = threading.Event()
    real_cycle = vault.backup.engine.run_cycle

    def slow_cycle(**kwargs):
        entered.set()
        release.wait(timeout=5)
        return real_cycle(**kwargs)

    monkeypatch.setattr(vault.backup.engine, "run_cycle", slow_cycle)
    worker = threading.Thread(target=vault.backup.run_cycle)
    worker.start()
    try:
        assert entered.wait(timeout=5)
        response = client.post("/v1/vault/restore", json={"selection": 1})
        assert response.status_code == 409
        assert client.get("/v1/vault/status").json()["busy"] is True
    finally:
        release.set()
        worker.join(timeout=5)
