"""Structured JSONL logging for snapshot and restore activity."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from .types import FileFailure, Notification

LOGGER = logging.getLogger("chronovault.backup")


class BackupLogger:
    """Append one JSON object per backup event to ``logs/backup.jsonl``.

    Every entry is mirrored to the ``chronovault.backup`` logger so the
    console and the JSON application log see the same stream.
    """

    def __init__(self, working_dir: Path, *, filename: str = "backup.jsonl") -> None:
        self._log_path = Path(working_dir) / "logs" / filename
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    def _write(self, payload: Dict[str, Any], *, level: int) -> None:
        payload.setdefault("ts", datetime.now(timezone.utc).isoformat())
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as handle:
                handle.write(line + "\n")
        LOGGER.log(level, "%s", line)

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        payload: Dict[str, Any] = {"event": event, "phase": phase, "ok": bool(ok)}
        payload.update(extra)
        self._write(payload, level=logging.INFO if ok else logging.ERROR)

    def info(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": True}, level=logging.INFO)

    def warning(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.WARNING)

    def error(self, event: str, **extra: Any) -> None:
        self._write({"event": event, **extra, "ok": False}, level=logging.ERROR)

    # ------------------------------------------------------------------
    def file_failed(self, failure: FileFailure, *, phase: str, slot: Optional[str] = None) -> None:
        self.warning(
            "file_failed",
            phase=phase,
            slot=slot,
            path=failure.relative_path,
            kind=failure.kind,
            error=failure.message,
        )

    def notification(self, note: Notification) -> None:
        payload = {"event": f"notify_{note.kind}", "ts": note.created_at.isoformat(), **note.context}
        level = logging.ERROR if note.kind == "error" else logging.INFO
        payload["ok"] = note.kind != "error"
        self._write(payload, level=level)


__all__ = ["BackupLogger"]
