"""Structured logging helpers for the backup scheduler."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional


LOGGER = logging.getLogger("chronovault.orchestrator.logs")

# Stable numeric identifiers so log consumers can filter without parsing text.
EVENT_STARTED = 1000
EVENT_STOPPED = 1001
EVENT_PAUSED = 1010
EVENT_RESUMED = 1011
EVENT_CYCLE_START = 1020
EVENT_CYCLE_DONE = 1021
EVENT_CYCLE_FAILED = 1900


class SchedulerLogger:
    """Write structured JSONL events for the scheduler loop."""

    def __init__(self, working_dir: Path) -> None:
        self._working_dir = Path(working_dir)
        self._log_path = self._working_dir / "logs" / "scheduler.jsonl"
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    # ------------------------------------------------------------------
    def log_event(
        self,
        *,
        level: str,
        event_id: int,
        phase: str,
        ok: bool,
        data: Optional[Dict[str, Any]] = None,
    ) -> None:
        payload: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event_id": int(event_id),
            "phase": phase,
            "ok": ok,
        }
        if data:
            payload.update(data)
        line = json.dumps(payload, sort_keys=True, default=str)
        with self._lock:
            with self._log_path.open("a", encoding="utf-8") as fh:
                fh.write(line + "\n")
        LOGGER.log(getattr(logging, level, logging.INFO), "%s", line)

    # ------------------------------------------------------------------
    def log_state(self, event_id: int, **data: Any) -> None:
        self.log_event(level="INFO", event_id=event_id, phase="scheduler", ok=True, data=data)

    def log_cycle(self, event_id: int, ok: bool, **data: Any) -> None:
        self.log_event(level="INFO" if ok else "WARNING", event_id=event_id, phase="cycle", ok=ok, data=data)

    def log_error(self, event_id: int, phase: str, err: BaseException, **data: Any) -> None:
        payload = dict(data)
        payload["err"] = type(err).__name__
        payload["err_msg"] = str(err)
        self.log_event(level="ERROR", event_id=event_id, phase=phase, ok=False, data=payload)


__all__ = [
    "EVENT_CYCLE_DONE",
    "EVENT_CYCLE_FAILED",
    "EVENT_CYCLE_START",
    "EVENT_PAUSED",
    "EVENT_RESUMED",
    "EVENT_STARTED",
    "EVENT_STOPPED",
    "SchedulerLogger",
]
