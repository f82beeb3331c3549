"""Pause-aware loop that runs one snapshot cycle per interval."""
from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from core.paths import resolve_working_dir

from .logs import (
    EVENT_CYCLE_DONE,
    EVENT_CYCLE_FAILED,
    EVENT_CYCLE_START,
    EVENT_PAUSED,
    EVENT_RESUMED,
    EVENT_STARTED,
    EVENT_STOPPED,
    SchedulerLogger,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CycleRunner(Protocol):
    def run_cycle(self, *, modified_after: Optional[datetime] = None, now: Optional[datetime] = None) -> Any:
        ...


@dataclass(slots=True)
class ScheduleState:
    last_backup_at: Optional[datetime]
    next_backup_at: Optional[datetime]
    paused: bool = False


class Scheduler:
    """Drive :class:`CycleRunner` cycles on a fixed interval from one thread.

    ``pause()`` is observed at the top of the next iteration, so a cycle that
    is already running always finishes. ``resume()`` wakes a paused loop
    immediately. ``stop()`` interrupts both the pause wait and the sleep
    between cycles.
    """

    def __init__(
        self,
        runner: CycleRunner,
        *,
        interval_s: float,
        copy_all_on_startup: bool = True,
        working_dir: Optional[Path] = None,
        logger: Optional[SchedulerLogger] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        if interval_s <= 0:
            raise ValueError(f"interval_s must be positive, got {interval_s}")
        self._runner = runner
        self._interval = timedelta(seconds=float(interval_s))
        self._logger = logger or SchedulerLogger(Path(working_dir or resolve_working_dir()))
        self._clock = clock
        seeded = None if copy_all_on_startup else clock() - self._interval
        self._state = ScheduleState(last_backup_at=seeded, next_backup_at=None, paused=False)
        self._cond = threading.Condition()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()
        self._cycles = 0

    # ------------------------------------------------------------------
    @property
    def interval(self) -> timedelta:
        return self._interval

    @property
    def cycles(self) -> int:
        with self._cond:
            return self._cycles

    @property
    def is_paused(self) -> bool:
        with self._cond:
            return self._state.paused

    @property
    def running(self) -> bool:
        with self._lock:
            return bool(self._thread and self._thread.is_alive())

    def state(self) -> ScheduleState:
        with self._cond:
            return dataclasses.replace(self._state)

    # ------------------------------------------------------------------
    def pause(self) -> None:
        with self._cond:
            if self._state.paused:
                return
            self._state.paused = True
        self._logger.log_state(EVENT_PAUSED)

    def resume(self) -> None:
        with self._cond:
            if not self._state.paused:
                return
            self._state.paused = False
            self._cond.notify_all()
        self._logger.log_state(EVENT_RESUMED)

    def toggle(self) -> bool:
        """Flip between paused and running; returns the new paused flag."""
        if self.is_paused:
            self.resume()
            return False
        self.pause()
        return True

    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._run_loop, name="chronovault-scheduler", daemon=True)
            self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        with self._cond:
            self._cond.notify_all()
        with self._lock:
            thread = self._thread
        if thread:
            thread.join(timeout=timeout)
        with self._lock:
            self._thread = None

    # ------------------------------------------------------------------
    def _wait_while_paused(self) -> bool:
        """Block while paused; False once a stop was requested."""
        with self._cond:
            while self._state.paused and not self._stop_event.is_set():
                self._cond.wait()
        return not self._stop_event.is_set()

    def run_iteration(self) -> None:
        """Run one cycle and record its schedule bookkeeping."""
        started = self._clock()
        with self._cond:
            modified_after = self._state.last_backup_at
        self._logger.log_cycle(EVENT_CYCLE_START, True, started=started.isoformat())
        result = None
        try:
            result = self._runner.run_cycle(modified_after=modified_after, now=started)
        except Exception as exc:
            self._logger.log_error(EVENT_CYCLE_FAILED, "cycle", exc, started=started.isoformat())
        written = int(getattr(result, "files_written", 0) or 0)
        with self._cond:
            if written > 0:
                self._state.last_backup_at = started
            self._state.next_backup_at = started + self._interval
            self._cycles += 1
            next_at = self._state.next_backup_at
        self._logger.log_cycle(EVENT_CYCLE_DONE, result is not None, files=written, next=next_at.isoformat())

    def _run_loop(self) -> None:
        self._logger.log_state(EVENT_STARTED, interval_s=self._interval.total_seconds())
        while not self._stop_event.is_set():
            if not self._wait_while_paused():
                break
            self.run_iteration()
            with self._cond:
                next_at = self._state.next_backup_at
            remaining = (next_at - self._clock()).total_seconds() if next_at else 0.0
            self._stop_event.wait(max(0.0, remaining))
        self._logger.log_state(EVENT_STOPPED, cycles=self.cycles)


__all__ = ["CycleRunner", "ScheduleState", "Scheduler"]
