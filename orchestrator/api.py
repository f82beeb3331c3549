"""Operator surface: the running vault plus its HTTP control router."""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional

from fastapi import APIRouter, FastAPI, HTTPException
from pydantic import BaseModel, Field

from backup import BackupService, BackupSlot, InvalidSelection, RestoreBusy, SlotNotFound
from backup.logs import BackupLogger
from core.paths import resolve_working_dir
from core.settings import VaultConfig

from .logs import SchedulerLogger
from .scheduler import ScheduleState, Scheduler

API_VERSION = "1.0.0"


class StatusResponse(BaseModel):
    paused: bool
    running: bool
    busy: bool
    cycles: int
    last_backup_at: Optional[datetime] = None
    next_backup_at: Optional[datetime] = None
    current_index: Optional[int] = None
    max_backups: int


class SlotModel(BaseModel):
    position: int
    index: int
    name: str
    created_at: Optional[datetime] = None


class SlotsResponse(BaseModel):
    slots: List[SlotModel] = Field(default_factory=list)


class RestoreRequest(BaseModel):
    selection: Optional[int] = None
    slot: Optional[str] = None


class RestoreFailureModel(BaseModel):
    path: str
    kind: str
    message: str


class RestoreResponse(BaseModel):
    slot: str
    restored: List[str] = Field(default_factory=list)
    failures: List[RestoreFailureModel] = Field(default_factory=list)


def _slot_models(slots: List[BackupSlot]) -> List[SlotModel]:
    return [
        SlotModel(position=position, index=slot.index, name=slot.name, created_at=slot.created_at)
        for position, slot in enumerate(slots, start=1)
    ]


class VaultService:
    """Facade tying the backup service to its scheduler."""

    def __init__(self, config: VaultConfig, *, working_dir: Optional[Path] = None) -> None:
        self._config = config
        self._working_dir = Path(working_dir or resolve_working_dir())
        self._backup = BackupService(config, working_dir=self._working_dir, logger=BackupLogger(self._working_dir))
        self._scheduler = Scheduler(
            self._backup,
            interval_s=config.seconds_between_backups,
            copy_all_on_startup=config.copy_all_on_startup,
            logger=SchedulerLogger(self._working_dir),
        )

    @property
    def config(self) -> VaultConfig:
        return self._config

    @property
    def backup(self) -> BackupService:
        return self._backup

    @property
    def scheduler(self) -> Scheduler:
        return self._scheduler

    def start(self) -> None:
        self._scheduler.start()

    def stop(self) -> None:
        self._scheduler.stop()

    def state(self) -> ScheduleState:
        return self._scheduler.state()

    # ------------------------------------------------------------------
    def router(self) -> APIRouter:
        router = APIRouter(prefix="/v1/vault", tags=["vault"])

        @router.get("/status", response_model=StatusResponse)
        def status() -> StatusResponse:
            state = self._scheduler.state()
            ring = self._backup.engine.ring
            return StatusResponse(
                paused=state.paused,
                running=self._scheduler.running,
                busy=self._backup.busy,
                cycles=self._scheduler.cycles,
                last_backup_at=state.last_backup_at,
                next_backup_at=state.next_backup_at,
                current_index=ring.current() if ring.resolved else None,
                max_backups=ring.max_backups,
            )

        @router.post("/pause", response_model=StatusResponse)
        def pause() -> StatusResponse:
            self._scheduler.pause()
            return status()

        @router.post("/resume", response_model=StatusResponse)
        def resume() -> StatusResponse:
            self._scheduler.resume()
            return status()

        @router.get("/slots", response_model=SlotsResponse)
        def slots() -> SlotsResponse:
            return SlotsResponse(slots=_slot_models(self._backup.list_slots()))

        @router.post("/restore", response_model=RestoreResponse)
        def restore(request: RestoreRequest) -> RestoreResponse:
            if (request.selection is None) == (request.slot is None):
                raise HTTPException(status_code=400, detail="Provide exactly one of selection or slot")
            try:
                if request.slot is not None:
                    target = self._backup.find_slot(request.slot)
                else:
                    target = self._backup.select_slot(int(request.selection))
                result = self._backup.restore(target)
            except InvalidSelection as exc:
                raise HTTPException(status_code=400, detail=str(exc)) from exc
            except SlotNotFound as exc:
                raise HTTPException(status_code=404, detail=str(exc)) from exc
            except RestoreBusy as exc:
                raise HTTPException(status_code=409, detail=str(exc)) from exc
            return RestoreResponse(
                slot=target.name,
                restored=list(result.restored),
                failures=[
                    RestoreFailureModel(path=item.relative_path, kind=item.kind, message=item.message)
                    for item in result.failures
                ],
            )

        return router


def create_app(service: VaultService) -> FastAPI:
    """Create a FastAPI application serving the vault router."""

    app = FastAPI(
        title="ChronoVault Operator API",
        version=API_VERSION,
        docs_url="/docs",
        openapi_url="/openapi.json",
    )
    app.include_router(service.router())
    return app


__all__ = [
    "API_VERSION",
    "RestoreRequest",
    "RestoreResponse",
    "SlotModel",
    "SlotsResponse",
    "StatusResponse",
    "VaultService",
    "create_app",
]
