"""Scheduling loop and operator surface for ChronoVault."""

from .api import VaultService, create_app
from .scheduler import ScheduleState, Scheduler

__all__ = [
    "ScheduleState",
    "Scheduler",
    "VaultService",
    "create_app",
]
