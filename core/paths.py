from __future__ import annotations

import os
from pathlib import Path
from typing import Optional

__all__ = [
    "CONFIG_INI_NAME",
    "SETTINGS_JSON_NAME",
    "ensure_working_dir_structure",
    "get_default_settings_paths",
    "get_logs_dir",
    "resolve_working_dir",
]

CONFIG_INI_NAME = "config.ini"
SETTINGS_JSON_NAME = "settings.json"


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        test_file.unlink(missing_ok=True)
        return False


def _local_appdata_dir() -> Optional[Path]:
    local_appdata = os.environ.get("LOCALAPPDATA")
    if not local_appdata:
        return None
    return _expand_path(local_appdata) / "ChronoVault"


def resolve_working_dir() -> Path:
    """Resolve the ChronoVault working directory, creating it if required.

    Search order: ``CHRONOVAULT_HOME``, ``%LOCALAPPDATA%/ChronoVault`` (Windows)
    and finally ``~/.chronovault``. Logs and settings live here, never inside
    the backup root.
    """

    env_home = os.environ.get("CHRONOVAULT_HOME")
    if env_home:
        env_path = _expand_path(env_home)
        if _ensure_writable_dir(env_path):
            return env_path

    local = _local_appdata_dir()
    if local is not None and _ensure_writable_dir(local):
        return local

    fallback = Path.home() / ".chronovault"
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def ensure_working_dir_structure(working_dir: Path) -> None:
    for directory in (working_dir, get_logs_dir(working_dir)):
        directory.mkdir(parents=True, exist_ok=True)


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for configuration files.

    ``config.ini`` in the current directory wins, matching how the console
    tool is usually launched next to its configuration.
    """

    cwd = Path.cwd()
    return [
        cwd / CONFIG_INI_NAME,
        working_dir / CONFIG_INI_NAME,
        working_dir / SETTINGS_JSON_NAME,
    ]
