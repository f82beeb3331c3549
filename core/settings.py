from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from delta.signature import DEFAULT_BLOCK_SIZE, MAX_BLOCK_SIZE, MIN_BLOCK_SIZE

from .paths import get_default_settings_paths, get_logs_dir
from .settings_schema import SETTINGS_VALIDATOR

__all__ = [
    "ConfigInvalid",
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "VaultConfig",
    "build_config",
    "load_config",
    "load_settings",
    "merge_defaults",
    "read_key_values",
]

LOGGER = logging.getLogger("chronovault.settings")

SETTINGS_VERSION = 1


class ConfigInvalid(ValueError):
    """Raised when configuration is missing, unreadable or out of range."""


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "source": None,
    "backupRoot": None,
    "fileTypes": None,
    "maxBackups": 10,
    "secondsBetweenBackups": 3600,
    "backupModifiedOnly": False,
    "copyAllOnStartup": True,
    "allowSubfolders": True,
    "verifyBasis": False,
    "deltaBlockSize": DEFAULT_BLOCK_SIZE,
    "api": {
        "host": "127.0.0.1",
        "port": 8790,
    },
}


class VaultConfig(BaseModel):
    """Validated configuration record handed to the backup core."""

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    source: Path
    backup_root: Path = Field(alias="backupRoot")
    file_types: List[str] = Field(alias="fileTypes", min_length=1)
    max_backups: int = Field(alias="maxBackups", ge=1)
    seconds_between_backups: int = Field(alias="secondsBetweenBackups", ge=1)
    backup_modified_only: bool = Field(False, alias="backupModifiedOnly")
    copy_all_on_startup: bool = Field(True, alias="copyAllOnStartup")
    allow_subfolders: bool = Field(True, alias="allowSubfolders")
    verify_basis: bool = Field(False, alias="verifyBasis")
    delta_block_size: int = Field(
        DEFAULT_BLOCK_SIZE,
        alias="deltaBlockSize",
        ge=MIN_BLOCK_SIZE,
        le=MAX_BLOCK_SIZE,
    )

    @field_validator("source", "backup_root", mode="before")
    @classmethod
    def _expand(cls, value: Any) -> Any:
        if value is None:
            return value
        text = str(value).strip()
        if not text:
            raise ValueError("path must not be empty")
        return Path(text).expanduser()

    @field_validator("file_types", mode="before")
    @classmethod
    def _split_types(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            return [str(item).strip() for item in value if str(item).strip()]
        return value


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            else:
                current = payload.get(key)
                result[key] = value if current is None else current
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def read_key_values(path: Path) -> Dict[str, Any]:
    """Parse a ``key=value`` file; ``#``/``;`` comments and ``[section]`` lines are ignored.

    Dotted keys (``api.port=9000``) land in nested mappings.
    """
    data: Dict[str, Any] = {}
    with open(path, "r", encoding="utf-8-sig") as handle:
        for number, raw in enumerate(handle, start=1):
            line = raw.strip()
            if not line or line[0] in "#;" or (line.startswith("[") and line.endswith("]")):
                continue
            key, sep, value = line.partition("=")
            key = key.strip()
            if not sep or not key:
                raise ConfigInvalid(f"{path}:{number}: expected key=value, got {line!r}")
            target = data
            *parents, leaf = key.split(".")
            for parent in parents:
                target = target.setdefault(parent, {})
            target[leaf] = value.strip()
    return data


def _read_file(path: Path) -> Dict[str, Any]:
    if path.suffix.lower() == ".json":
        try:
            with open(path, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except json.JSONDecodeError as exc:
            raise ConfigInvalid(f"{path}: invalid JSON: {exc}") from exc
        if not isinstance(loaded, dict):
            raise ConfigInvalid(f"{path}: expected a JSON object")
        return loaded
    return read_key_values(path)


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path, source: Optional[Path]) -> None:
    unknown = list(SETTINGS_VALIDATOR.unknown_keys(settings))
    if not unknown:
        return
    LOGGER.warning("Ignoring unknown configuration keys: %s", ", ".join(unknown))
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "ts": time.time(),
        "source": str(source) if source else None,
        "unknown_keys": unknown,
    }
    target = logs_dir / "settings_unknown.json"
    try:
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError as exc:
        LOGGER.warning("Could not write %s: %s", target, exc)


def load_settings(working_dir: Path, path: Optional[Path] = None) -> Dict[str, Any]:
    """Read *path* (or the first default candidate that exists) merged over defaults."""
    candidates = [Path(path)] if path is not None else get_default_settings_paths(working_dir)
    data: Dict[str, Any] = {}
    used: Optional[Path] = None
    for candidate in candidates:
        try:
            data = _read_file(candidate)
        except FileNotFoundError:
            continue
        except OSError as exc:
            raise ConfigInvalid(f"cannot read {candidate}: {exc}") from exc
        used = candidate
        break
    if path is not None and used is None:
        raise ConfigInvalid(f"configuration file {path} not found")
    if used is not None:
        LOGGER.info("Loaded configuration from %s", used)
    merged = merge_defaults(data)
    merged = _apply_migrations(merged)
    _log_unknown_keys(merged, working_dir, used)
    return merged


def build_config(settings: Mapping[str, Any]) -> VaultConfig:
    try:
        return VaultConfig.model_validate(dict(settings))
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}"
            for error in exc.errors()
        )
        raise ConfigInvalid(f"invalid configuration: {problems}") from exc


def load_config(working_dir: Path, path: Optional[Path] = None) -> VaultConfig:
    return build_config(load_settings(working_dir, path))
