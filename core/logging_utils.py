from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from .paths import get_logs_dir, resolve_working_dir

APP_LOG_NAME = "chronovault.log.jsonl"

# LogRecord attributes that are plumbing rather than caller-supplied context.
_RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}


class JsonLogFormatter(logging.Formatter):
    """One JSON object per record; ``extra=`` fields are carried through."""

    def format(self, record: logging.LogRecord) -> str:  # noqa: D401
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key in _RESERVED or key.startswith("_") or key in payload:
                continue
            payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def configure_json_logging(
    name: str = "chronovault",
    working_dir: Optional[Path] = None,
    *,
    level: int = logging.INFO,
) -> logging.Logger:
    """Send *name* and its children to ``<working_dir>/logs/chronovault.log.jsonl``.

    Calling it again for the same file does not add a second handler.
    """
    base = Path(working_dir) if working_dir is not None else resolve_working_dir()
    log_path = get_logs_dir(base) / APP_LOG_NAME
    log_path.parent.mkdir(parents=True, exist_ok=True)
    logger = logging.getLogger(name)
    logger.setLevel(level)
    existing = [
        handler
        for handler in logger.handlers
        if isinstance(handler, logging.FileHandler) and getattr(handler, "baseFilename", None) == str(log_path)
    ]
    if not existing:
        handler = logging.FileHandler(log_path, encoding="utf-8")
        handler.setFormatter(JsonLogFormatter())
        logger.addHandler(handler)
    logger.propagate = False
    return logger


__all__ = ["APP_LOG_NAME", "JsonLogFormatter", "configure_json_logging"]
