"""Logging setup: JSON lines in production, readable text during development."""

from __future__ import annotations

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Optional

PRODUCTION_ENVS = ("production", "prod", "staging")

# Attributes passed through ``extra=`` that the JSON output keeps
CONTEXT_FIELDS = ("session_key", "role", "remote_address")

PLAIN_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Libraries whose INFO/DEBUG output is per-frame noise
QUIET_LOGGERS = ("websockets", "asyncio")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, timestamped in UTC from the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update({name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)})
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def is_production() -> bool:
    return os.environ.get("MUSIC_CONTROL_ENV", "development").lower() in PRODUCTION_ENVS


def configure_logging(level: str = "INFO", json_logs: Optional[bool] = None) -> None:
    """Replace the root handlers with a single stdout handler.

    ``json_logs`` defaults to ``is_production()``.
    """
    if json_logs is None:
        json_logs = is_production()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        JSONFormatter() if json_logs else logging.Formatter(PLAIN_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
