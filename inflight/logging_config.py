# inflight/logging_config.py
"""
Stderr-only logging configuration.

The MCP stdio transport owns stdout, so every handler writes to stderr.
Records are JSON lines by default; `inflight serve --plain` switches to a
human-readable format for interactive use.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

LEVEL_ENV_VAR = "INFLIGHT_LOG_LEVEL"

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"

# Server libraries that install their own handlers
THIRD_PARTY_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "fastmcp")


class JsonFormatter(logging.Formatter):
    """One JSON object per record, timestamped from the record itself."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def resolve_level(level: int | str | None = None) -> int:
    """
    Turn a level name or number into a logging level.

    Falls back to the INFLIGHT_LOG_LEVEL environment variable, then INFO.

    Raises:
        ValueError: If the name is not a logging level
    """
    if level is None:
        level = os.environ.get(LEVEL_ENV_VAR, "INFO")
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level '{level}'")
    return resolved


def configure_logging(level: int | str | None = None, json_format: bool = True) -> None:
    """
    Send all logging to stderr through a single handler.

    MUST run before the MCP server starts writing to stdout. Existing root
    and server-library handlers are replaced.

    Args:
        level: Level name or number (default: INFLIGHT_LOG_LEVEL or INFO)
        json_format: JSON lines if True, plain text otherwise
    """
    resolved = resolve_level(level)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonFormatter() if json_format else logging.Formatter(PLAIN_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(resolved)

    for name in THIRD_PARTY_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers.clear()
        library_logger.addHandler(handler)
        library_logger.setLevel(resolved)
        library_logger.propagate = False
