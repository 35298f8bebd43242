"""
Logging setup for the guild cache service.

``configure_logging(config)`` is called once by each CLI command before the
service is built. Library modules only ever do ``logging.getLogger(__name__)``.

Scan and sweep log calls attach the player and guild they concern through
``extra={"uuid": ..., "guild_id": ...}``. The plain text format ignores them;
with ``json_format = true`` each line becomes one object and the context keys
sit at the top level::

    {"time": "2026-02-24T15:00:00Z", "level": "INFO",
     "logger": "guild_cache.db.store", "message": "Player ... left guild ...",
     "uuid": "069a79f4...", "guild_id": "52e57196..."}
"""

from __future__ import annotations

import json
import logging
import sys
import time
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from guild_cache.config import LoggingConfig

TEXT_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# Keys callers may attach with ``extra=``; anything else is left out of JSON.
CONTEXT_FIELDS = ("uuid", "guild_id", "action", "outcome")

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class _UtcFormatter(logging.Formatter):
    converter = time.gmtime


class _JsonLineFormatter(_UtcFormatter):
    """One JSON object per record: time, level, logger, message, context."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": self.formatTime(record, TIME_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return _JsonLineFormatter()
    return _UtcFormatter(TEXT_FORMAT, datefmt=TIME_FORMAT)


def _open_log_file(log_file: str) -> logging.Handler:
    path = Path(log_file)
    path.parent.mkdir(parents=True, exist_ok=True)
    return logging.FileHandler(path, encoding="utf-8")


def configure_logging(config: "LoggingConfig") -> None:
    """Install stdout (and optionally file) handlers on the root logger.

    Args:
        config: The ``[logging]`` section of ``AppConfig``.
    """
    level = logging.getLevelName(config.level.upper())
    formatter = _make_formatter(config.json_format)

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if config.log_file:
        handlers.append(_open_log_file(config.log_file))
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)

    # The API key travels in a header, but request lines are still noise.
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
