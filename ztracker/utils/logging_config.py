"""
Structured JSON logging configuration for zTracker.

All log records under the ``ztracker`` namespace are emitted as
single-line JSON objects to stderr (WARNING and above) and, when
configured, to a log file.

Usage::

    from ztracker.utils.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("part merged", extra={"part": "topics"})
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Optional

ROOT_LOGGER_NAME = "ztracker"


# ---------------------------------------------------------------------------
# JSON formatter
# ---------------------------------------------------------------------------

class JSONFormatter(logging.Formatter):
    """Emits each record as a single-line JSON object."""

    EXTRA_KEYS = ("message_id", "part", "event_type", "metadata", "duration_ms")

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for key in self.EXTRA_KEYS:
            val = getattr(record, key, None)
            if val is not None:
                entry[key] = val

        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


# ---------------------------------------------------------------------------
# Setup
# ---------------------------------------------------------------------------

_CONFIGURED = False


def setup_logging(log_file: Optional[str] = None, level: int | str = logging.INFO) -> None:
    """Configure the root ``ztracker`` logger with JSON handlers.

    Safe to call multiple times; only the first call has effect.
    """
    global _CONFIGURED
    if _CONFIGURED:
        return
    _CONFIGURED = True

    root = logging.getLogger(ROOT_LOGGER_NAME)
    root.setLevel(level)

    formatter = JSONFormatter()

    if log_file:
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setFormatter(formatter)
        root.addHandler(fh)

    # Stderr handler: host consoles only need warnings and errors.
    sh = logging.StreamHandler(sys.stderr)
    sh.setFormatter(formatter)
    sh.setLevel(logging.WARNING)
    root.addHandler(sh)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Return a child logger under the ``ztracker`` namespace.

    Automatically calls :func:`setup_logging` on first use, using the
    log file and level from :func:`ztracker.config.get_settings`.
    """
    if not _CONFIGURED:
        from ztracker.config import get_settings

        settings = get_settings()
        setup_logging(settings.log_file, settings.log_level.upper())
    if name.startswith(ROOT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
