"""Centralized logging configuration for taskbots."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path

from taskbots.core.config import get_settings

_configured = False


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, component, message, data.

    Structured context is passed through ``extra={"data": {...}}``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "level": record.levelname.lower(),
            "component": record.name,
            "message": record.getMessage(),
        }
        data = getattr(record, "data", None)
        if data is not None:
            entry["data"] = data
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def _make_formatter(kind: str) -> logging.Formatter:
    if kind.lower() == "json":
        return JsonFormatter()
    return logging.Formatter(
        "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def setup_logging() -> logging.Logger:
    """Configure root logger with console + rotating file handlers. Idempotent."""
    global _configured
    if _configured:
        return logging.getLogger("taskbots")

    settings = get_settings()
    logger = logging.getLogger("taskbots")
    logger.setLevel(getattr(logging, settings.log_level.upper(), logging.INFO))
    logger.propagate = False

    fmt = _make_formatter(settings.log_format)

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(fmt)
    logger.addHandler(console)

    # File handler (rotating, 5 MB × 3 backups)
    if settings.log_file:
        log_path = Path(settings.log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(fmt)
        logger.addHandler(file_handler)

    _configured = True
    logger.info(
        "Logging initialised (level=%s, file=%s, format=%s)",
        settings.log_level, settings.log_file, settings.log_format,
    )
    return logger


def get_logger(name: str = "taskbots") -> logging.Logger:
    """Get a child logger. Always call setup_logging() at startup first."""
    if name != "taskbots" and not name.startswith("taskbots."):
        name = f"taskbots.{name}"
    return logging.getLogger(name)
