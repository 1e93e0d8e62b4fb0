"""
Logging setup for pg-sync.

Provides structured logging with:
- Rich colored console output
- File logging with rotation
- JSON format option
- Table/phase/outcome fields on sync events
"""

from __future__ import annotations

import copy
import json
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.logging import RichHandler


# Global console for rich output
console = Console(stderr=True)

# Package logger
logger = logging.getLogger("pg_sync")

# Attributes that log_event() attaches to records
EVENT_FIELDS = ("table", "phase", "outcome")


def setup_logging(
    level: str = "INFO",
    log_file: Path | str | None = None,
    format_style: str = "rich",
    max_file_size_mb: int = 10,
    backup_count: int = 3,
) -> None:
    """
    Configure logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        format_style: "rich", "json", or "simple"
        max_file_size_mb: Max log file size before rotation
        backup_count: Number of backup files to keep
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Clear existing handlers
    logger.handlers.clear()
    logger.setLevel(log_level)

    if format_style == "rich":
        handler: logging.Handler = RichHandler(
            console=console,
            rich_tracebacks=True,
            show_time=True,
            show_path=False,
        )
        handler.setFormatter(EventFormatter("%(message)s"))
    elif format_style == "json":
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
    else:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            EventFormatter(
                "%(asctime)s | %(levelname)-8s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    handler.setLevel(log_level)
    logger.addHandler(handler)

    if log_file:
        file_path = Path(log_file)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(
            EventFormatter(
                "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)


class EventFormatter(logging.Formatter):
    """Plain formatter that prefixes event messages with ``[table/phase]``."""

    def format(self, record: logging.LogRecord) -> str:
        table = getattr(record, "table", None)
        if table is None:
            return super().format(record)
        phase = getattr(record, "phase", None)
        prefix = f"[{table}/{phase}]" if phase else f"[{table}]"
        # Other handlers share the record, prefix a copy
        record = copy.copy(record)
        record.msg = f"{prefix} {record.getMessage()}"
        record.args = None
        return super().format(record)


class JsonFormatter(logging.Formatter):
    """JSON log formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key in EVENT_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                log_data[key] = value

        fields = getattr(record, "fields", None)
        if fields:
            log_data.update(fields)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def get_logger(name: str = "pg_sync") -> logging.Logger:
    """Get a logger instance."""
    return logging.getLogger(name)


def log_event(
    log: logging.Logger,
    level: int,
    msg: str,
    *args: Any,
    table: str,
    phase: str,
    outcome: str | None = None,
    exc_info: bool = False,
    **fields: Any,
) -> None:
    """
    Log a sync event carrying table, phase and outcome.

    Extra keyword arguments end up as additional keys in JSON output.
    """
    log.log(
        level,
        msg,
        *args,
        exc_info=exc_info,
        extra={
            "table": table,
            "phase": phase,
            "outcome": outcome,
            "fields": fields,
        },
    )
