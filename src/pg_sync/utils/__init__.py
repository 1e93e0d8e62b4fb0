"""Utility modules for pg-sync."""

from pg_sync.utils.logger import setup_logging, get_logger, log_event
from pg_sync.utils.display import RunDisplay

__all__ = ["setup_logging", "get_logger", "log_event", "RunDisplay"]
