"""pg-sync - incremental, deduplicating PostgreSQL to PostgreSQL table replication."""

__version__ = "1.0.0"
__author__ = "pg-sync Contributors"

from pg_sync.config import Settings, TableSpec

__all__ = ["Settings", "TableSpec", "__version__"]
