"""Core sync engine components for pg-sync."""

from pg_sync.core.engine import SyncEngine, TableSyncEngine
from pg_sync.core.dedup import Deduplicator
from pg_sync.core.fetcher import IncrementalFetcher
from pg_sync.core.integrity import IntegrityChecker
from pg_sync.core.resync import FullResyncExecutor
from pg_sync.core.schema import SchemaComparator
from pg_sync.core.state import Watermark, WatermarkStore

__all__ = [
    "SyncEngine",
    "TableSyncEngine",
    "Deduplicator",
    "IncrementalFetcher",
    "IntegrityChecker",
    "FullResyncExecutor",
    "SchemaComparator",
    "Watermark",
    "WatermarkStore",
]
