"""
Full Resync Executor - re-baseline a table's schema and data together.

Used whenever the staging table no longer matches the source: any stored
watermark is meaningless for a different shape, so both destination tables
are recreated from the source catalog and refilled with a bulk copy.
"""

from __future__ import annotations

import logging
import time
from typing import Protocol

from pg_sync.config import TableSpec
from pg_sync.connectors.postgres import PostgresConnector
from pg_sync.core.schema import column_definitions
from pg_sync.core.state import Watermark, WatermarkStore
from pg_sync.exceptions import DatabaseError
from pg_sync.utils.logger import log_event

LOG = logging.getLogger(__name__)


class BulkTransfer(Protocol):
    def transfer(self, table: str) -> object: ...


class FullResyncExecutor:
    """
    Drop, recreate and bulk-load one table, then record its watermark.

    Every step must succeed; an exception leaves the table for the next run,
    which will find the staging table missing or mismatched and resync again.
    """

    def __init__(
        self,
        source: PostgresConnector,
        dest: PostgresConnector,
        bulk: BulkTransfer,
        store: WatermarkStore,
        staging_suffix: str = "_stg",
    ) -> None:
        self.source = source
        self.dest = dest
        self.bulk = bulk
        self.store = store
        self.staging_suffix = staging_suffix

    def resync(self, table: TableSpec) -> Watermark:
        """
        Re-baseline ``table``.

        Returns:
            The watermark stored after the copy
        """
        t0 = time.perf_counter()
        staging = f"{table.name}{self.staging_suffix}"

        log_event(LOG, logging.INFO, "Dropping destination tables",
                  table=table.name, phase="resync")
        self.dest.drop_table(table.name)
        self.dest.drop_table(staging)

        columns = self.source.get_columns(table.name)
        if not columns:
            raise DatabaseError(
                f"Source table {self.source.schema}.{table.name} not found or has no columns",
                operation="get_columns",
                table=table.name,
            )

        by_name = {c.name: c for c in columns}
        missing = [
            c for c in (table.replication_key, *table.unique_cols) if c not in by_name
        ]
        if missing:
            raise DatabaseError(
                f"Configured columns {missing} not found in source table {table.name}",
                operation="get_columns",
                table=table.name,
            )

        definitions = column_definitions(columns)
        log_event(LOG, logging.INFO, "Creating destination tables with %d columns",
                  len(definitions), table=table.name, phase="resync")
        self.dest.create_table(table.name, definitions)
        self.dest.create_table(staging, definitions)

        log_event(LOG, logging.INFO, "Copying all rows from source",
                  table=table.name, phase="bulk_transfer")
        self.bulk.transfer(table.name)

        max_key = self.dest.max_value(table.name, table.replication_key)
        if max_key is None:
            key_type = by_name[table.replication_key].data_type
            watermark = self.store.save(
                table.name, Watermark.minimum_for(key_type), advance=False
            )
        else:
            watermark = self.store.save(table.name, max_key)

        log_event(
            LOG, logging.INFO, "Full resync complete in %.2fs, watermark=%s",
            time.perf_counter() - t0, watermark,
            table=table.name, phase="resync", outcome="success",
            watermark=str(watermark),
        )
        return watermark
