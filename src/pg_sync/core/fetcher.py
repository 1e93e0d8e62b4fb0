"""
Incremental Fetcher - land rows changed since the watermark in staging.

Pages through ``key >= watermark`` ordered by key with LIMIT/OFFSET and
appends each page to the staging table. Offset paging over a table that is
being written to can skip a row when rows ahead of the current offset are
deleted or re-keyed mid-scan; duplicates from the opposite case are absorbed
by the merge. The skip case is a known limitation of this strategy.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable

from pg_sync.config import TableSpec
from pg_sync.connectors.postgres import PostgresConnector, RowBatch
from pg_sync.core.state import Watermark
from pg_sync.utils.logger import log_event

LOG = logging.getLogger(__name__)

# Called after each landed page
PageCallback = Callable[[RowBatch], None]


@dataclass
class FetchResult:
    """Outcome of one incremental fetch."""

    rows: int = 0
    pages: int = 0
    last_key: Any = None
    duration_seconds: float = 0.0

    @property
    def progressed(self) -> bool:
        return self.rows > 0


class IncrementalFetcher:
    """
    Copies new and changed source rows into the destination staging table.

    Example:
        fetcher = IncrementalFetcher(src, dst, page_size=1000)
        result = fetcher.fetch(table, watermark)
        if result.progressed:
            store.save(table.name, result.last_key)
    """

    def __init__(
        self,
        source: PostgresConnector,
        dest: PostgresConnector,
        page_size: int = 1000,
        staging_suffix: str = "_stg",
    ) -> None:
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self.source = source
        self.dest = dest
        self.page_size = page_size
        self.staging_suffix = staging_suffix

    def fetch(
        self,
        table: TableSpec,
        watermark: Watermark,
        on_page: PageCallback | None = None,
    ) -> FetchResult:
        """
        Load every source row with ``replication_key >= watermark`` into staging.

        Staging is cleared first, in case an earlier run stopped between
        landing rows and merging them.

        Returns:
            FetchResult; ``last_key`` is the key of the final row fetched,
            or None when nothing was found
        """
        t0 = time.perf_counter()
        staging = f"{table.name}{self.staging_suffix}"
        result = FetchResult()

        self.dest.truncate(staging)

        log_event(LOG, logging.INFO, "Fetching rows with %s >= %s",
                  table.replication_key, watermark,
                  table=table.name, phase="fetch")

        offset = 0
        while True:
            batch = self.source.fetch_page(
                table.name,
                table.replication_key,
                watermark.value,
                limit=self.page_size,
                offset=offset,
            )
            if not batch.rows:
                break

            self.dest.insert_rows(staging, batch.columns, batch.rows)

            result.rows += len(batch)
            result.pages += 1
            result.last_key = batch.value(batch.last_row, table.replication_key)
            offset += self.page_size

            log_event(LOG, logging.DEBUG, "Staged page %d (%d rows)",
                      result.pages, len(batch), table=table.name, phase="fetch")
            if on_page:
                on_page(batch)

        result.duration_seconds = time.perf_counter() - t0
        log_event(
            LOG, logging.INFO, "Staged %d rows in %d pages (%.2fs)",
            result.rows, result.pages, result.duration_seconds,
            table=table.name, phase="fetch",
            outcome="progress" if result.progressed else "no_progress",
            rows=result.rows,
        )
        return result
