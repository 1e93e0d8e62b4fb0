"""
Deduplicator - merge staging into the final table, last write wins.

For every staging row, any final row with the same values on *all* unique
columns is deleted; then all staging rows are inserted and staging is
emptied. Rows of the final table that staging does not touch are left alone.

Rows duplicated inside staging itself (the source returning one key twice
during a fetch) are not collapsed and would both land in the final table.
"""

from __future__ import annotations

import logging
import time
from contextlib import nullcontext
from dataclasses import dataclass

from pg_sync.config import TableSpec
from pg_sync.connectors.postgres import PostgresConnector
from pg_sync.utils.logger import log_event

LOG = logging.getLogger(__name__)


@dataclass
class MergeResult:
    """Row counts of one merge."""

    deleted: int = 0
    inserted: int = 0
    duration_seconds: float = 0.0


class Deduplicator:
    """
    Staging-to-final merge keyed by a table's unique columns.

    With ``transactional=True`` (the default) delete, insert and truncate
    commit together, so a crash cannot leave the final table without the
    rows it just deleted.
    """

    def __init__(
        self,
        dest: PostgresConnector,
        staging_suffix: str = "_stg",
        transactional: bool = True,
    ) -> None:
        self.dest = dest
        self.staging_suffix = staging_suffix
        self.transactional = transactional

    def merge(self, table: TableSpec) -> MergeResult:
        """Merge and clear the staging table of ``table``. Safe on empty staging."""
        t0 = time.perf_counter()
        staging = f"{table.name}{self.staging_suffix}"
        result = MergeResult()

        scope = self.dest.transaction() if self.transactional else nullcontext()
        with scope:
            result.deleted = self.dest.delete_matching(
                table.name, staging, table.unique_cols
            )
            result.inserted = self.dest.insert_from(table.name, staging)
            self.dest.truncate(staging)

        result.duration_seconds = time.perf_counter() - t0
        log_event(
            LOG, logging.INFO,
            "Merged staging: %d stale rows replaced, %d rows inserted (%.2fs)",
            result.deleted, result.inserted, result.duration_seconds,
            table=table.name, phase="dedup", outcome="success",
            deleted=result.deleted, inserted=result.inserted,
        )
        return result
