"""
Sync Engine - per-table decision logic and run orchestration.

TableSyncEngine runs one table's cycle:

    compatible? -- no  --> full resync
                -- yes --> load watermark --> fetch --> merge --> save watermark

SyncEngine runs the configured tables in order, stops at the first failure,
reports the outcome to the webhook and always releases both connections.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable

from pg_sync.config import Settings, TableSpec
from pg_sync.connectors.bulk_transfer import BulkTransferService
from pg_sync.connectors.notifier import WebhookNotifier
from pg_sync.connectors.postgres import ColumnInfo, PostgresConnector
from pg_sync.core.dedup import Deduplicator
from pg_sync.core.fetcher import IncrementalFetcher
from pg_sync.core.integrity import IntegrityChecker, VerificationResult
from pg_sync.core.resync import BulkTransfer, FullResyncExecutor
from pg_sync.core.schema import SchemaComparator, SchemaShape
from pg_sync.core.state import Watermark, WatermarkStore
from pg_sync.exceptions import DatabaseError, TableSyncError, WatermarkError
from pg_sync.utils.logger import log_event

LOG = logging.getLogger(__name__)

FULL_RESYNC = "full_resync"
INCREMENTAL = "incremental"


@dataclass
class TableResult:
    """Outcome of one table's sync cycle."""

    table: str
    mode: str
    reason: str = ""
    rows_fetched: int = 0
    pages: int = 0
    rows_deleted: int = 0
    rows_inserted: int = 0
    watermark_before: str | None = None
    watermark_after: str | None = None
    duration_seconds: float = 0.0
    verification: VerificationResult | None = None


@dataclass
class SyncStats:
    """Statistics for a sync run."""

    tables_total: int = 0
    tables_processed: int = 0
    tables_failed: int = 0
    full_resyncs: int = 0
    rows_fetched: int = 0
    start_time: float = 0.0
    end_time: float = 0.0
    current_table: str = ""
    failed_table: str | None = None
    notified: bool = False
    errors: list[str] = field(default_factory=list)
    results: list[TableResult] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors and self.tables_processed == self.tables_total

    @property
    def duration_seconds(self) -> float:
        """Duration in seconds."""
        if self.end_time and self.start_time:
            return self.end_time - self.start_time
        if self.start_time:
            return time.time() - self.start_time
        return 0.0

    def record(self, result: TableResult) -> None:
        self.results.append(result)
        self.tables_processed += 1
        self.rows_fetched += result.rows_fetched
        if result.mode == FULL_RESYNC:
            self.full_resyncs += 1


# Progress callback type
ProgressCallback = Callable[[SyncStats], None]


class TableSyncEngine:
    """
    One table's sync cycle. Table-specific behavior comes only from TableSpec.

    Example:
        engine = TableSyncEngine(src, dst, WatermarkStore("sync-state"), bulk)
        result = engine.sync_table(TableSpec(name="orders",
                                             replication_key="updated_at",
                                             unique_cols=["id"]))
    """

    def __init__(
        self,
        source: PostgresConnector,
        dest: PostgresConnector,
        store: WatermarkStore,
        bulk: BulkTransfer,
        page_size: int = 1000,
        staging_suffix: str = "_stg",
        transactional_merge: bool = True,
    ) -> None:
        self.source = source
        self.dest = dest
        self.store = store
        self.staging_suffix = staging_suffix
        self.comparator = SchemaComparator()
        self.resyncer = FullResyncExecutor(source, dest, bulk, store, staging_suffix)
        self.fetcher = IncrementalFetcher(source, dest, page_size, staging_suffix)
        self.deduplicator = Deduplicator(dest, staging_suffix, transactional_merge)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        source: PostgresConnector,
        dest: PostgresConnector,
        bulk: BulkTransfer | None = None,
        store: WatermarkStore | None = None,
    ) -> "TableSyncEngine":
        return cls(
            source=source,
            dest=dest,
            store=store or WatermarkStore(settings.sync.state_dir),
            bulk=bulk or BulkTransferService.from_settings(settings),
            page_size=settings.sync.page_size,
            staging_suffix=settings.sync.staging_suffix,
            transactional_merge=settings.sync.transactional_merge,
        )

    def check(self, table: TableSpec) -> list[str]:
        """
        Compare the source table with its staging table.

        Returns:
            Reasons for a full resync; empty when incremental sync is safe
        """
        return self._compare(table)[1]

    def _compare(self, table: TableSpec) -> tuple[list[ColumnInfo], list[str]]:
        source_columns = self.source.get_columns(table.name)
        if not source_columns:
            raise DatabaseError(
                f"Source table {self.source.schema}.{table.name} not found",
                operation="get_columns",
                table=table.name,
            )
        staging_columns = self.dest.get_columns(f"{table.name}{self.staging_suffix}")

        source_shape = SchemaShape.from_columns(source_columns)
        staging_shape = SchemaShape.from_columns(staging_columns) if staging_columns else None
        return source_columns, self.comparator.differences(source_shape, staging_shape)

    def sync_table(self, table: TableSpec) -> TableResult:
        """
        Run one cycle for ``table``.

        Raises:
            TableSyncError: wrapping whatever failed, with the phase it failed in
        """
        t0 = time.perf_counter()
        phase = "compare"
        try:
            source_columns, differences = self._compare(table)
            if differences:
                log_event(LOG, logging.INFO, "Schema changed, full resync: %s",
                          "; ".join(differences), table=table.name, phase=phase,
                          outcome="incompatible")
                phase = "resync"
                return self._resync(table, "; ".join(differences), t0)

            phase = "load_watermark"
            watermark = self.store.load(table.name)
            if watermark is None:
                log_event(LOG, logging.WARNING, "No stored watermark, full resync",
                          table=table.name, phase=phase, outcome="missing")
                phase = "resync"
                return self._resync(table, "no stored watermark", t0)
            watermark = watermark.aligned_to(
                self._key_type(table, source_columns)
            )

            result = TableResult(
                table=table.name,
                mode=INCREMENTAL,
                watermark_before=str(watermark),
            )

            phase = "fetch"
            fetched = self.fetcher.fetch(table, watermark)
            result.rows_fetched = fetched.rows
            result.pages = fetched.pages

            phase = "dedup"
            merged = self.deduplicator.merge(table)
            result.rows_deleted = merged.deleted
            result.rows_inserted = merged.inserted

            if fetched.progressed:
                phase = "save_watermark"
                candidate = Watermark.of(fetched.last_key).advanced()
                if candidate.precedes(watermark):
                    raise WatermarkError(
                        f"New watermark {candidate} is below stored {watermark}"
                    )
                saved = self.store.save(table.name, fetched.last_key)
                result.watermark_after = str(saved)
            else:
                result.watermark_after = result.watermark_before

            result.duration_seconds = time.perf_counter() - t0
            log_event(
                LOG, logging.INFO, "Incremental sync done: %d rows, watermark %s -> %s",
                result.rows_fetched, result.watermark_before, result.watermark_after,
                table=table.name, phase="done", outcome="success",
                mode=INCREMENTAL, rows=result.rows_fetched,
            )
            return result

        except Exception as e:
            log_event(LOG, logging.ERROR, "Sync failed: %s", e,
                      table=table.name, phase=phase, outcome="failure", exc_info=True)
            raise TableSyncError(table.name, phase, e) from e

    @staticmethod
    def _key_type(table: TableSpec, columns: list[ColumnInfo]) -> str:
        for column in columns:
            if column.name == table.replication_key:
                return column.data_type
        raise DatabaseError(
            f"Replication key {table.replication_key} not found in source table",
            operation="get_columns",
            table=table.name,
        )

    def _resync(self, table: TableSpec, reason: str, t0: float) -> TableResult:
        watermark = self.resyncer.resync(table)
        return TableResult(
            table=table.name,
            mode=FULL_RESYNC,
            reason=reason,
            watermark_after=str(watermark),
            duration_seconds=time.perf_counter() - t0,
        )


class SyncEngine:
    """
    Run orchestration: every configured table, in order, one at a time.

    Example:
        engine = SyncEngine(settings)
        stats = engine.run()
        if not stats.success:
            ...
    """

    def __init__(
        self,
        settings: Settings,
        source: PostgresConnector | None = None,
        dest: PostgresConnector | None = None,
        bulk: BulkTransfer | None = None,
        notifier: WebhookNotifier | None = None,
        store: WatermarkStore | None = None,
    ) -> None:
        """
        Initialize sync engine.

        Collaborators default to the ones described by ``settings``.
        """
        self.settings = settings
        self.source = source or PostgresConnector(settings.source, readonly=True, name="source")
        self.dest = dest or PostgresConnector(settings.destination, name="destination")
        self.bulk = bulk or BulkTransferService.from_settings(settings)
        self.notifier = notifier or WebhookNotifier.from_settings(settings)
        self.store = store or WatermarkStore(settings.sync.state_dir)
        self.integrity = IntegrityChecker()

    def table_engine(self) -> TableSyncEngine:
        return TableSyncEngine.from_settings(
            self.settings, self.source, self.dest, bulk=self.bulk, store=self.store
        )

    def run(
        self,
        tables: list[TableSpec] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> SyncStats:
        """
        Sync every table, stopping at the first failure.

        Args:
            tables: Tables to sync (default: the configured list)
            on_progress: Optional progress callback

        Returns:
            SyncStats; ``success`` tells whether every table completed
        """
        stats = SyncStats(start_time=time.time())
        pipeline = self.settings.notify.pipeline_name

        try:
            if tables is None:
                tables = self.settings.load_tables()
            stats.tables_total = len(tables)
            LOG.info("Run starting, %d tables to sync", len(tables))

            self.source.connect()
            self.dest.connect()
            table_engine = self.table_engine()

            for index, table in enumerate(tables):
                stats.current_table = table.name
                if on_progress:
                    on_progress(stats)

                log_event(LOG, logging.INFO, "Starting replication",
                          table=table.name, phase="start")
                result = table_engine.sync_table(table)

                if self.settings.sync.verify_after_sync:
                    result.verification = self._verify(table)

                stats.record(result)
                log_event(LOG, logging.INFO, "Replication done (%s), %d tables remaining",
                          result.mode, len(tables) - (index + 1),
                          table=table.name, phase="done", outcome="success")
                if on_progress:
                    on_progress(stats)

        except Exception as e:
            stats.errors.append(str(e))
            if isinstance(e, TableSyncError):
                stats.tables_failed += 1
                stats.failed_table = e.table
            LOG.error("Run failed: %s", e, exc_info=not isinstance(e, TableSyncError))

        finally:
            self.source.close()
            self.dest.close()
            stats.current_table = ""
            stats.end_time = time.time()

        if stats.success:
            message = f"Pipeline {pipeline} succeeded"
        elif stats.failed_table:
            message = f"Pipeline {pipeline} failed on table {stats.failed_table}"
        else:
            message = f"Pipeline {pipeline} failed"

        stats.notified = self.notifier.notify(message)
        LOG.info("Run completed in %.1fs: %s", stats.duration_seconds, message)
        if on_progress:
            on_progress(stats)
        return stats

    def _verify(self, table: TableSpec) -> VerificationResult:
        result = self.integrity.verify_table(self.source, self.dest, table)
        level = logging.INFO if result.ok else logging.WARNING
        log_event(LOG, level, "Verification: %s", result.message,
                  table=table.name, phase="verify",
                  outcome="ok" if result.ok else "mismatch")
        return result
