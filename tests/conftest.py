"""Shared fixtures: an in-memory stand-in for PostgresConnector."""

from __future__ import annotations

import copy
import re
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Generator, Sequence

import pytest

from pg_sync.config import Settings, TableSpec
from pg_sync.connectors.postgres import ColumnDefinition, ColumnInfo, RowBatch
from pg_sync.core.state import WatermarkStore


@dataclass
class FakeTable:
    columns: list[ColumnInfo]
    rows: list[dict[str, Any]] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [c.name for c in self.columns]


def _info_from_definition(col: ColumnDefinition) -> ColumnInfo:
    """What information_schema would report for a created column."""
    if col.type_sql.endswith("[]"):
        return ColumnInfo(col.name, "ARRAY", "_" + col.type_sql[:-2], col.nullable)
    base = re.sub(r"\(.*\)$", "", col.type_sql)
    return ColumnInfo(col.name, base, base, col.nullable)


class FakeConnector:
    """Implements the PostgresConnector primitives over Python lists."""

    def __init__(self, name: str = "fake", schema: str = "public") -> None:
        self.name = name
        self.schema = schema
        self.tables: dict[str, FakeTable] = {}
        self.page_requests = 0
        self.transactions = 0
        self.connected = False
        self.closed = False
        self.fail_on: dict[str, Exception] = {}
        self._in_transaction = False

    # --- helpers for tests -------------------------------------------------

    def add_table(
        self, name: str, columns: list[ColumnInfo], rows: list[dict[str, Any]] | None = None
    ) -> FakeTable:
        self.tables[name] = FakeTable(list(columns), [dict(r) for r in rows or []])
        return self.tables[name]

    def rows(self, table: str) -> list[dict[str, Any]]:
        return self.tables[table].rows

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise self.fail_on[operation]

    # --- connector interface -----------------------------------------------

    def connect(self) -> None:
        self._maybe_fail("connect")
        self.connected = True

    def close(self) -> None:
        self.closed = True

    def __enter__(self) -> "FakeConnector":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        if self._in_transaction:
            yield
            return
        snapshot = copy.deepcopy(self.tables)
        self._in_transaction = True
        self.transactions += 1
        try:
            yield
        except Exception:
            self.tables = snapshot
            raise
        finally:
            self._in_transaction = False

    def table_exists(self, table: str) -> bool:
        return table in self.tables

    def get_columns(self, table: str) -> list[ColumnInfo]:
        self._maybe_fail("get_columns")
        if table not in self.tables:
            return []
        return list(self.tables[table].columns)

    def get_row_count(self, table: str) -> int:
        return len(self.tables[table].rows)

    def max_value(self, table: str, column: str) -> Any:
        values = [r[column] for r in self.tables[table].rows if r[column] is not None]
        return max(values) if values else None

    def count_duplicates(self, table: str, columns: Sequence[str]) -> int:
        seen: dict[tuple, int] = {}
        for row in self.tables[table].rows:
            key = tuple(row[c] for c in columns)
            seen[key] = seen.get(key, 0) + 1
        return sum(1 for n in seen.values() if n > 1)

    def drop_table(self, table: str) -> None:
        self._maybe_fail("drop_table")
        self.tables.pop(table, None)

    def create_table(self, table: str, columns: Sequence[ColumnDefinition]) -> None:
        self._maybe_fail("create_table")
        if table in self.tables:
            raise RuntimeError(f"relation {table} already exists")
        self.tables[table] = FakeTable([_info_from_definition(c) for c in columns])

    def truncate(self, table: str) -> None:
        self._maybe_fail("truncate")
        self.tables[table].rows.clear()

    def fetch_page(
        self, table: str, key: str, lower_bound: Any, limit: int, offset: int = 0
    ) -> RowBatch:
        self._maybe_fail("fetch_page")
        self.page_requests += 1
        t = self.tables[table]
        matching = sorted(
            (r for r in t.rows if r[key] >= lower_bound), key=lambda r: r[key]
        )
        page = matching[offset:offset + limit]
        columns = t.column_names
        return RowBatch(
            table=table,
            columns=columns,
            rows=[tuple(r[c] for c in columns) for r in page],
            offset=offset,
        )

    def insert_rows(
        self, table: str, columns: Sequence[str], rows: Sequence[Sequence[Any]]
    ) -> int:
        self._maybe_fail("insert_rows")
        target = self.tables[table]
        for row in rows:
            target.rows.append(dict(zip(columns, row)))
        return len(rows)

    def delete_matching(self, target: str, source: str, columns: Sequence[str]) -> int:
        self._maybe_fail("delete_matching")
        keys = {tuple(r[c] for c in columns) for r in self.tables[source].rows}
        before = len(self.tables[target].rows)
        self.tables[target].rows = [
            r for r in self.tables[target].rows
            if tuple(r[c] for c in columns) not in keys
        ]
        return before - len(self.tables[target].rows)

    def insert_from(self, target: str, source: str) -> int:
        self._maybe_fail("insert_from")
        rows = [dict(r) for r in self.tables[source].rows]
        self.tables[target].rows.extend(rows)
        return len(rows)


class FakeBulkTransfer:
    """Copies a whole table between two FakeConnectors."""

    def __init__(self, source: FakeConnector, dest: FakeConnector) -> None:
        self.source = source
        self.dest = dest
        self.transferred: list[str] = []
        self.error: Exception | None = None

    def transfer(self, table: str) -> None:
        if self.error:
            raise self.error
        self.transferred.append(table)
        columns = self.dest.tables[table].column_names
        for row in self.source.rows(table):
            self.dest.tables[table].rows.append({c: row[c] for c in columns})


class FakeNotifier:
    def __init__(self, result: bool = True) -> None:
        self.messages: list[str] = []
        self.result = result

    def notify(self, message: str, **extra: Any) -> bool:
        self.messages.append(message)
        return self.result


# =============================================================================
# Fixtures
# =============================================================================

BASE_TIME = datetime(2024, 3, 1, tzinfo=timezone.utc)

ORDERS_COLUMNS = [
    ColumnInfo("id", "integer", "int4", False),
    ColumnInfo("status", "USER-DEFINED", "order_status", False),
    ColumnInfo("amount", "numeric", "numeric", True, numeric_precision=12, numeric_scale=2),
    ColumnInfo("tags", "ARRAY", "_text", True),
    ColumnInfo("updated_at", "timestamp with time zone", "timestamptz", False),
]


def make_orders(count: int, start_id: int = 1, start: datetime = BASE_TIME,
                span: timedelta = timedelta(days=3)) -> list[dict[str, Any]]:
    """``count`` orders with updated_at spread evenly over ``span``."""
    step = span / max(count, 1)
    return [
        {
            "id": start_id + i,
            "status": "open",
            "amount": i,
            "tags": ["a"],
            "updated_at": start + step * i,
        }
        for i in range(count)
    ]


@pytest.fixture
def orders_spec() -> TableSpec:
    return TableSpec(name="orders", replication_key="updated_at", unique_cols=["id"])


@pytest.fixture
def source() -> FakeConnector:
    return FakeConnector(name="source")


@pytest.fixture
def dest() -> FakeConnector:
    return FakeConnector(name="destination")


@pytest.fixture
def bulk(source: FakeConnector, dest: FakeConnector) -> FakeBulkTransfer:
    return FakeBulkTransfer(source, dest)


@pytest.fixture
def notifier() -> FakeNotifier:
    return FakeNotifier()


@pytest.fixture
def store(tmp_path: Path) -> WatermarkStore:
    return WatermarkStore(tmp_path / "sync-state")


@pytest.fixture
def settings(tmp_path: Path, orders_spec: TableSpec) -> Settings:
    return Settings(
        source={"host": "src", "database": "app", "user": "reader"},
        destination={"host": "dst", "database": "warehouse", "user": "writer"},
        sync={"state_dir": tmp_path / "sync-state", "page_size": 1000},
        notify={"pipeline_name": "nightly"},
        tables=[orders_spec],
    )
