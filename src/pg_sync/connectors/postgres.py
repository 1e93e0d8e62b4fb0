"""
PostgreSQL Database Connector.

Provides the database primitives the sync engine is built from:
- Schema introspection (information_schema)
- Table DDL (create/drop/truncate)
- Watermark-bounded, offset-paginated reads
- Batch inserts with execute_values
- Set-based statements for the staging merge

Every identifier is composed with psycopg2.sql.Identifier, every value is a
query parameter. Statements commit individually unless they run inside
``transaction()``.
"""

from __future__ import annotations

import logging
import re
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Generator, Sequence

import psycopg2
import psycopg2.extras as extras
from psycopg2 import sql

from pg_sync.config import DatabaseConfig
from pg_sync.exceptions import DatabaseError

LOG = logging.getLogger(__name__)

# Rendered column types accepted in CREATE TABLE, e.g.
# "timestamp with time zone", "character varying(255)", "numeric(12,2)", "int4[]"
TYPE_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_ ]*(\(\d+(,\s?\d+)?\))?(\[\])?$")


@dataclass(frozen=True)
class ColumnInfo:
    """Information about a table column, as reported by information_schema."""

    name: str
    data_type: str
    udt_name: str
    nullable: bool
    char_max_length: int | None = None
    numeric_precision: int | None = None
    numeric_scale: int | None = None


@dataclass(frozen=True)
class ColumnDefinition:
    """A column of a table about to be created."""

    name: str
    type_sql: str
    nullable: bool = True


@dataclass
class RowBatch:
    """A page of rows with metadata."""

    table: str
    columns: list[str]
    rows: list[tuple[Any, ...]]
    offset: int

    def __len__(self) -> int:
        return len(self.rows)

    def value(self, row: tuple[Any, ...], column: str) -> Any:
        """Value of ``column`` in ``row``."""
        return row[self.columns.index(column)]

    @property
    def last_row(self) -> tuple[Any, ...] | None:
        return self.rows[-1] if self.rows else None


def _adapt(value: Any) -> Any:
    # json/jsonb values come back as Python objects and need wrapping on the way in
    if isinstance(value, dict):
        return extras.Json(value)
    if isinstance(value, list) and any(isinstance(v, dict) for v in value):
        return extras.Json(value)
    return value


class PostgresConnector:
    """
    Connector for one PostgreSQL database and schema.

    Table arguments are bare names; they are always qualified with the
    configured schema.

    Example:
        with PostgresConnector(settings.source, readonly=True) as src:
            columns = src.get_columns("orders")
            batch = src.fetch_page("orders", "updated_at", since, limit=1000)
    """

    def __init__(
        self,
        config: DatabaseConfig,
        readonly: bool = False,
        name: str = "database",
    ) -> None:
        """
        Initialize the connector. No connection is made until first use.

        Args:
            config: Connection settings
            readonly: Open the session read-only
            name: Label used in logs and errors ("source", "destination")
        """
        self.config = config
        self.schema = config.schema_name
        self.readonly = readonly
        self.name = name
        self._connection: psycopg2.extensions.connection | None = None
        self._in_transaction = False

    # =========================================================================
    # Connection Management
    # =========================================================================

    @contextmanager
    def connection(self) -> Generator[psycopg2.extensions.connection, None, None]:
        """Get a database connection with proper cleanup."""
        if self._connection is None:
            self._connection = self._create_connection()

        try:
            yield self._connection
        except Exception:
            if not self._in_transaction and not self._connection.closed:
                self._connection.rollback()
            raise

    def _create_connection(self) -> psycopg2.extensions.connection:
        """Create a new database connection."""
        cfg = self.config
        LOG.debug("Connecting to %s database %s", self.name, cfg.label)
        try:
            conn = psycopg2.connect(
                host=cfg.host,
                port=cfg.port,
                dbname=cfg.database,
                user=cfg.user,
                password=cfg.password.get_secret_value() or None,
                application_name="pg-sync",
            )
            conn.set_session(readonly=self.readonly)
        except psycopg2.Error as e:
            raise DatabaseError(
                f"Could not connect to {self.name} database {cfg.label}: {e}",
                operation="connect",
            ) from e
        return conn

    def connect(self) -> None:
        """Open the connection now instead of on first use."""
        with self.connection():
            pass

    def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            if not self._connection.closed:
                self._connection.close()
            self._connection = None

    def __enter__(self) -> "PostgresConnector":
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    @contextmanager
    def transaction(self) -> Generator[None, None, None]:
        """
        Run the enclosed operations as one transaction.

        Commits on success, rolls back on any exception. Nested use joins the
        outer transaction.
        """
        if self._in_transaction:
            yield
            return

        if self._connection is None:
            self._connection = self._create_connection()
        conn = self._connection

        self._in_transaction = True
        try:
            yield
            conn.commit()
        except Exception:
            if not conn.closed:
                conn.rollback()
            raise
        finally:
            self._in_transaction = False

    @contextmanager
    def _cursor(
        self, operation: str, table: str | None = None
    ) -> Generator[psycopg2.extensions.cursor, None, None]:
        try:
            with self.connection() as conn:
                with conn.cursor() as cur:
                    yield cur
                if not self._in_transaction:
                    conn.commit()
        except psycopg2.Error as e:
            where = f"{self.schema}.{table}" if table else self.name
            raise DatabaseError(
                f"{operation} failed on {self.name} {where}: {e}".strip(),
                operation=operation,
                table=table,
            ) from e

    def _table(self, table: str) -> sql.Identifier:
        return sql.Identifier(self.schema, table)

    # =========================================================================
    # Introspection
    # =========================================================================

    def table_exists(self, table: str) -> bool:
        """Check whether ``table`` exists in the configured schema."""
        with self._cursor("table_exists", table) as cur:
            cur.execute(
                """
                SELECT EXISTS (
                  SELECT 1 FROM information_schema.tables
                  WHERE table_schema = %s AND table_name = %s
                )
                """,
                (self.schema, table),
            )
            return bool(cur.fetchone()[0])

    def get_columns(self, table: str) -> list[ColumnInfo]:
        """Get column information for a table, in ordinal order. Empty if absent."""
        with self._cursor("get_columns", table) as cur:
            cur.execute(
                """
                SELECT column_name, data_type, udt_name, is_nullable,
                       character_maximum_length, numeric_precision, numeric_scale
                FROM information_schema.columns
                WHERE table_schema = %s AND table_name = %s
                ORDER BY ordinal_position
                """,
                (self.schema, table),
            )
            rows = cur.fetchall()

        return [
            ColumnInfo(
                name=row[0],
                data_type=row[1],
                udt_name=row[2],
                nullable=row[3] == "YES",
                char_max_length=row[4],
                numeric_precision=row[5],
                numeric_scale=row[6],
            )
            for row in rows
        ]

    def get_row_count(self, table: str) -> int:
        """Get the row count for a table."""
        with self._cursor("get_row_count", table) as cur:
            cur.execute(
                sql.SQL("SELECT COUNT(*) FROM {}").format(self._table(table))
            )
            return int(cur.fetchone()[0])

    def max_value(self, table: str, column: str) -> Any:
        """Largest value of ``column`` in ``table`` (None when empty)."""
        with self._cursor("max_value", table) as cur:
            cur.execute(
                sql.SQL("SELECT MAX({}) FROM {}").format(
                    sql.Identifier(column), self._table(table)
                )
            )
            return cur.fetchone()[0]

    def count_duplicates(self, table: str, columns: Sequence[str]) -> int:
        """Number of ``columns`` tuples that occur more than once in ``table``."""
        cols = sql.SQL(", ").join(sql.Identifier(c) for c in columns)
        with self._cursor("count_duplicates", table) as cur:
            cur.execute(
                sql.SQL(
                    "SELECT COUNT(*) FROM ("
                    "SELECT 1 FROM {tbl} GROUP BY {cols} HAVING COUNT(*) > 1"
                    ") AS dup"
                ).format(tbl=self._table(table), cols=cols)
            )
            return int(cur.fetchone()[0])

    # =========================================================================
    # DDL
    # =========================================================================

    def drop_table(self, table: str) -> None:
        """Drop a table if it exists."""
        with self._cursor("drop_table", table) as cur:
            cur.execute(
                sql.SQL("DROP TABLE IF EXISTS {}").format(self._table(table))
            )

    def create_table(self, table: str, columns: Sequence[ColumnDefinition]) -> None:
        """Create ``table`` with the given columns."""
        if not columns:
            raise ValueError(f"Cannot create {table} without columns")

        parts = []
        for col in columns:
            if not TYPE_PATTERN.match(col.type_sql):
                raise ValueError(f"Refusing column type {col.type_sql!r} for {col.name}")
            definition = sql.SQL("{} {}").format(
                sql.Identifier(col.name), sql.SQL(col.type_sql)
            )
            if not col.nullable:
                definition = sql.SQL("{} NOT NULL").format(definition)
            parts.append(definition)

        query = sql.SQL("CREATE TABLE {} ({})").format(
            self._table(table), sql.SQL(", ").join(parts)
        )
        with self._cursor("create_table", table) as cur:
            cur.execute(query)

    def truncate(self, table: str) -> None:
        """Remove every row from ``table``."""
        with self._cursor("truncate", table) as cur:
            cur.execute(sql.SQL("TRUNCATE TABLE {}").format(self._table(table)))

    # =========================================================================
    # Rows
    # =========================================================================

    def fetch_page(
        self,
        table: str,
        key: str,
        lower_bound: Any,
        limit: int,
        offset: int = 0,
    ) -> RowBatch:
        """
        Fetch one page of rows with ``key >= lower_bound``, ordered by ``key``.

        ``lower_bound`` is bound as a parameter so the comparison uses the
        column's own type and ordering.
        """
        query = sql.SQL(
            "SELECT * FROM {tbl} WHERE {key} >= %s ORDER BY {key} LIMIT %s OFFSET %s"
        ).format(tbl=self._table(table), key=sql.Identifier(key))

        with self._cursor("fetch_page", table) as cur:
            cur.execute(query, (lower_bound, limit, offset))
            columns = [d[0] for d in cur.description]
            rows = [tuple(r) for r in cur.fetchall()]

        return RowBatch(table=table, columns=columns, rows=rows, offset=offset)

    def insert_rows(
        self,
        table: str,
        columns: Sequence[str],
        rows: Sequence[Sequence[Any]],
    ) -> int:
        """
        Insert rows into a table.

        Returns:
            Number of inserted rows
        """
        if not rows:
            return 0

        query = sql.SQL("INSERT INTO {} ({}) VALUES %s").format(
            self._table(table),
            sql.SQL(", ").join(sql.Identifier(c) for c in columns),
        )
        values = [tuple(_adapt(v) for v in row) for row in rows]

        with self._cursor("insert_rows", table) as cur:
            extras.execute_values(cur, query, values, page_size=len(values))
        return len(values)

    def delete_matching(
        self,
        target: str,
        source: str,
        columns: Sequence[str],
    ) -> int:
        """
        Delete rows of ``target`` that have a row in ``source`` equal on all ``columns``.

        Returns:
            Number of deleted rows
        """
        if not columns:
            raise ValueError("delete_matching needs at least one column")

        condition = sql.SQL(" AND ").join(
            sql.SQL("{} = {}").format(
                sql.Identifier("t", c), sql.Identifier("s", c)
            )
            for c in columns
        )
        query = sql.SQL(
            "DELETE FROM {target} AS t WHERE EXISTS ("
            "SELECT 1 FROM {source} AS s WHERE {condition})"
        ).format(
            target=self._table(target),
            source=self._table(source),
            condition=condition,
        )
        with self._cursor("delete_matching", target) as cur:
            cur.execute(query)
            return cur.rowcount

    def insert_from(self, target: str, source: str) -> int:
        """
        Copy every row of ``source`` into ``target`` (same column layout).

        Returns:
            Number of inserted rows
        """
        query = sql.SQL("INSERT INTO {} SELECT * FROM {}").format(
            self._table(target), self._table(source)
        )
        with self._cursor("insert_from", target) as cur:
            cur.execute(query)
            return cur.rowcount
