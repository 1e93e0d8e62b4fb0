"""
Watermark Store - durable per-table replication progress.

A watermark is the boundary of what has already reached the destination:
every source row whose replication key is below it is present there. It is
stored *exclusive* (the last key seen plus the smallest step the key type
allows) and read *inclusive* (``key >= watermark``), so a replay never loses
the boundary row and never loops on it.

One JSON file per table:

    sync-state/orders.json
    {"table": "orders", "kind": "datetime",
     "value": "2024-05-01T10:15:00.000001+00:00", "updated_at": "..."}

Files are replaced atomically (write to a temp file, fsync, rename). A
missing file means "never synced"; an unreadable one is an error, never a
silent fresh start.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Any

from pg_sync.config import IDENTIFIER_PATTERN, validate_identifier
from pg_sync.exceptions import WatermarkError

LOG = logging.getLogger(__name__)

INTEGER_TYPES = {"smallint", "integer", "bigint"}
NUMERIC_TYPES = {"numeric"}
FLOAT_TYPES = {"real", "double precision"}
TEXT_TYPES = {"text", "character varying", "character"}


class WatermarkKind(str, Enum):
    """Type family of a replication key value."""

    DATETIME = "datetime"
    DATE = "date"
    INT = "int"
    DECIMAL = "decimal"
    FLOAT = "float"
    STR = "str"


@dataclass(frozen=True)
class Watermark:
    """A typed, ordered replication key boundary."""

    value: Any
    kind: WatermarkKind
    updated_at: str = ""

    @classmethod
    def of(cls, value: Any) -> "Watermark":
        """Wrap a replication key value as read from the database."""
        if isinstance(value, Watermark):
            return value
        if isinstance(value, bool) or value is None:
            raise WatermarkError(f"Unsupported replication key value: {value!r}")
        # datetime is a date subclass, check it first
        if isinstance(value, datetime):
            return cls(value, WatermarkKind.DATETIME)
        if isinstance(value, date):
            return cls(value, WatermarkKind.DATE)
        if isinstance(value, int):
            return cls(value, WatermarkKind.INT)
        if isinstance(value, float):
            return cls(Decimal(repr(value)), WatermarkKind.DECIMAL)
        if isinstance(value, Decimal):
            return cls(value, WatermarkKind.DECIMAL)
        if isinstance(value, str):
            return cls(value, WatermarkKind.STR)
        raise WatermarkError(
            f"Unsupported replication key type: {type(value).__name__}"
        )

    @classmethod
    def minimum_for(cls, data_type: str) -> "Watermark":
        """
        Lowest value for a column of ``data_type``, used when a table is empty.

        Raises:
            WatermarkError: for types that cannot serve as a replication key
        """
        data_type = data_type.lower()
        if data_type == "timestamp with time zone":
            return cls(datetime(1, 1, 1, tzinfo=timezone.utc), WatermarkKind.DATETIME)
        if data_type == "timestamp without time zone":
            return cls(datetime(1, 1, 1), WatermarkKind.DATETIME)
        if data_type == "date":
            return cls(date(1, 1, 1), WatermarkKind.DATE)
        if data_type in INTEGER_TYPES:
            return cls(-(2**63), WatermarkKind.INT)
        if data_type in NUMERIC_TYPES:
            return cls(Decimal("-1E+300"), WatermarkKind.DECIMAL)
        if data_type in FLOAT_TYPES:
            # bound as '-Infinity'::float8; a numeric minimum overflows real
            return cls(float("-inf"), WatermarkKind.FLOAT)
        if data_type in TEXT_TYPES:
            return cls("", WatermarkKind.STR)
        raise WatermarkError(f"Unsupported replication key column type: {data_type}")

    def advanced(self) -> "Watermark":
        """
        Watermark just past this value.

        Timestamps move by one microsecond (PostgreSQL's resolution) and
        integers by one. Dates, decimals and text have no safe smallest step
        and stay put; the inclusive read then re-delivers the boundary rows,
        which the merge absorbs.
        """
        if self.kind is WatermarkKind.DATETIME:
            return Watermark(self.value + timedelta(microseconds=1), self.kind)
        if self.kind is WatermarkKind.INT:
            return Watermark(self.value + 1, self.kind)
        return Watermark(self.value, self.kind)

    def aligned_to(self, data_type: str) -> "Watermark":
        """
        The same instant expressed the way a ``data_type`` key column holds it.

        Timestamps without time zone are compared as naive UTC, timestamps with
        time zone as aware values. Other kinds are returned unchanged.
        """
        if self.kind is not WatermarkKind.DATETIME:
            return self
        data_type = data_type.lower()
        value = self.value
        if data_type == "timestamp without time zone" and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        elif data_type == "timestamp with time zone" and value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        else:
            return self
        return Watermark(value, self.kind, self.updated_at)

    def precedes(self, other: "Watermark") -> bool:
        """True when this watermark is strictly below ``other``."""
        numeric = {WatermarkKind.DECIMAL, WatermarkKind.FLOAT}
        if self.kind is not other.kind and not {self.kind, other.kind} <= numeric:
            raise WatermarkError(
                f"Cannot compare {self.kind.value} watermark with {other.kind.value}"
            )
        try:
            return self.value < other.value
        except TypeError as e:
            # e.g. naive vs aware datetimes
            raise WatermarkError(f"Cannot compare watermarks: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        if self.kind in (WatermarkKind.DATETIME, WatermarkKind.DATE):
            value: Any = self.value.isoformat()
        elif self.kind in (WatermarkKind.DECIMAL, WatermarkKind.FLOAT):
            value = str(self.value)
        else:
            value = self.value
        return {"kind": self.kind.value, "value": value, "updated_at": self.updated_at}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Watermark":
        """Create from dictionary."""
        try:
            kind = WatermarkKind(data["kind"])
            raw = data["value"]
            if kind is WatermarkKind.DATETIME:
                value: Any = datetime.fromisoformat(raw)
            elif kind is WatermarkKind.DATE:
                value = date.fromisoformat(raw)
            elif kind is WatermarkKind.INT:
                if isinstance(raw, bool) or not isinstance(raw, int):
                    raise ValueError(f"not an integer: {raw!r}")
                value = raw
            elif kind is WatermarkKind.DECIMAL:
                value = Decimal(raw)
            elif kind is WatermarkKind.FLOAT:
                value = float(raw)
            else:
                value = str(raw)
        except (KeyError, TypeError, ValueError, InvalidOperation) as e:
            raise WatermarkError(f"Malformed watermark record: {e}") from e
        return cls(value, kind, data.get("updated_at", ""))

    def __str__(self) -> str:
        return str(self.to_dict()["value"])


class WatermarkStore:
    """
    File-backed watermark persistence, one file per table.

    Example:
        store = WatermarkStore(Path("sync-state"))

        wm = store.load("orders")          # None before the first sync
        store.save("orders", last_key)     # stored as last_key + 1 step
    """

    def __init__(self, state_dir: Path | str) -> None:
        """
        Initialize watermark store.

        Args:
            state_dir: Directory holding the watermark files
        """
        self.state_dir = Path(state_dir)

    def path_for(self, table: str) -> Path:
        """Location of the watermark file for ``table``."""
        validate_identifier(table, "table name")
        return self.state_dir / f"{table}.json"

    def _legacy_path(self, table: str) -> Path:
        # Plain ISO-8601 text files written by earlier deployments
        return self.state_dir / f"{table}.txt"

    def load(self, table: str) -> Watermark | None:
        """
        Load the watermark for ``table``.

        Returns:
            The stored watermark, or None if the table was never synced

        Raises:
            WatermarkError: if a watermark file exists but cannot be read
        """
        path = self.path_for(table)
        if not path.exists():
            legacy = self._legacy_path(table)
            if legacy.exists():
                return self._load_legacy(legacy)
            return None

        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise WatermarkError(f"Could not read watermark file {path}: {e}") from e

        if not isinstance(data, dict):
            raise WatermarkError(f"Watermark file {path} does not hold a mapping")
        if data.get("table", table) != table:
            raise WatermarkError(
                f"Watermark file {path} belongs to table {data.get('table')!r}"
            )
        return Watermark.from_dict(data)

    def _load_legacy(self, path: Path) -> Watermark:
        try:
            raw = path.read_text(encoding="utf-8").strip()
            # datetime.fromisoformat() accepts the trailing "Z" from Python 3.11
            return Watermark(datetime.fromisoformat(raw), WatermarkKind.DATETIME)
        except (OSError, ValueError) as e:
            raise WatermarkError(f"Could not read watermark file {path}: {e}") from e

    def save(self, table: str, value: Any, advance: bool = True) -> Watermark:
        """
        Persist a new watermark for ``table`` atomically.

        Args:
            table: Table name
            value: Last replication key value seen (or a Watermark)
            advance: Store the value plus one step (exclusive boundary)

        Returns:
            The watermark as stored
        """
        watermark = Watermark.of(value)
        if advance:
            watermark = watermark.advanced()
        watermark = Watermark(
            watermark.value,
            watermark.kind,
            datetime.now(timezone.utc).isoformat(),
        )

        path = self.path_for(table)
        data = {"table": table, **watermark.to_dict()}
        self.state_dir.mkdir(parents=True, exist_ok=True)

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{table}.", suffix=".tmp", dir=self.state_dir
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        legacy = self._legacy_path(table)
        if legacy.exists():
            legacy.unlink()

        LOG.debug("Saved watermark for %s: %s", table, watermark)
        return watermark

    def delete(self, table: str) -> bool:
        """Forget the watermark for ``table``. Returns True if one existed."""
        removed = False
        for path in (self.path_for(table), self._legacy_path(table)):
            if path.exists():
                path.unlink()
                removed = True
        return removed

    def list_all(self) -> dict[str, Watermark]:
        """All stored watermarks keyed by table name, sorted by name."""
        if not self.state_dir.exists():
            return {}

        tables = sorted(
            {p.stem for p in self.state_dir.glob("*.json")}
            | {p.stem for p in self.state_dir.glob("*.txt")}
        )
        result: dict[str, Watermark] = {}
        for table in tables:
            if not IDENTIFIER_PATTERN.match(table):
                continue
            watermark = self.load(table)
            if watermark is not None:
                result[table] = watermark
        return result
