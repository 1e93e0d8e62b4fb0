"""
Schema comparison and DDL synthesis.

The destination staging table is the reference for "has the source shape
changed": it is created from the source catalog on every full resync, so as
long as both agree column-for-column the incremental path is safe.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

from pg_sync.connectors.postgres import ColumnDefinition, ColumnInfo

USER_DEFINED = "USER-DEFINED"
ARRAY = "ARRAY"
FREE_TEXT = "text"


@dataclass(frozen=True)
class ColumnShape:
    """Type and nullability of one column."""

    type: str
    nullable: bool


class SchemaShape(Mapping[str, ColumnShape]):
    """Ordered mapping of column name to its shape."""

    def __init__(self, columns: Iterable[tuple[str, ColumnShape]]) -> None:
        self._columns = dict(columns)

    @classmethod
    def from_columns(cls, columns: Iterable[ColumnInfo]) -> "SchemaShape":
        return cls(
            (c.name, ColumnShape(type=c.data_type, nullable=c.nullable))
            for c in columns
        )

    def __getitem__(self, name: str) -> ColumnShape:
        return self._columns[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._columns)

    def __len__(self) -> int:
        return len(self._columns)

    def __repr__(self) -> str:
        return f"SchemaShape({self._columns!r})"


class SchemaComparator:
    """
    Decides whether the staging table still matches the source table.

    Types must be equal, except that a source user-defined (enum) column is
    accepted against a destination ``text`` column, since that is how full
    resync renders it.
    """

    def differences(
        self, source: SchemaShape, staging: SchemaShape | None
    ) -> list[str]:
        """Reasons the two shapes are incompatible (empty when compatible)."""
        if staging is None:
            return ["staging table does not exist"]

        if len(source) != len(staging):
            return [f"column count differs: source={len(source)} staging={len(staging)}"]

        reasons = []
        for name, src_col in source.items():
            dst_col = staging.get(name)
            if dst_col is None:
                reasons.append(f"column {name!r} missing in staging")
            elif not self.types_compatible(src_col.type, dst_col.type):
                reasons.append(
                    f"column {name!r} type differs: source={src_col.type} "
                    f"staging={dst_col.type}"
                )
        return reasons

    def compatible(self, source: SchemaShape, staging: SchemaShape | None) -> bool:
        return not self.differences(source, staging)

    @staticmethod
    def types_compatible(source_type: str, dest_type: str) -> bool:
        if source_type == dest_type:
            return True
        return source_type == USER_DEFINED and dest_type == FREE_TEXT


def render_column_type(column: ColumnInfo) -> str:
    """
    Destination type for a source column.

    Arrays become ``element[]``, user-defined types become ``text``; declared
    lengths and numeric precision are kept.
    """
    if column.data_type == ARRAY:
        element = column.udt_name[1:] if column.udt_name.startswith("_") else column.udt_name
        return f"{element}[]"
    if column.data_type == USER_DEFINED:
        return FREE_TEXT
    if column.data_type in ("character varying", "character") and column.char_max_length:
        return f"{column.data_type}({column.char_max_length})"
    if column.data_type == "numeric" and column.numeric_precision:
        return f"numeric({column.numeric_precision},{column.numeric_scale or 0})"
    return column.data_type


def column_definitions(columns: Iterable[ColumnInfo]) -> list[ColumnDefinition]:
    """CREATE TABLE column list mirroring the source columns."""
    return [
        ColumnDefinition(
            name=c.name,
            type_sql=render_column_type(c),
            nullable=c.nullable,
        )
        for c in columns
    ]
