"""
Data Integrity Checker.

Post-sync checks of a replicated table:
- Row counts on both sides
- Duplicate unique-key tuples in the destination final table

Counts may legitimately differ for a moment (rows changed at the source
after the fetch, hard deletes that incremental sync does not carry), so a
mismatch is reported, not enforced. Duplicate keys mean the merge invariant
is broken.
"""

from __future__ import annotations

from dataclasses import dataclass

from pg_sync.config import TableSpec
from pg_sync.connectors.postgres import PostgresConnector


@dataclass
class VerificationResult:
    """Result of a verification check."""

    table: str
    source_count: int
    dest_count: int
    duplicate_keys: int

    @property
    def counts_match(self) -> bool:
        return self.source_count == self.dest_count

    @property
    def ok(self) -> bool:
        return self.counts_match and self.duplicate_keys == 0

    @property
    def message(self) -> str:
        problems = []
        if not self.counts_match:
            problems.append(
                f"row count mismatch: source={self.source_count}, dest={self.dest_count}"
            )
        if self.duplicate_keys:
            problems.append(f"{self.duplicate_keys} duplicate unique keys in destination")
        return "; ".join(problems) or "ok"


class IntegrityChecker:
    """
    Data integrity verification.

    Example:
        checker = IntegrityChecker()
        result = checker.verify_table(src, dst, table)
        if not result.ok:
            print(result.message)
    """

    def verify_table(
        self,
        source: PostgresConnector,
        dest: PostgresConnector,
        table: TableSpec,
    ) -> VerificationResult:
        return VerificationResult(
            table=table.name,
            source_count=source.get_row_count(table.name),
            dest_count=dest.get_row_count(table.name),
            duplicate_keys=dest.count_duplicates(table.name, table.unique_cols),
        )
