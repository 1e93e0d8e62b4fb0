"""
Bulk Transfer Service - pg_dump / psql table copy.

Copies every current row of one source table into the destination table of
the same name:
1. Export the table's data with ``pg_dump --data-only``
2. Strip sequence advancement (``SELECT setval``) statements, leaving COPY data alone
3. Point COPY statements at the destination schema
4. Apply the payload with ``psql``

Commands are built as argument lists and run without a shell. Passwords are
handed over through ``PGPASSWORD`` in the child environment.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
from dataclasses import dataclass
from pathlib import Path

from pg_sync.config import DatabaseConfig, Settings, validate_identifier
from pg_sync.exceptions import BulkTransferError

LOG = logging.getLogger(__name__)

SETVAL_PATTERN = re.compile(r"^\s*SELECT\s+(?:pg_catalog\.)?setval\s*\(", re.IGNORECASE)
COPY_START_PATTERN = re.compile(r"^COPY\s.*\bFROM\s+stdin;\s*$", re.IGNORECASE)
COPY_END = "\\."


@dataclass
class CommandResult:
    """Captured outcome of one subprocess."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


@dataclass
class TransferResult:
    """Result of a bulk table copy."""

    table: str
    dump: CommandResult
    restore: CommandResult
    statements_stripped: int = 0
    payload_bytes: int = 0


def strip_sequence_statements(payload: str) -> tuple[str, int]:
    """
    Remove the ``SELECT setval(...)`` statements that advance sequences.

    Lines between a ``COPY ... FROM stdin;`` header and its ``\\.`` terminator
    are table data and are always kept, whatever text they hold.

    Returns:
        (payload without those statements, number of statements removed)
    """
    kept: list[str] = []
    removed = 0
    in_copy = False
    for line in payload.splitlines(keepends=True):
        if in_copy:
            if line.rstrip("\r\n") == COPY_END:
                in_copy = False
        elif COPY_START_PATTERN.match(line.rstrip("\r\n")):
            in_copy = True
        elif SETVAL_PATTERN.match(line):
            removed += 1
            continue
        kept.append(line)
    return "".join(kept), removed


def retarget_copy_statements(
    payload: str, table: str, source_schema: str, dest_schema: str
) -> str:
    """Rewrite ``COPY source_schema.table`` headers to the destination schema."""
    if source_schema == dest_schema:
        return payload

    header = re.compile(
        rf'^COPY\s+"?{re.escape(source_schema)}"?\."?{re.escape(table)}"?(\s)',
        re.MULTILINE,
    )
    return header.sub(f'COPY "{dest_schema}"."{table}"\\1', payload)


class BulkTransferService:
    """
    Full-table copy between two PostgreSQL databases via pg_dump and psql.

    Example:
        service = BulkTransferService(settings)
        result = service.transfer("orders")
    """

    def __init__(
        self,
        source: DatabaseConfig,
        destination: DatabaseConfig,
        pg_dump_path: str = "pg_dump",
        psql_path: str = "psql",
        work_dir: Path | str | None = None,
    ) -> None:
        self.source = source
        self.destination = destination
        self.pg_dump_path = pg_dump_path
        self.psql_path = psql_path
        self.work_dir = Path(work_dir) if work_dir else None

    @classmethod
    def from_settings(cls, settings: Settings) -> "BulkTransferService":
        """Create a service from settings."""
        return cls(
            source=settings.source,
            destination=settings.destination,
            pg_dump_path=settings.sync.pg_dump_path,
            psql_path=settings.sync.psql_path,
        )

    def dump_command(self, table: str, output: Path) -> list[str]:
        validate_identifier(table, "table name")
        src = self.source
        return [
            self.pg_dump_path,
            "--host", src.host,
            "--port", str(src.port),
            "--username", src.user,
            "--dbname", src.database,
            "--data-only",
            "--no-owner",
            "--no-privileges",
            "--table", f'"{src.schema_name}"."{table}"',
            "--file", str(output),
        ]

    def restore_command(self, payload: Path) -> list[str]:
        dst = self.destination
        return [
            self.psql_path,
            "--host", dst.host,
            "--port", str(dst.port),
            "--username", dst.user,
            "--dbname", dst.database,
            "--no-psqlrc",
            "--quiet",
            "-v", "ON_ERROR_STOP=1",
            "--single-transaction",
            "--file", str(payload),
        ]

    def transfer(self, table: str) -> TransferResult:
        """
        Copy all rows of ``table`` from source to destination.

        Raises:
            BulkTransferError: when either command exits abnormally
        """
        with tempfile.TemporaryDirectory(
            prefix="pg-sync-", dir=self.work_dir
        ) as tmp:
            dump_file = Path(tmp) / f"{table}.sql"

            LOG.info("Dumping %s.%s from source", self.source.schema_name, table)
            dump = self._run(self.dump_command(table, dump_file), self.source)
            self._check(dump, f"pg_dump of {table}")

            payload = dump_file.read_text(encoding="utf-8")
            payload, stripped = strip_sequence_statements(payload)
            payload = retarget_copy_statements(
                payload, table, self.source.schema_name, self.destination.schema_name
            )
            dump_file.write_text(payload, encoding="utf-8")
            LOG.debug(
                "Prepared payload for %s: %d bytes, %d setval statements stripped",
                table, len(payload), stripped,
            )

            LOG.info("Restoring %s into destination", table)
            restore = self._run(self.restore_command(dump_file), self.destination)
            self._check(restore, f"psql restore of {table}")

        return TransferResult(
            table=table,
            dump=dump,
            restore=restore,
            statements_stripped=stripped,
            payload_bytes=len(payload.encode("utf-8")),
        )

    def _run(self, command: list[str], db: DatabaseConfig) -> CommandResult:
        env = dict(os.environ)
        password = db.password.get_secret_value()
        if password:
            env["PGPASSWORD"] = password

        try:
            proc = subprocess.run(
                command,
                env=env,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as e:
            raise BulkTransferError(
                f"Could not start {command[0]}: {e}", command=command
            ) from e

        result = CommandResult(
            command=command,
            returncode=proc.returncode,
            stdout=proc.stdout or "",
            stderr=proc.stderr or "",
        )
        if result.stdout:
            LOG.debug("%s stdout: %s", command[0], result.stdout.strip())
        if result.stderr:
            LOG.debug("%s stderr: %s", command[0], result.stderr.strip())
        return result

    @staticmethod
    def _check(result: CommandResult, what: str) -> None:
        if result.success:
            return
        LOG.error(
            "%s exited with %d: %s", what, result.returncode, result.stderr.strip()
        )
        raise BulkTransferError(
            f"{what} exited with status {result.returncode}",
            command=result.command,
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
        )
