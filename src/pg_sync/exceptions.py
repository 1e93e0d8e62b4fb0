"""Exceptions raised by pg-sync."""

from __future__ import annotations


class SyncError(Exception):
    """Base exception for pg-sync errors."""


class ConfigurationError(SyncError):
    """Missing or invalid settings or tables file."""


class DatabaseError(SyncError):
    """A database operation failed (connectivity, introspection, DML)."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        table: str | None = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.table = table


class BulkTransferError(SyncError):
    """The dump/restore subprocess pair exited abnormally."""

    def __init__(
        self,
        message: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stdout: str = "",
        stderr: str = "",
    ) -> None:
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr


class WatermarkError(SyncError):
    """Stored replication progress is unreadable or would move backwards."""


class TableSyncError(SyncError):
    """A table's sync cycle failed in a given phase."""

    def __init__(self, table: str, phase: str, cause: BaseException) -> None:
        super().__init__(f"{table}: {phase} failed: {cause}")
        self.table = table
        self.phase = phase
        self.cause = cause
