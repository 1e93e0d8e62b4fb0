"""
pg-sync Configuration System.

This module provides a type-safe configuration system using Pydantic.
Settings can be loaded from:
1. Config file (TOML or JSON)
2. Environment variables (prefixed with PG_SYNC_, nested with __)
3. CLI arguments (highest priority)

The replicated tables are a static, ordered list of TableSpec records. They
are given inline (``tables = [...]``) or read from a separate tables file,
the same JSON document the cron job has always used::

    [
      {"name": "orders", "replication_key": "updated_at", "unique_cols": ["id"]}
    ]

Example usage:
    from pg_sync.config import Settings

    settings = Settings.from_file("pg-sync.toml")
    tables = settings.load_tables()
"""

from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from pg_sync.exceptions import ConfigurationError

# Unquoted PostgreSQL identifier, NAMEDATALEN - 1 characters at most.
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_$]{0,62}$")


def validate_identifier(value: str, what: str = "identifier") -> str:
    """Reject anything that is not a plain SQL identifier."""
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"Invalid {what}: {value!r}")
    return value


class TableSpec(BaseModel):
    """One replicated table: its name, replication key and identity columns."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(description="Table name, identical on both sides")
    replication_key: str = Field(
        description="Column used to detect new or changed rows",
    )
    unique_cols: tuple[str, ...] = Field(
        description="Columns that together identify a row for deduplication",
    )

    @field_validator("name", "replication_key")
    @classmethod
    def check_identifier(cls, v: str) -> str:
        return validate_identifier(v, "table or column name")

    @field_validator("unique_cols", mode="before")
    @classmethod
    def check_unique_cols(cls, v: Any) -> tuple[str, ...]:
        if isinstance(v, str):
            v = [c.strip() for c in v.split(",") if c.strip()]
        cols = tuple(v or ())
        if not cols:
            raise ValueError("unique_cols must name at least one column")
        if len(set(cols)) != len(cols):
            raise ValueError(f"unique_cols contains duplicates: {list(cols)}")
        for col in cols:
            validate_identifier(col, "unique column")
        return cols


class DatabaseConfig(BaseModel):
    """Connection settings for one PostgreSQL database."""

    host: str = Field(default="", description="Database host")
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="", description="Database name")
    user: str = Field(default="", description="Login role")
    password: SecretStr = Field(default=SecretStr(""))
    schema_name: str = Field(
        default="public",
        alias="schema",
        description="Schema holding the replicated tables",
    )

    model_config = ConfigDict(populate_by_name=True)

    @field_validator("schema_name")
    @classmethod
    def check_schema(cls, v: str) -> str:
        return validate_identifier(v, "schema name")

    @property
    def label(self) -> str:
        """Human-readable location, without credentials."""
        return f"{self.host}:{self.port}/{self.database}.{self.schema_name}"

    def missing(self) -> list[str]:
        """Names of required fields that are empty."""
        return [
            name for name in ("host", "database", "user")
            if not getattr(self, name)
        ]


class SyncOptions(BaseModel):
    """Options controlling sync behavior."""

    page_size: int = Field(
        default=1000,
        ge=1,
        le=100_000,
        description="Rows fetched per page during incremental sync",
    )
    staging_suffix: str = Field(
        default="_stg",
        pattern=r"^[A-Za-z0-9_]{1,20}$",
        description="Suffix appended to a table name for its staging table",
    )
    state_dir: Path = Field(
        default=Path("sync-state"),
        description="Directory holding one watermark file per table",
    )
    tables_file: Path = Field(
        default=Path("tables-config.json"),
        description="JSON or TOML file listing the tables to replicate",
    )
    transactional_merge: bool = Field(
        default=True,
        description="Run delete/insert/truncate of a merge in one transaction",
    )
    verify_after_sync: bool = Field(
        default=False,
        description="Check row counts and duplicate keys after each table",
    )
    pg_dump_path: str = Field(default="pg_dump")
    psql_path: str = Field(default="psql")


class NotifyConfig(BaseModel):
    """Outcome notification over an HTTP webhook."""

    webhook_url: str | None = Field(
        default=None,
        description="Webhook receiving the run outcome (None = disabled)",
    )
    pipeline_name: str = Field(
        default="pg-sync",
        description="Name used in notification messages",
    )
    timeout_seconds: float = Field(default=10.0, gt=0)


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Log level",
    )
    file: Path | None = Field(
        default=None,
        description="Log file path (None = console only)",
    )
    format: str = Field(
        default="rich",
        pattern="^(rich|json|simple)$",
        description="Log format: rich (colored), json, or simple",
    )
    max_file_size_mb: int = Field(
        default=10,
        ge=1,
        le=100,
        description="Max log file size before rotation",
    )
    backup_count: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Number of rotated log files to keep",
    )


class Settings(BaseSettings):
    """
    Main settings class for pg-sync.

    Settings are loaded in this priority (highest first):
    1. Config file or explicit constructor arguments
    2. Environment variables (PG_SYNC_* prefix)
    3. .env file
    4. Defaults

    Nested sections merge across sources, so a config file can leave
    passwords to PG_SYNC_SOURCE__PASSWORD and friends.

    Example:
        export PG_SYNC_SOURCE__HOST=db.internal
        export PG_SYNC_SOURCE__PASSWORD=secret
        export PG_SYNC_NOTIFY__WEBHOOK_URL=https://hooks.example.com/x
        settings = Settings()
    """

    model_config = SettingsConfigDict(
        env_prefix="PG_SYNC_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    source: DatabaseConfig = Field(default_factory=DatabaseConfig)
    destination: DatabaseConfig = Field(default_factory=DatabaseConfig)
    sync: SyncOptions = Field(default_factory=SyncOptions)
    notify: NotifyConfig = Field(default_factory=NotifyConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    tables: list[TableSpec] = Field(
        default_factory=list,
        description="Inline table list (overrides the tables file)",
    )

    @classmethod
    def from_file(cls, path: Path | str) -> Self:
        """Load settings from a TOML or JSON config file."""
        data = _read_structured_file(Path(path))
        if not isinstance(data, dict):
            raise ConfigurationError(f"Config file must hold a mapping: {path}")
        return cls(**data)

    def load_tables(self) -> list[TableSpec]:
        """
        Return the ordered table list.

        Inline ``tables`` win; otherwise ``sync.tables_file`` is read. The file
        holds either a JSON list or a TOML document with a ``[[tables]]`` array.
        """
        if self.tables:
            return list(self.tables)

        path = self.sync.tables_file
        if not path.exists():
            raise ConfigurationError(f"Tables file not found: {path}")

        data = _read_structured_file(path)
        if isinstance(data, dict):
            data = data.get("tables", [])
        if not isinstance(data, list):
            raise ConfigurationError(f"Tables file must hold a list: {path}")

        try:
            tables = [TableSpec.model_validate(item) for item in data]
        except ValueError as e:
            raise ConfigurationError(f"Invalid table in {path}: {e}") from e

        names = [t.name for t in tables]
        if len(set(names)) != len(names):
            raise ConfigurationError(f"Duplicate table names in {path}")
        return tables

    def staging_name(self, table: TableSpec | str) -> str:
        """Name of the staging table paired with ``table``."""
        name = table.name if isinstance(table, TableSpec) else table
        return f"{name}{self.sync.staging_suffix}"

    def validate_credentials(self) -> list[str]:
        """Validate that required connection settings are present. Returns list of errors."""
        errors = []
        for side, db in (("source", self.source), ("destination", self.destination)):
            for name in db.missing():
                errors.append(f"{side}.{name} is required")
        return errors

    def masked(self) -> dict[str, Any]:
        """Settings as a plain dict with passwords redacted."""
        data = self.model_dump(mode="json", by_alias=True)
        for side in ("source", "destination"):
            data[side]["password"] = "***REDACTED***"
        return data


def _read_structured_file(path: Path) -> Any:
    if not path.exists():
        raise ConfigurationError(f"Config file not found: {path}")

    content = path.read_text()
    try:
        if path.suffix in (".toml", ".tml"):
            import tomllib
            return tomllib.loads(content)
        if path.suffix == ".json":
            return json.loads(content)
    except ValueError as e:
        raise ConfigurationError(f"Could not parse {path}: {e}") from e
    raise ConfigurationError(f"Unsupported config format: {path.suffix}")


def load_settings(
    config_file: Path | str | None = None,
    **overrides: Any,
) -> Settings:
    """
    Load settings with optional config file and overrides.

    Args:
        config_file: Optional path to config file
        **overrides: Settings to override (highest priority)

    Returns:
        Configured Settings instance
    """
    if config_file:
        settings = Settings.from_file(config_file)
        if overrides:
            data = settings.model_dump(by_alias=True)
            data.update(overrides)
            return Settings.model_validate(data)
        return settings
    return Settings(**overrides)
