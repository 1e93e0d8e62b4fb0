"""
pg-sync CLI - Command Line Interface.

Incremental, deduplicating PostgreSQL -> PostgreSQL table replication.

Commands:
    run     Sync every configured table (cron entry point)
    status  Show stored watermarks
    check   Show which tables would be fully resynced
    verify  Compare row counts and look for duplicate keys
    reset   Forget a table's watermark (forces a full resync)
    config  Show the effective configuration
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from pg_sync import __version__
from pg_sync.config import Settings, TableSpec, load_settings
from pg_sync.connectors.postgres import PostgresConnector
from pg_sync.core.engine import SyncEngine, TableSyncEngine
from pg_sync.core.integrity import IntegrityChecker
from pg_sync.core.state import WatermarkStore
from pg_sync.exceptions import SyncError
from pg_sync.utils.display import (
    RunDisplay,
    print_error,
    print_info,
    print_results,
    print_success,
    print_summary,
    print_warning,
)
from pg_sync.utils.logger import setup_logging


app = typer.Typer(
    name="pg-sync",
    help="Incremental PostgreSQL to PostgreSQL table replication.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]pg-sync[/bold cyan] version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """pg-sync - incremental, deduplicating table replication."""
    pass


ConfigOption = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to config file (TOML or JSON).",
    exists=True,
    dir_okay=False,
)
TablesOption = typer.Option(
    None,
    "--table",
    "-t",
    help="Only these configured tables (can be repeated).",
)


# =============================================================================
# RUN Command
# =============================================================================
@app.command()
def run(
    config_file: Optional[Path] = ConfigOption,
    tables: Optional[list[str]] = TablesOption,
    tables_file: Optional[Path] = typer.Option(
        None,
        "--tables-file",
        help="Tables file (overrides config).",
    ),
    state_dir: Optional[Path] = typer.Option(
        None,
        "--state-dir",
        help="Watermark directory (overrides config).",
    ),
    page_size: Optional[int] = typer.Option(
        None,
        "--page-size",
        help="Rows per incremental page (overrides config).",
    ),
    verify: Optional[bool] = typer.Option(
        None,
        "--verify/--no-verify",
        help="Check counts and duplicate keys after each table.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output.",
    ),
) -> None:
    """
    Sync every configured table, in order.

    Exits with status 1 when any table fails.

    Example:
        pg-sync run --config pg-sync.toml
    """
    settings = _load(
        config_file,
        tables_file=tables_file,
        state_dir=state_dir,
        page_size=page_size,
        verify=verify,
    )
    _require_credentials(settings)

    setup_logging(
        level="WARNING" if quiet else settings.logging.level,
        log_file=settings.logging.file,
        format_style=settings.logging.format,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
    )

    selected = _select_tables(settings, tables)
    engine = SyncEngine(settings)

    display = RunDisplay() if not quiet and settings.logging.format == "rich" else None
    try:
        if display:
            display.start(
                pipeline=settings.notify.pipeline_name,
                source=settings.source.label,
                destination=settings.destination.label,
                total_tables=len(selected),
            )
        stats = engine.run(selected, on_progress=display.update if display else None)
    finally:
        if display:
            display.stop()

    if not quiet:
        console.print()
        print_results(stats.results)
        print_summary({
            "pipeline": settings.notify.pipeline_name,
            "duration": stats.duration_seconds,
            "tables_processed": stats.tables_processed,
            "tables_total": stats.tables_total,
            "full_resyncs": stats.full_resyncs,
            "rows_fetched": stats.rows_fetched,
            "notified": stats.notified,
        })

    if not stats.success:
        for err in stats.errors:
            print_error(err)
        raise typer.Exit(1)

    print_success("Sync completed successfully!")


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(
    config_file: Optional[Path] = ConfigOption,
    state_dir: Optional[Path] = typer.Option(
        None,
        "--state-dir",
        help="Watermark directory (overrides config).",
    ),
) -> None:
    """Show stored watermarks."""
    settings = _load(config_file, state_dir=state_dir)
    store = WatermarkStore(settings.sync.state_dir)

    try:
        watermarks = store.list_all()
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not watermarks:
        print_info(f"No watermarks in {store.state_dir}. Run a sync first.")
        raise typer.Exit(0)

    table = Table(title="Watermarks", border_style="blue")
    table.add_column("Table", style="cyan")
    table.add_column("Kind")
    table.add_column("Watermark")
    table.add_column("Updated")

    for name, wm in watermarks.items():
        table.add_row(name, wm.kind.value, str(wm), wm.updated_at or "-")

    console.print(table)


# =============================================================================
# CHECK Command
# =============================================================================
@app.command()
def check(
    config_file: Optional[Path] = ConfigOption,
    tables: Optional[list[str]] = TablesOption,
) -> None:
    """Compare source tables with their staging tables. Changes nothing."""
    settings = _load(config_file)
    _require_credentials(settings)
    selected = _select_tables(settings, tables)

    result = Table(title="Schema Check", border_style="blue")
    result.add_column("Table", style="cyan")
    result.add_column("Next run")
    result.add_column("Reason")

    try:
        with _source(settings) as src, _destination(settings) as dst:
            engine = TableSyncEngine.from_settings(settings, src, dst)
            for spec in selected:
                differences = engine.check(spec)
                if differences:
                    result.add_row(spec.name, "[yellow]full resync[/yellow]", "; ".join(differences))
                else:
                    result.add_row(spec.name, "[green]incremental[/green]", "")
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(result)


# =============================================================================
# VERIFY Command
# =============================================================================
@app.command()
def verify(
    config_file: Optional[Path] = ConfigOption,
    tables: Optional[list[str]] = TablesOption,
) -> None:
    """Compare row counts and look for duplicate unique keys in destination."""
    settings = _load(config_file)
    _require_credentials(settings)
    selected = _select_tables(settings, tables)
    checker = IntegrityChecker()

    result = Table(title="Verification", border_style="blue")
    result.add_column("Table", style="cyan")
    result.add_column("Source", justify="right")
    result.add_column("Destination", justify="right")
    result.add_column("Duplicate keys", justify="right")
    result.add_column("Result")

    failures = 0
    try:
        with _source(settings) as src, _destination(settings) as dst:
            for spec in selected:
                v = checker.verify_table(src, dst, spec)
                if v.duplicate_keys:
                    failures += 1
                result.add_row(
                    v.table,
                    f"{v.source_count:,}",
                    f"{v.dest_count:,}",
                    str(v.duplicate_keys),
                    "[green]ok[/green]" if v.ok else f"[yellow]{v.message}[/yellow]",
                )
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    console.print(result)
    if failures:
        print_warning(f"{failures} table(s) hold duplicate unique keys")
        raise typer.Exit(1)


# =============================================================================
# RESET Command
# =============================================================================
@app.command()
def reset(
    table: str = typer.Argument(..., help="Table whose watermark to forget."),
    config_file: Optional[Path] = ConfigOption,
    state_dir: Optional[Path] = typer.Option(
        None,
        "--state-dir",
        help="Watermark directory (overrides config).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Forget a table's watermark; its next run does a full resync."""
    settings = _load(config_file, state_dir=state_dir)
    store = WatermarkStore(settings.sync.state_dir)

    try:
        store.path_for(table)
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not yes:
        typer.confirm(
            f"Forget watermark for {table}? Its next run copies the whole table.",
            abort=True,
        )

    if store.delete(table):
        print_success(f"Watermark for {table} removed")
    else:
        print_info(f"No watermark stored for {table}")


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    config_file: Optional[Path] = ConfigOption,
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
) -> None:
    """Show the effective configuration (passwords masked)."""
    if not show:
        console.print("Use --show to view the effective configuration.")
        return

    settings = _load(config_file)
    console.print_json(json.dumps(settings.masked()))

    try:
        tables = settings.load_tables()
    except SyncError as e:
        print_warning(str(e))
        return

    table = Table(title="Tables", border_style="cyan")
    table.add_column("Table", style="cyan")
    table.add_column("Replication key")
    table.add_column("Unique columns")
    for spec in tables:
        table.add_row(spec.name, spec.replication_key, ", ".join(spec.unique_cols))
    console.print(table)


# =============================================================================
# Helper Functions
# =============================================================================
def _load(config_file: Path | None = None, **overrides: Any) -> Settings:
    """Build settings from config file and CLI overrides."""
    try:
        settings = load_settings(config_file) if config_file else Settings()
    except (SyncError, ValueError) as e:
        print_error(str(e))
        raise typer.Exit(1)

    if overrides.get("tables_file"):
        settings.sync.tables_file = overrides["tables_file"]
    if overrides.get("state_dir"):
        settings.sync.state_dir = overrides["state_dir"]
    if overrides.get("page_size"):
        settings.sync.page_size = overrides["page_size"]
    if overrides.get("verify") is not None:
        settings.sync.verify_after_sync = overrides["verify"]

    return settings


def _require_credentials(settings: Settings) -> None:
    errors = settings.validate_credentials()
    if errors:
        for err in errors:
            print_error(err)
        print_info("Set PG_SYNC_SOURCE__HOST etc. or use --config.")
        raise typer.Exit(1)


def _select_tables(settings: Settings, names: list[str] | None) -> list[TableSpec]:
    try:
        tables = settings.load_tables()
    except SyncError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if not names:
        return tables

    known = {t.name for t in tables}
    unknown = [n for n in names if n not in known]
    if unknown:
        print_error(f"Not configured: {', '.join(unknown)}")
        raise typer.Exit(1)
    # keep configured order
    return [t for t in tables if t.name in names]


def _source(settings: Settings) -> PostgresConnector:
    return PostgresConnector(settings.source, readonly=True, name="source")


def _destination(settings: Settings) -> PostgresConnector:
    return PostgresConnector(settings.destination, readonly=True, name="destination")


if __name__ == "__main__":
    app()
