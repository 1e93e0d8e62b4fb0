"""
Rich Terminal Display Components.

Provides console UI for:
- Live run progress (tables done, current table)
- Per-table result tables
- Status and summary reports
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Iterable

from rich.console import Console, Group
from rich.live import Live
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from rich.text import Text

if TYPE_CHECKING:
    from pg_sync.core.engine import SyncStats, TableResult


console = Console()


class RunDisplay:
    """
    Live terminal panel for a sync run.

    Example:
        display = RunDisplay()
        display.start(pipeline="nightly", source="...", destination="...", total_tables=3)
        engine.run(on_progress=display.update)
        display.stop()
    """

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=console,
        )
        self._live: Live | None = None
        self._task_id: Any = None
        self._info: dict[str, Any] = {}
        self._stats: SyncStats | None = None

    def start(
        self,
        pipeline: str,
        source: str,
        destination: str,
        total_tables: int,
    ) -> None:
        """Start the progress display."""
        self._info = {
            "pipeline": pipeline,
            "source": source,
            "destination": destination,
        }
        self._task_id = self.progress.add_task("[cyan]Tables", total=total_tables)
        self._live = Live(
            self._build_display(),
            console=console,
            refresh_per_second=4,
        )
        self._live.start()

    def stop(self) -> None:
        """Stop the progress display."""
        if self._live:
            self._live.stop()
            self._live = None

    def update(self, stats: SyncStats) -> None:
        """Progress callback for SyncEngine.run()."""
        self._stats = stats
        if self._task_id is not None:
            self.progress.update(
                self._task_id,
                completed=stats.tables_processed,
                total=stats.tables_total or None,
            )
        if self._live:
            self._live.update(self._build_display())

    def _build_display(self) -> Panel:
        title = f"[bold white]pg-sync - {self._info.get('pipeline', '')}[/bold white]"

        info_table = Table.grid(padding=(0, 2))
        info_table.add_column(style="dim")
        info_table.add_column()
        info_table.add_row("Source:", self._info.get("source", ""))
        info_table.add_row("Destination:", self._info.get("destination", ""))

        stats = self._stats
        stats_table = Table.grid(padding=(0, 3))
        for _ in range(3):
            stats_table.add_column(justify="center")
        stats_table.add_row(
            f"[green]Rows fetched:[/green] {stats.rows_fetched if stats else 0:,}",
            f"[yellow]Full resyncs:[/yellow] {stats.full_resyncs if stats else 0}",
            f"[red]Failed:[/red] {stats.tables_failed if stats else 0}",
        )

        status_text = Text()
        if stats and stats.current_table:
            status_text.append("Current: ", style="dim")
            status_text.append(stats.current_table, style="bold cyan")

        return Panel(
            Group(info_table, Text(), self.progress, Text(), stats_table, status_text),
            title=title,
            border_style="blue",
            padding=(1, 2),
        )

    def __enter__(self) -> "RunDisplay":
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


def print_results(results: Iterable[TableResult]) -> None:
    """Per-table outcome table."""
    table = Table(title="Tables", border_style="blue")
    table.add_column("Table", style="cyan")
    table.add_column("Mode")
    table.add_column("Fetched", justify="right")
    table.add_column("Replaced", justify="right")
    table.add_column("Watermark")
    table.add_column("Time", justify="right")

    for r in results:
        mode = "[yellow]full resync[/yellow]" if r.mode == "full_resync" else "incremental"
        table.add_row(
            r.table,
            mode,
            f"{r.rows_fetched:,}",
            f"{r.rows_deleted:,}",
            r.watermark_after or "-",
            f"{r.duration_seconds:.1f}s",
        )

    console.print(table)


def print_summary(stats: dict[str, Any]) -> None:
    """Print a summary table after sync completion."""
    table = Table(title="Sync Summary", border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Pipeline", stats.get("pipeline", "N/A"))
    table.add_row("Duration", f"{stats.get('duration', 0):.1f}s")
    table.add_row("Tables", f"{stats.get('tables_processed', 0)}/{stats.get('tables_total', 0)}")
    table.add_row("Full Resyncs", str(stats.get("full_resyncs", 0)))
    table.add_row("Rows Fetched", f"{stats.get('rows_fetched', 0):,}")
    table.add_row("Notified", "yes" if stats.get("notified") else "no")

    console.print(table)


def print_error(message: str) -> None:
    """Print an error message."""
    console.print(f"[red bold]Error:[/red bold] {message}")


def print_success(message: str) -> None:
    """Print a success message."""
    console.print(f"[green bold]✓[/green bold] {message}")


def print_warning(message: str) -> None:
    """Print a warning message."""
    console.print(f"[yellow bold]⚠[/yellow bold] {message}")


def print_info(message: str) -> None:
    """Print an info message."""
    console.print(f"[blue]ℹ[/blue] {message}")
