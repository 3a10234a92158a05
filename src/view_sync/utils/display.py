"""
Rich Terminal Display Components.

Console output for the CLI:
- Per-key progress bar
- Run summary and verification tables
- Status messages
"""

from __future__ import annotations

from typing import Any

from rich.console import Console
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeRemainingColumn,
)
from rich.table import Table


console = Console()


class ProgressDisplay:
    """
    Progress bar over the changed keys of one run.

    Example:
        with ProgressDisplay() as display:
            display.start("rpt_sales")
            engine.execute(on_progress=display.update)
    """

    def __init__(self) -> None:
        self.progress = Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            MofNCompleteColumn(),
            TimeRemainingColumn(),
            console=console,
        )
        self._task_id: Any = None

    def start(self, target: str) -> None:
        """Start the progress display."""
        self._task_id = self.progress.add_task(f"[cyan]{target}", total=None)
        self.progress.start()

    def update(self, stats: Any) -> None:
        """Progress callback for SyncEngine.execute."""
        if self._task_id is not None:
            self.progress.update(
                self._task_id,
                total=stats.keys_total,
                completed=stats.keys_processed,
            )

    def stop(self) -> None:
        """Stop the progress display."""
        self.progress.stop()

    def __enter__(self) -> "ProgressDisplay":
        return self

    def __exit__(self, *args: Any) -> None:
        self.stop()


def print_summary(stats: Any) -> None:
    """Print a summary table after a run."""
    table = Table(title="Sync Summary", border_style="green")

    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")

    table.add_row("Target", stats.target)
    table.add_row("Duration", f"{stats.duration_seconds:.2f}s")
    table.add_row("Changed Keys", f"{stats.keys_total:,}")
    table.add_row("Rate", f"{stats.keys_per_second:,.0f} keys/s")
    table.add_row("Inserted", f"{stats.inserted:,}")
    table.add_row("Updated", f"{stats.updated:,}")
    table.add_row("Deleted", f"{stats.deleted:,}")
    table.add_row("Skipped", f"{stats.skipped + stats.unchanged:,}")
    table.add_row("Previous Version", str(stats.previous_version))
    committed = (
        str(stats.committed_version)
        if stats.committed_version is not None
        else "[dim]not committed[/dim]"
    )
    table.add_row("Committed Version", committed)

    console.print(table)


def print_mismatches(result: Any, limit: int = 20) -> None:
    """Print verification differences."""
    table = Table(title=result.message, border_style="red")
    table.add_column("Type", style="cyan")
    table.add_column("Key")

    for mismatch in result.mismatches[:limit]:
        table.add_row(mismatch["type"], ", ".join(map(str, mismatch["key"])))

    console.print(table)
    if len(result.mismatches) > limit:
        print_info(f"... and {len(result.mismatches) - limit} more")


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
