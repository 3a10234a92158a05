"""
View Sync CLI - Command Line Interface.

Commands:
    run      Incrementally sync a view into its target table
    verify   Compare the whole view with the target table
    status   Show committed watermarks
    reset    Forget a watermark (next run resyncs everything)
    track    Install change-tracking triggers on a base table
    untrack  Remove change-tracking triggers
    config   Manage configuration
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional

import typer
from rich.console import Console
from rich.table import Table

from view_sync import __version__
from view_sync.config import MissingSlicePolicy, Settings, StateBackend, load_settings
from view_sync.connectors.sqlite import SQLiteConnector
from view_sync.core.changes import install_change_tracking, uninstall_change_tracking
from view_sync.core.engine import SyncEngine, create_version_store
from view_sync.errors import ViewSyncError
from view_sync.utils.display import (
    ProgressDisplay,
    print_error,
    print_info,
    print_mismatches,
    print_success,
    print_summary,
    print_warning,
)
from view_sync.utils.logger import setup_logging


app = typer.Typer(
    name="view-sync",
    help="Incremental materialization of SQLite views into tables.",
    add_completion=True,
    rich_markup_mode="rich",
)

console = Console()


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"[bold cyan]view-sync[/bold cyan] version {__version__}")
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
    """View Sync - incremental view materialization."""
    pass


# =============================================================================
# RUN Command
# =============================================================================
@app.command()
def run(
    database: Path = typer.Option(
        None,
        "--database",
        "-d",
        help="Path to the SQLite database (overrides config).",
        exists=True,
        dir_okay=False,
    ),
    view: str = typer.Option(
        None,
        "--view",
        help="Source view to materialize.",
    ),
    target: str = typer.Option(
        None,
        "--target",
        "-t",
        help="Target table.",
    ),
    changes: str = typer.Option(
        None,
        "--changes",
        help="Change log relation (key columns + version column).",
    ),
    version_column: str = typer.Option(
        None,
        "--version-column",
        help="Version column of the change log.",
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
    state_backend: Optional[StateBackend] = typer.Option(
        None,
        "--state",
        help="Watermark store backend.",
    ),
    state_file: Optional[Path] = typer.Option(
        None,
        "--state-file",
        help="Watermark file (json backend).",
    ),
    on_missing: Optional[MissingSlicePolicy] = typer.Option(
        None,
        "--on-missing",
        help="What to do when the view no longer has a changed key.",
    ),
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Decide changes without writing or committing.",
    ),
    verify: bool = typer.Option(
        False,
        "--verify/--no-verify",
        help="Compare the whole view with the target after the run.",
    ),
    quiet: bool = typer.Option(
        False,
        "--quiet",
        "-q",
        help="Minimal output.",
    ),
) -> None:
    """
    Sync the rows of a view that changed since the last run.

    Example:
        view-sync run -d reports.db --view sales_pivot --target rpt_sales_pivot --changes sales_changes
    """
    settings = _load(
        config_file,
        database=database,
        view=view,
        target=target,
        changes=changes,
        version_column=version_column,
        state_backend=state_backend,
        state_file=state_file,
        on_missing=on_missing,
        dry_run=dry_run or None,
        verify=verify or None,
    )
    _require_targets(settings)

    setup_logging(
        level="WARNING" if quiet else settings.logging.level,
        log_file=settings.logging.file,
        format_style=settings.logging.format,
        max_file_size_mb=settings.logging.max_file_size_mb,
        backup_count=settings.logging.backup_count,
        target=settings.target_table,
    )

    if settings.sync.dry_run:
        print_warning("DRY RUN - No changes will be made")

    display = ProgressDisplay() if not quiet else None

    with SQLiteConnector(settings.database_path) as db:
        engine = SyncEngine.from_settings(settings, db)
        try:
            if display:
                display.start(settings.target_table)
            try:
                stats = engine.execute(on_progress=display.update if display else None)
            finally:
                if display:
                    display.stop()

            result = engine.verify() if settings.sync.verify_after_sync else None
        except ViewSyncError as e:
            print_error(str(e))
            raise typer.Exit(1)

    if not quiet:
        console.print()
        print_summary(stats)

    if stats.probe_failed:
        print_warning("Change version probe failed; watermark reset to 0.")
    if stats.history_reset:
        print_warning("Change version went backwards; change history replayed from 0.")

    if result is not None and not result.match:
        print_mismatches(result)
        raise typer.Exit(1)

    if stats.committed:
        print_success(f"{settings.target_table} is up to date.")


# =============================================================================
# VERIFY Command
# =============================================================================
@app.command()
def verify(
    database: Path = typer.Option(
        None,
        "--database",
        "-d",
        help="Path to the SQLite database.",
        exists=True,
        dir_okay=False,
    ),
    view: str = typer.Option(None, "--view", help="Source view."),
    target: str = typer.Option(None, "--target", "-t", help="Target table."),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
) -> None:
    """Compare every row of the view with the target table."""
    settings = _load(config_file, database=database, view=view, target=target)
    if settings.database_path is None or not settings.source_view or not settings.target_table:
        print_error("database_path, source_view and target_table are required")
        raise typer.Exit(1)
    _require_database(settings)

    print_info("Verifying data integrity...")
    with SQLiteConnector(settings.database_path, readonly=True) as db:
        engine = SyncEngine.from_settings(settings, db)
        try:
            result = engine.verify()
        except ViewSyncError as e:
            print_error(str(e))
            raise typer.Exit(1)

    if result.match:
        print_success(result.message)
    else:
        print_mismatches(result)
        raise typer.Exit(1)


# =============================================================================
# STATUS Command
# =============================================================================
@app.command()
def status(
    database: Path = typer.Option(
        None,
        "--database",
        "-d",
        help="Path to the SQLite database.",
        exists=True,
        dir_okay=False,
    ),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
    state_backend: Optional[StateBackend] = typer.Option(
        None,
        "--state",
        help="Watermark store backend.",
    ),
    state_file: Optional[Path] = typer.Option(
        None,
        "--state-file",
        help="Watermark file (json backend).",
    ),
) -> None:
    """Show committed watermarks."""
    settings = _load(
        config_file,
        database=database,
        state_backend=state_backend,
        state_file=state_file,
    )
    if settings.database_path is None:
        print_error("database_path is required")
        raise typer.Exit(1)
    _require_database(settings)

    with SQLiteConnector(settings.database_path, readonly=True) as db:
        entries = create_version_store(settings, db).entries()

    if not entries:
        print_info("No watermarks committed yet. Run a sync first.")
        raise typer.Exit(0)

    table = Table(title="Sync Status", border_style="blue")
    table.add_column("Key", style="cyan")
    table.add_column("Version", justify="right")
    table.add_column("Updated")

    for entry in entries:
        table.add_row(entry.key, str(entry.version), entry.updated_at)

    console.print(table)


# =============================================================================
# RESET Command
# =============================================================================
@app.command()
def reset(
    database: Path = typer.Option(
        None,
        "--database",
        "-d",
        help="Path to the SQLite database.",
        exists=True,
        dir_okay=False,
    ),
    target: str = typer.Option(None, "--target", "-t", help="Target table."),
    config_file: Path = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file.",
        exists=True,
    ),
    state_backend: Optional[StateBackend] = typer.Option(
        None,
        "--state",
        help="Watermark store backend.",
    ),
    state_file: Optional[Path] = typer.Option(
        None,
        "--state-file",
        help="Watermark file (json backend).",
    ),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation.",
    ),
) -> None:
    """Forget the watermark of a target; the next run resyncs every change."""
    settings = _load(
        config_file,
        database=database,
        target=target,
        state_backend=state_backend,
        state_file=state_file,
    )
    if settings.database_path is None or not settings.target_table:
        print_error("database_path and target_table are required")
        raise typer.Exit(1)
    _require_database(settings)

    if not yes:
        typer.confirm(f"Reset watermark {settings.state_key}?", abort=True)

    with SQLiteConnector(settings.database_path) as db:
        create_version_store(settings, db).delete(settings.state_key)

    print_success(f"Watermark {settings.state_key} cleared.")


# =============================================================================
# TRACK / UNTRACK Commands
# =============================================================================
@app.command()
def track(
    database: Path = typer.Option(
        ...,
        "--database",
        "-d",
        help="Path to the SQLite database.",
        exists=True,
        dir_okay=False,
    ),
    table: str = typer.Option(..., "--table", help="Base table to track."),
    changes: Optional[str] = typer.Option(
        None,
        "--changes",
        help="Change log table (default: <table>_changes).",
    ),
    keys: Optional[list[str]] = typer.Option(
        None,
        "--key",
        help="Column to log (can be repeated; default: primary key).",
    ),
) -> None:
    """Install change-tracking triggers on a base table."""
    with SQLiteConnector(database) as db:
        try:
            log = install_change_tracking(db, table, changes, key_columns=keys)
        except ViewSyncError as e:
            print_error(str(e))
            raise typer.Exit(1)

    print_success(f"Tracking {table} into {log}")


@app.command()
def untrack(
    database: Path = typer.Option(
        ...,
        "--database",
        "-d",
        help="Path to the SQLite database.",
        exists=True,
        dir_okay=False,
    ),
    table: str = typer.Option(..., "--table", help="Tracked base table."),
    changes: Optional[str] = typer.Option(
        None,
        "--changes",
        help="Change log table (default: <table>_changes).",
    ),
    drop_log: bool = typer.Option(
        False,
        "--drop-log",
        help="Also drop the change log table.",
    ),
) -> None:
    """Remove change-tracking triggers from a base table."""
    with SQLiteConnector(database) as db:
        uninstall_change_tracking(db, table, changes, drop_log=drop_log)

    print_success(f"Stopped tracking {table}")


# =============================================================================
# CONFIG Command
# =============================================================================
@app.command()
def config(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration.",
    ),
    init: bool = typer.Option(
        False,
        "--init",
        help="Write a default config file.",
    ),
    output: Path = typer.Option(
        Path("view-sync.toml"),
        "--output",
        "-o",
        help="Output path for config file.",
    ),
) -> None:
    """Manage configuration."""
    if init:
        Settings().to_file(output)
        print_success(f"Generated config file: {output}")
        return

    if show:
        settings = Settings()
        table = Table(title="Current Configuration", border_style="cyan")
        table.add_column("Setting", style="cyan")
        table.add_column("Value")

        not_set = "[dim]not set[/dim]"
        table.add_row("Database", str(settings.database_path or not_set))
        table.add_row("Source View", settings.source_view or not_set)
        table.add_row("Target Table", settings.target_table or not_set)
        table.add_row("Changes", settings.changes_table or not_set)
        table.add_row("Version Column", settings.version_column)
        table.add_row("State Backend", settings.state.backend.value)
        table.add_row("Watermark Key", settings.state_key)
        table.add_row("On Missing Slice", settings.sync.on_missing.value)

        console.print(table)
        return

    console.print("Use --show to view config or --init to create config file.")


# =============================================================================
# Helper Functions
# =============================================================================
def _load(config_file: Path | None = None, **overrides: Any) -> Settings:
    """Build settings from config file (or environment) and CLI overrides."""
    try:
        settings = load_settings(config_file) if config_file else Settings()
    except ValueError as e:
        print_error(str(e))
        raise typer.Exit(1)

    if overrides.get("database"):
        settings.database_path = overrides["database"]
    if overrides.get("view"):
        settings.source_view = overrides["view"]
    if overrides.get("target"):
        settings.target_table = overrides["target"]
    if overrides.get("changes"):
        settings.changes_table = overrides["changes"]
    if overrides.get("version_column"):
        settings.version_column = overrides["version_column"]
    if overrides.get("state_backend"):
        settings.state.backend = overrides["state_backend"]
    if overrides.get("state_file"):
        settings.state.file = overrides["state_file"]
    if overrides.get("on_missing"):
        settings.sync.on_missing = overrides["on_missing"]
    if overrides.get("dry_run") is not None:
        settings.sync.dry_run = overrides["dry_run"]
    if overrides.get("verify") is not None:
        settings.sync.verify_after_sync = overrides["verify"]

    return settings


def _require_targets(settings: Settings) -> None:
    errors = settings.validate_targets()
    if errors:
        for err in errors:
            print_error(err)
        print_info("Use --help for configuration options.")
        raise typer.Exit(1)


def _require_database(settings: Settings) -> None:
    if settings.database_path is not None and not settings.database_path.is_file():
        print_error(f"database not found: {settings.database_path}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
