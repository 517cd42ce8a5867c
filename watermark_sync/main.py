from __future__ import annotations

import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from watermark_sync.config import get_settings
from watermark_sync.domain.errors import SyncError
from watermark_sync.infrastructure.db_factory import get_sync_connection
from watermark_sync.orchestrator import run_sync
from watermark_sync.reporter import load_latest, persist_results, print_results
from watermark_sync.stores.postgres import PostgresWatermarkStore, create_schema
from watermark_sync.utils.logging import configure_logging

app = typer.Typer(help="Watermark-driven incremental sync CLI.")


def _setup_logging() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"source={settings.source_table} destination={settings.destination_table} "
        f"watermarks={settings.watermark_table} | batch={settings.batch_size} "
        f"floor={settings.watermark_floor.isoformat()} policy={settings.failure_policy} "
        f"lock={settings.use_run_lock}"
    )


@app.command("init-db")
def init_db() -> None:
    """
    Create the source, destination and watermark tables if they do not exist.
    """
    _setup_logging()
    with get_sync_connection() as conn:
        conn.autocommit = True
        create_schema(conn, get_settings())
    typer.echo("Schema ready.")


@app.command("seed-watermark")
def seed_watermark(
    source: str = typer.Argument(..., help="Source name (watermark key), e.g. 'orders'."),
    value: Optional[datetime] = typer.Option(
        None,
        "--value",
        help="Initial marker; must be lower than the earliest last_modified in the source.",
    ),
) -> None:
    """
    Create the watermark entry for a source unless it already exists.
    """
    _setup_logging()
    settings = get_settings()
    marker = value or settings.watermark_floor
    with get_sync_connection() as conn:
        conn.autocommit = True
        store = PostgresWatermarkStore(conn, table=settings.watermark_table)
        created = store.seed(source, marker)
    if created:
        typer.echo(f"Seeded '{source}' at {marker.isoformat()}.")
    else:
        typer.echo(f"Watermark for '{source}' already exists; left unchanged.")


@app.command("show-watermarks")
def show_watermarks() -> None:
    """
    List every tracked source and its current marker.
    """
    _setup_logging()
    settings = get_settings()
    with get_sync_connection() as conn:
        conn.autocommit = True
        entries = PostgresWatermarkStore(conn, table=settings.watermark_table).entries()

    console = Console()
    if not entries:
        console.print("[yellow]No watermarks stored.[/yellow]")
        return
    table = Table(title="Watermarks")
    table.add_column("Source", style="cyan")
    table.add_column("Marker")
    for entry in entries:
        table.add_row(entry.source_name, entry.marker_value.isoformat())
    console.print(table)


@app.command()
def sync(
    source: str = typer.Argument(..., help="Source name (watermark key), e.g. 'orders'."),
    tolerant: bool = typer.Option(
        False,
        "--tolerant",
        help="Report failures in the result instead of raising.",
    ),
    lock: Optional[bool] = typer.Option(
        None,
        "--lock/--no-lock",
        help="Guard the run with a PostgreSQL advisory lock (default from settings).",
    ),
    persist: bool = typer.Option(
        True,
        "--persist/--no-persist",
        help="Write the result to the results directory.",
    ),
    results_dir: Path = typer.Option(
        Path("results"),
        "--results-dir",
        help="Directory for latest.json and the run archive.",
    ),
) -> None:
    """
    Run one incremental synchronization for SOURCE.
    """
    _setup_logging()
    try:
        result = run_sync(
            source,
            failure_policy="tolerant" if tolerant else None,
            use_run_lock=lock,
        )
    except SyncError as exc:
        typer.echo(f"Sync failed ({type(exc).__name__}): {exc}", err=True)
        raise typer.Exit(code=1)

    if persist:
        persist_results([result], results_dir)
    print_results([result])
    if result.get("status") != "success":
        raise typer.Exit(code=1)


@app.command("last-run")
def last_run(
    results_dir: Path = typer.Option(
        Path("results"),
        "--results-dir",
        help="Directory written by `sync --persist`.",
    ),
) -> None:
    """
    Show the most recently persisted sync result.
    """
    print_results(load_latest(results_dir))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
