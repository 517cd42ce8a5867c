"""
Rendering and persistence of sync results.

`print_results` draws a rich table for the CLI; `persist_results` keeps a run
history on disk:
- `<dir>/latest.json` (last run)
- `<dir>/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from rich import box
from rich.console import Console
from rich.table import Table

from watermark_sync.domain.models import SyncResult
from watermark_sync.utils.logging import get_logger

log = get_logger(__name__)


def _marker_cell(result: SyncResult) -> str:
    if result.get("status") != "success":
        return "[dim]unchanged[/dim]"
    if result.get("marker_changed"):
        return f"{result.get('previous_marker') or '-'} → [bold]{result.get('new_marker')}[/bold]"
    return f"{result.get('previous_marker') or '-'} [dim](unchanged)[/dim]"


def print_results(results: Sequence[SyncResult], console: Optional[Console] = None) -> None:
    """
    Render sync results as a rich table.
    """
    console = console or Console()

    if not results:
        console.print("[yellow]No results to display.[/yellow]")
        return

    table = Table(title="Incremental Sync Results", box=box.ROUNDED, show_lines=False)
    table.add_column("Source", style="cyan", no_wrap=True)
    table.add_column("Status")
    table.add_column("Applied", justify="right")
    table.add_column("Inserted", justify="right")
    table.add_column("Updated", justify="right")
    table.add_column("Watermark")
    table.add_column("Duration (s)", justify="right")

    for result in results:
        ok = result.get("status") == "success"
        status = "[green]success[/green]" if ok else f"[red]failed[/red] ({result.get('error_type')})"
        table.add_row(
            result.get("source_name", "?"),
            status,
            str(result.get("rows_applied", 0)),
            str(result.get("inserted", 0)),
            str(result.get("updated", 0)),
            _marker_cell(result),
            f"{result.get('duration_seconds', 0.0):.3f}",
        )

    console.print(table)
    for result in results:
        if result.get("error"):
            console.print(f"[red]{result.get('source_name')}:[/red] {result['error']}")
        if result.get("partial_write"):
            console.print(f"[yellow]{result.get('source_name')}:[/yellow] {result.get('notes')}")


def persist_results(results: Sequence[SyncResult], results_dir: Path | str) -> Path:
    """
    Write the results to `latest.json` plus a timestamped archive.

    Returns the archive path.
    """
    results_dir = Path(results_dir)
    results_dir.mkdir(parents=True, exist_ok=True)
    now = datetime.now(timezone.utc)
    payload: Dict[str, Any] = {
        "timestamp": now.isoformat(),
        "results": [dict(result) for result in results],
    }

    latest_path = results_dir / "latest.json"
    archive_path = results_dir / f"run-{now.strftime('%Y%m%dT%H%M%S%fZ')}.json"
    for path in (latest_path, archive_path):
        with path.open("w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2, sort_keys=True, default=str)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})
    return archive_path


def load_latest(results_dir: Path | str) -> List[SyncResult]:
    """Read back the results written by the most recent `persist_results` call."""
    latest_path = Path(results_dir) / "latest.json"
    if not latest_path.exists():
        return []
    with latest_path.open("r", encoding="utf-8") as f:
        return json.load(f)["results"]


__all__ = ["load_latest", "persist_results", "print_results"]
