"""
CLI interface for jevons.

Provides command-line access to the sync pipeline and the report store.
"""

import json
import logging
import sys
import time
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from jevons.config.loader import TrackerConfig, default_config, load_config, with_overrides
from jevons.core.reconcile import discover_session_files
from jevons.core.sync import SyncError, run_sync
from jevons.core.totals import range_to_seconds, summarize
from jevons.storage.models import SyncResult
from jevons.storage.tsv import read_events_tsv

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _config_option():
    return typer.Option(
        None,
        "--config",
        "-c",
        help="YAML file with data_root, source_dir and account_file"
    )


def _data_root_option():
    return typer.Option(
        None,
        "--data-root",
        "-d",
        help="Directory the reports are written to"
    )


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format=LOG_FORMAT,
    )


def _resolve_config(
    config_file: Optional[Path],
    data_root: Optional[Path] = None,
    source_dir: Optional[Path] = None,
) -> TrackerConfig:
    """Load the config file (or defaults) and apply command-line overrides."""
    try:
        config = load_config(config_file) if config_file else default_config()
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    return with_overrides(config, data_root=data_root, source_dir=source_dir)


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context):
    """jevons - token usage reports from assistant transcripts."""
    if ctx.invoked_subcommand is None:
        console.print("jevons - Use --help to see available commands")


@app.command()
def sync(
    config_file: Optional[Path] = _config_option(),
    source: Optional[Path] = typer.Option(
        None,
        "--source",
        "-s",
        help="Directory containing <project>/<session>.jsonl transcripts"
    ),
    data_root: Optional[Path] = _data_root_option(),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every skipped record and file"
    ),
):
    """
    Rebuild the report store from transcripts.

    Reads every transcript, removes re-emitted and duplicate measurements,
    and atomically replaces events.tsv, live-events.tsv, projects.json,
    account.json and sync-status.json.
    """
    _configure_logging(verbose)
    config = _resolve_config(config_file, data_root=data_root, source_dir=source)

    try:
        result = run_sync(config)
    except SyncError as e:
        console.print(f"[red]Sync failed:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if result.session_files == 0:
        console.print(f"\n[bold yellow]No transcripts found under[/] {result.source_root}\n")

    _display_sync_result(result, config)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def total(
    range_name: str = typer.Option(
        "24h",
        "--range",
        "-r",
        help="Time range (1h, 3h, 6h, 12h, 24h, 30h, 48h, 7d, 14d, 30d, all)"
    ),
    project: Optional[str] = typer.Option(
        None,
        "--project",
        "-p",
        help="Only count events of this project slug"
    ),
    config_file: Optional[Path] = _config_option(),
    data_root: Optional[Path] = _data_root_option(),
):
    """Show token usage totals as JSON."""
    config = _resolve_config(config_file, data_root=data_root)

    if not config.events_path.exists():
        console.print("[red]Error:[/] no synced events found. Run: jevons sync")
        sys.exit(EXIT_CODE_FAIL)

    try:
        range_to_seconds(range_name)
        events = read_events_tsv(config.events_path)
        totals = summarize(events, range_name, int(time.time()), project_slug=project)
    except (OSError, ValueError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    typer.echo(json.dumps(totals.as_dict(), indent=2))
    sys.exit(EXIT_CODE_PASS)


@app.command()
def status(
    config_file: Optional[Path] = _config_option(),
    data_root: Optional[Path] = _data_root_option(),
):
    """Show the outcome of the last sync run."""
    config = _resolve_config(config_file, data_root=data_root)

    try:
        last = json.loads(config.status_path.read_text(encoding='utf-8'))
        typer.echo(f"sync_last_status_json={json.dumps(last, sort_keys=True)}")
    except (OSError, ValueError):
        typer.echo("sync_last_status_json=none")

    typer.echo(f"events_file={config.events_path}")


@app.command()
def doctor(
    fix: bool = typer.Option(
        False,
        "--fix",
        help="Create the data directory when it is missing"
    ),
    config_file: Optional[Path] = _config_option(),
    source: Optional[Path] = typer.Option(
        None,
        "--source",
        "-s",
        help="Directory containing <project>/<session>.jsonl transcripts"
    ),
    data_root: Optional[Path] = _data_root_option(),
):
    """Check the transcript and report directories."""
    config = _resolve_config(config_file, data_root=data_root, source_dir=source)
    all_ok = True

    typer.echo(f"Source dir: {config.source_dir}")
    if config.source_dir.is_dir():
        files = discover_session_files(config.source_dir)
        typer.echo(f"  [OK] Found {len(files)} session files")
    else:
        typer.echo("  [WARN] Source directory does not exist")
        all_ok = False

    typer.echo(f"Data dir: {config.data_root}")
    if config.data_root.is_dir():
        typer.echo("  [OK] Exists")
    else:
        typer.echo("  [WARN] Data directory does not exist")
        if fix:
            try:
                config.data_root.mkdir(parents=True, exist_ok=True)
                typer.echo("  [FIXED] Created data directory")
            except OSError as e:
                typer.echo(f"  [FAIL] Could not create: {e}")
        all_ok = False

    if config.events_path.is_file():
        typer.echo(f"  events.tsv: {config.events_path.stat().st_size} bytes")
    else:
        typer.echo("  events.tsv: not found (run: jevons sync)")
        all_ok = False

    if all_ok:
        typer.echo("\nAll checks passed.")
    else:
        typer.echo("\nSome checks failed. Run with --fix to attempt repairs.")
    sys.exit(EXIT_CODE_PASS)


def _display_sync_result(result: SyncResult, config: TrackerConfig) -> None:
    """Display the sync summary as a table."""
    table = Table(title="Sync Result")
    table.add_column("Item")
    table.add_column("Value", justify="right")
    table.add_row("Source root", result.source_root)
    table.add_row("Data root", str(config.data_root))
    table.add_row("Session files", f"{result.session_files:,}")
    table.add_row("Event rows", f"{result.event_rows:,}")
    table.add_row("Live event rows", f"{result.live_event_rows:,}")
    console.print(table)


if __name__ == "__main__":
    app()
