"""
Sync orchestration.

Runs the whole pipeline: discover transcripts, parse and reconcile them,
then atomically replace every report in the data root. Output stores are
regenerated from scratch on each run, so repeating a run over unchanged
transcripts reproduces the same files.
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Optional

from jevons.config.loader import TrackerConfig
from jevons.storage.models import SyncResult
from jevons.storage.writer import (
    write_account_json,
    write_events_tsv,
    write_live_events_tsv,
    write_projects_json,
    write_sync_status,
)

from .reconcile import (
    collect_sessions,
    discover_session_files,
    reconcile_events,
    reconcile_live_events,
)

logger = logging.getLogger(__name__)


class SyncError(RuntimeError):
    """Raised when a sync run cannot create or write its reports."""


def _write(path: Path, writer: Callable[[], object]) -> None:
    try:
        writer()
    except OSError as e:
        raise SyncError(f"write {path.name}: {e}") from e


def run_sync(config: TrackerConfig, now: Optional[datetime] = None) -> SyncResult:
    """Ingest every transcript under the source directory.

    A missing or empty source directory is a successful run with zero
    counts.

    Args:
        config: Source, data root and account file locations
        now: Time recorded in the status and account documents

    Returns:
        SyncResult with the number of files and rows written

    Raises:
        SyncError: If the data root cannot be created or a report cannot
            be written
    """
    try:
        config.data_root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise SyncError(f"create data dir {config.data_root}: {e}") from e

    files = discover_session_files(config.source_dir)
    logger.info(f"Found {len(files)} transcripts under {config.source_dir}")

    batch = collect_sessions(files)
    events = reconcile_events(batch.events)
    live_events = reconcile_live_events(batch.live_events)
    if batch.skipped_files:
        logger.warning(f"{len(batch.skipped_files)} transcripts could not be parsed")

    now = now or datetime.now(timezone.utc)
    result = SyncResult(
        session_files=len(files),
        event_rows=len(events),
        live_event_rows=len(live_events),
        source_root=str(config.source_dir),
    )

    _write(config.events_path, lambda: write_events_tsv(config.events_path, events))
    _write(config.live_events_path, lambda: write_live_events_tsv(config.live_events_path, live_events))
    _write(config.projects_path, lambda: write_projects_json(config.projects_path, batch.projects))
    _write(config.account_path, lambda: write_account_json(config.account_path, config.account_file, now))
    _write(config.status_path, lambda: write_sync_status(config.status_path, now, result))

    logger.info(f"Wrote {result.event_rows} usage rows and {result.live_event_rows} live rows")
    return result
