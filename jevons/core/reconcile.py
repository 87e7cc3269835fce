"""
Cross-file reconciliation.

Discovers transcripts, parses each one, and merges the results into a
deterministic, duplicate-free sequence. Two kinds of duplicates exist:
re-emitted measurements inside one transcript (handled by the parser) and
identical rows repeated across transcripts (handled here by comparing the
fully encoded row).
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Sequence, Tuple, TypeVar, Union

from jevons.storage.models import LiveEvent, ProjectEntry, UsageEvent
from jevons.storage.tsv import encode_live_event, encode_usage_event

from .parser import extract_project_path, parse_session_file, parse_session_file_live

logger = logging.getLogger(__name__)

TRANSCRIPT_SUFFIX = ".jsonl"

E = TypeVar("E", bound=UsageEvent)


@dataclass
class SessionBatch:
    """Everything collected from a set of transcripts before reconciliation."""
    events: List[UsageEvent] = field(default_factory=list)
    live_events: List[LiveEvent] = field(default_factory=list)
    projects: List[ProjectEntry] = field(default_factory=list)
    skipped_files: List[Path] = field(default_factory=list)


def discover_session_files(source_root: Union[str, Path]) -> List[Path]:
    """Find ``<source_root>/<project>/<session>.jsonl`` files.

    A missing source root yields no files. Paths are sorted by their string
    form so every run visits transcripts in the same order.
    """
    root = Path(source_root)
    if not root.is_dir():
        return []
    matches = [p for p in root.glob(f"*/*{TRANSCRIPT_SUFFIX}") if p.is_file()]
    return sorted(matches, key=str)


def session_identity(path: Path) -> Tuple[str, str]:
    """Project slug and session id encoded in a transcript path."""
    slug = path.parent.name
    session_id = path.name[:-len(TRANSCRIPT_SUFFIX)] if path.name.endswith(TRANSCRIPT_SUFFIX) else path.name
    return slug, session_id


def event_sort_key(event: UsageEvent) -> Tuple[int, str, str, str, str]:
    return (
        event.ts_epoch,
        event.ts_iso,
        event.project_slug,
        event.session_id,
        event.signature,
    )


def sort_events(events: Iterable[E]) -> List[E]:
    """Stable sort by time, then source identity, then signature."""
    return sorted(events, key=event_sort_key)


def dedup_events(events: Iterable[E], encode: Callable[[E], str]) -> List[E]:
    """Keep the first occurrence of every distinct encoded row."""
    seen = set()
    unique = []
    for event in events:
        row = encode(event)
        if row in seen:
            continue
        seen.add(row)
        unique.append(event)
    return unique


def reconcile_events(events: Iterable[UsageEvent]) -> List[UsageEvent]:
    """Order usage events and drop exact duplicate rows."""
    return dedup_events(sort_events(events), encode_usage_event)


def reconcile_live_events(events: Iterable[LiveEvent]) -> List[LiveEvent]:
    """Order live events and drop exact duplicate rows."""
    return dedup_events(sort_events(events), encode_live_event)


def collect_sessions(files: Sequence[Path]) -> SessionBatch:
    """Parse every transcript, skipping files that cannot be read.

    The project entry of a file is recorded even when its events are
    dropped, so a project never disappears from the index because one of
    its transcripts is damaged.
    """
    batch = SessionBatch()
    for path in files:
        slug, session_id = session_identity(path)
        project_path = extract_project_path(path)
        if project_path:
            batch.projects.append(ProjectEntry(slug=slug, path=project_path))
        else:
            batch.projects.append(ProjectEntry.placeholder(slug))

        try:
            events = parse_session_file(path, slug, session_id)
            live_events = parse_session_file_live(path, slug, session_id)
        except (OSError, UnicodeError) as e:
            logger.warning(f"Skipping transcript {path}: {e}")
            batch.skipped_files.append(path)
            continue

        logger.debug(f"Parsed {len(events)} usage events from {path}")
        batch.events.extend(events)
        batch.live_events.extend(live_events)
    return batch
