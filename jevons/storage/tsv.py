"""
Tab-separated codec for the event stores.

Serializes usage events to fixed-order rows and reads them back. The
header constants are the schema contract with every reader of the store.
"""

import logging
import re
from pathlib import Path
from typing import Callable, List, TypeVar, Union

from .models import LiveEvent, UsageEvent

logger = logging.getLogger(__name__)

USAGE_COLUMNS = (
    "ts_epoch",
    "ts_iso",
    "project_slug",
    "session_id",
    "input",
    "output",
    "cache_read",
    "cache_create",
    "billable",
    "total_with_cache",
    "content_type",
    "signature",
)
LIVE_COLUMNS = USAGE_COLUMNS[:4] + ("prompt_preview",) + USAGE_COLUMNS[4:]

EVENTS_TSV_HEADER = "\t".join(USAGE_COLUMNS)
LIVE_EVENTS_TSV_HEADER = "\t".join(LIVE_COLUMNS)

_INTEGER = re.compile(r"[+-]?[0-9]+")

E = TypeVar("E", bound=UsageEvent)


class RecordDecodeError(ValueError):
    """Raised when a stored row cannot be turned back into an event."""


class FieldCountError(RecordDecodeError):
    """Row has fewer columns than the schema requires."""

    def __init__(self, expected: int, actual: int):
        super().__init__(f"expected {expected} fields, got {actual}")
        self.expected = expected
        self.actual = actual


class IntegerFieldError(RecordDecodeError):
    """An integer column does not hold a base-10 integer."""

    def __init__(self, column: str, value: str):
        super().__init__(f"invalid {column}: {value!r}")
        self.column = column
        self.value = value


class DerivedFieldError(RecordDecodeError):
    """Columns parse but contradict each other (billable, total or signature)."""


def encode_usage_event(event: UsageEvent) -> str:
    """Serialize a usage event to a 12-column row (no trailing newline)."""
    return "\t".join(_columns(event))


def encode_live_event(event: LiveEvent) -> str:
    """Serialize a live event to a 13-column row (no trailing newline)."""
    columns = _columns(event)
    columns.insert(4, event.prompt_preview)
    return "\t".join(columns)


def _columns(event: UsageEvent) -> List[str]:
    return [
        str(event.ts_epoch),
        event.ts_iso,
        event.project_slug,
        event.session_id,
        str(event.input_tokens),
        str(event.output_tokens),
        str(event.cache_read_tokens),
        str(event.cache_create_tokens),
        str(event.billable_tokens),
        str(event.total_with_cache_tokens),
        event.content_type,
        event.signature,
    ]


def _parse_int(column: str, value: str) -> int:
    if not _INTEGER.fullmatch(value):
        raise IntegerFieldError(column, value)
    return int(value)


def decode_usage_event(line: str) -> UsageEvent:
    """Parse a 12-column row into a UsageEvent.

    Raises:
        FieldCountError: If the row has fewer than 12 columns
        IntegerFieldError: If a numeric column is not an integer
        DerivedFieldError: If derived columns disagree with the counts
    """
    fields = line.split("\t")
    if len(fields) < len(USAGE_COLUMNS):
        raise FieldCountError(len(USAGE_COLUMNS), len(fields))
    return _build(UsageEvent, fields, {})


def decode_live_event(line: str) -> LiveEvent:
    """Parse a 13-column row into a LiveEvent."""
    fields = line.split("\t")
    if len(fields) < len(LIVE_COLUMNS):
        raise FieldCountError(len(LIVE_COLUMNS), len(fields))
    preview = fields.pop(4)
    return _build(LiveEvent, fields, {"prompt_preview": preview})


def _build(cls, fields: List[str], extra: dict):
    ts_epoch = _parse_int("ts_epoch", fields[0])
    # input, output, cache_read, cache_create, billable, total_with_cache
    counts = [_parse_int(USAGE_COLUMNS[i], fields[i]) for i in range(4, 10)]
    try:
        return cls(
            ts_epoch=ts_epoch,
            ts_iso=fields[1],
            project_slug=fields[2],
            session_id=fields[3],
            input_tokens=counts[0],
            output_tokens=counts[1],
            cache_read_tokens=counts[2],
            cache_create_tokens=counts[3],
            billable_tokens=counts[4],
            total_with_cache_tokens=counts[5],
            content_type=fields[10],
            signature=fields[11],
            **extra,
        )
    except ValueError as e:
        raise DerivedFieldError(str(e)) from e


def read_events_tsv(path: Union[str, Path]) -> List[UsageEvent]:
    """Read every decodable row of an ``events.tsv`` store.

    Undecodable rows are skipped; a missing file raises FileNotFoundError.
    """
    return _read_store(Path(path), EVENTS_TSV_HEADER, decode_usage_event)


def read_live_events_tsv(path: Union[str, Path]) -> List[LiveEvent]:
    """Read every decodable row of a ``live-events.tsv`` store."""
    return _read_store(Path(path), LIVE_EVENTS_TSV_HEADER, decode_live_event)


def _read_store(path: Path, header: str, decode: Callable[[str], E]) -> List[E]:
    events = []
    with open(path, 'r', encoding='utf-8') as f:
        first = f.readline().rstrip("\n")
        if first and first != header:
            logger.warning(f"Unexpected header in {path}, store schema may have drifted")
        for line_number, line in enumerate(f, start=2):
            line = line.rstrip("\r\n")
            if not line.strip():
                continue
            try:
                events.append(decode(line))
            except RecordDecodeError as e:
                logger.debug(f"Skipping row {line_number} of {path}: {e}")
    return events
