"""
Transcript parsing.

Turns one JSONL transcript into usage events. Each line is an independent
JSON record; anything that does not look like a usable user or assistant
record is skipped without aborting the file.

Re-emission rule:
    An assistant usage block whose signature equals the previously emitted
    one is dropped unless a human prompt arrived in between. The scan is a
    two-state machine (see ``PromptState``).
"""

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, List, Optional, Tuple, Union

from jevons.storage.models import LiveEvent, UsageEvent, make_signature

logger = logging.getLogger(__name__)

PREVIEW_LIMIT = 180
ELLIPSIS = "..."
NO_PROMPT = "-"

# Top-level fields that, when present and non-null, must have these types
_RECORD_FIELD_TYPES = {
    "type": str,
    "timestamp": str,
    "cwd": str,
    "isApiErrorMessage": bool,
}

_USAGE_KEYS = (
    "input_tokens",
    "output_tokens",
    "cache_read_input_tokens",
    "cache_creation_input_tokens",
)

# RFC 3339 date-time once fractional seconds are removed
_RFC3339 = re.compile(
    r"\d{4}-\d{2}-\d{2}[Tt]\d{2}:\d{2}:\d{2}(?:[Zz]|[+-]\d{2}:\d{2})"
)


class PromptState(Enum):
    """Whether a human prompt is pending since the last emitted event."""
    NOT_AWAITING = "not_awaiting"
    AWAITING_HUMAN = "awaiting_human"


class ContentKind(Enum):
    """Shape of a message ``content`` payload."""
    TEXT = "text"
    BLOCKS = "blocks"
    OTHER = "other"


@dataclass(frozen=True)
class ContentBlock:
    """One element of an array-of-blocks content payload."""
    type: str = ""
    text: str = ""
    tool_use_id: str = ""


@dataclass(frozen=True)
class Content:
    """Message content resolved once into a tagged variant."""
    kind: ContentKind
    text: str = ""
    blocks: Tuple[ContentBlock, ...] = ()

    @property
    def is_human_prompt(self) -> bool:
        """Anything but a non-empty list made only of tool results."""
        if self.kind != ContentKind.BLOCKS or not self.blocks:
            return True
        return not all(b.type == "tool_result" for b in self.blocks)

    @property
    def content_type(self) -> str:
        if self.kind == ContentKind.TEXT:
            return "text"
        if self.kind == ContentKind.BLOCKS and self.blocks and self.blocks[0].type:
            return self.blocks[0].type
        return "-"

    @property
    def prompt_text(self) -> str:
        if self.kind == ContentKind.TEXT:
            return self.text
        if self.kind == ContentKind.BLOCKS:
            return " ".join(b.text for b in self.blocks if b.type == "text")
        return ""


def _string_field(data: dict, key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def resolve_content(raw: Any) -> Content:
    """Classify a raw ``content`` value.

    Strings become TEXT, arrays of objects become BLOCKS and everything else
    (absent, null, numbers, objects, mixed arrays) is OTHER.
    """
    if isinstance(raw, str):
        return Content(ContentKind.TEXT, text=raw)
    if isinstance(raw, list) and all(isinstance(item, dict) for item in raw):
        blocks = tuple(
            ContentBlock(
                type=_string_field(item, "type"),
                text=_string_field(item, "text"),
                tool_use_id=_string_field(item, "tool_use_id"),
            )
            for item in raw
        )
        return Content(ContentKind.BLOCKS, blocks=blocks)
    return Content(ContentKind.OTHER)


def is_human_prompt(raw: Any) -> bool:
    """Check if user content is a human turn rather than tool output."""
    return resolve_content(raw).is_human_prompt


def content_type(raw: Any) -> str:
    """Tag of the first content block of an assistant message."""
    return resolve_content(raw).content_type


def clean_text(text: str) -> str:
    """Normalize whitespace: tabs and line breaks to spaces, runs collapsed."""
    for char in ("\t", "\r", "\n"):
        text = text.replace(char, " ")
    text = re.sub(" {2,}", " ", text)
    return text.strip()


def truncate_preview(text: str) -> str:
    if len(text) > PREVIEW_LIMIT:
        return text[:PREVIEW_LIMIT - len(ELLIPSIS)] + ELLIPSIS
    return text


def prompt_preview_of(content: Content) -> str:
    """Preview of already-resolved content."""
    cleaned = clean_text(content.prompt_text)
    return truncate_preview(cleaned) if cleaned else NO_PROMPT


def prompt_preview(raw: Any) -> str:
    """Cleaned, truncated preview of a user message, ``-`` if empty."""
    return prompt_preview_of(resolve_content(raw))


def parse_epoch(ts: str) -> int:
    """Convert an ISO timestamp to Unix seconds, 0 when unusable.

    Fractional seconds are stripped before parsing and must be followed by
    a timezone marker (``Z``, ``+`` or ``-``). A fractional part with no
    marker after it is treated as malformed. This is a compatibility rule,
    not a general ISO-8601 parser.
    """
    if not ts:
        return 0

    cleaned = ts
    dot = ts.find(".")
    if dot != -1:
        match = re.search(r"[Z+-]", ts[dot + 1:])
        if match is None:
            return 0
        cleaned = ts[:dot] + ts[dot + 1 + match.start():]

    if not _RFC3339.fullmatch(cleaned):
        return 0
    try:
        moment = datetime.fromisoformat(cleaned[:-1] + "+00:00" if cleaned[-1] in "Zz" else cleaned)
    except ValueError:
        return 0
    return int(moment.timestamp())


@dataclass(frozen=True)
class _UsageRecord:
    timestamp: str
    counts: Tuple[int, int, int, int]
    content: Content


def _usage_counts(usage: dict) -> Optional[Tuple[int, int, int, int]]:
    counts = []
    for key in _USAGE_KEYS:
        value = usage.get(key, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            return None
        counts.append(value)
    return tuple(counts)


def _load_record(line: str) -> Optional[dict]:
    """Decode one line into a well-typed record object, else None."""
    try:
        record = json.loads(line)
    except (ValueError, RecursionError):
        return None
    if not isinstance(record, dict):
        return None
    for key, expected in _RECORD_FIELD_TYPES.items():
        value = record.get(key)
        if value is not None and not isinstance(value, expected):
            return None
    return record


def _decode_line(line: str) -> Optional[Tuple[str, dict, dict]]:
    """Return ``(type, record, message)`` for a usable line, else None."""
    record = _load_record(line)
    if record is None:
        return None
    message = record.get("message")
    if not isinstance(message, dict):
        return None
    return record.get("type"), record, message


def _iter_records(path: Path) -> Iterator[Tuple[str, Union[Content, _UsageRecord]]]:
    """Yield ``("user", Content)`` and ``("assistant", _UsageRecord)`` pairs.

    Raises:
        OSError: If the file cannot be opened or read
    """
    with open(path, 'r', encoding='utf-8', errors='replace') as f:
        for line_number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            decoded = _decode_line(line)
            if decoded is None:
                logger.debug(f"{path}:{line_number}: not a transcript record")
                continue
            kind, record, message = decoded

            if kind == "user":
                yield "user", resolve_content(message.get("content"))
            elif kind == "assistant":
                usage = message.get("usage")
                if not isinstance(usage, dict):
                    continue
                if record.get("isApiErrorMessage") is True:
                    logger.debug(f"{path}:{line_number}: skipping API error record")
                    continue
                counts = _usage_counts(usage)
                timestamp = record.get("timestamp") or ""
                if counts is None:
                    logger.debug(f"{path}:{line_number}: malformed usage record")
                    continue
                yield "assistant", _UsageRecord(
                    timestamp=timestamp,
                    counts=counts,
                    content=resolve_content(message.get("content")),
                )


def _scan(path: Path, project_slug: str, session_id: str) -> Iterator[Tuple[UsageEvent, str]]:
    """Run the re-emission state machine, yielding events with their preview."""
    state = PromptState.NOT_AWAITING
    last_signature = None
    preview = NO_PROMPT

    for kind, payload in _iter_records(path):
        if kind == "user":
            if payload.is_human_prompt:
                state = PromptState.AWAITING_HUMAN
                preview = prompt_preview_of(payload)
            continue

        signature = make_signature(*payload.counts)
        if signature == last_signature and state == PromptState.NOT_AWAITING:
            continue

        event = UsageEvent.from_counts(
            parse_epoch(payload.timestamp),
            payload.timestamp,
            project_slug,
            session_id,
            *payload.counts,
            content_type=payload.content.content_type,
        )
        last_signature = signature
        state = PromptState.NOT_AWAITING
        yield event, preview


def parse_session_file(
    path: Union[str, Path],
    project_slug: str,
    session_id: str,
) -> List[UsageEvent]:
    """Extract usage events from one transcript, in file order.

    Raises:
        OSError: If the file cannot be read
    """
    return [event for event, _ in _scan(Path(path), project_slug, session_id)]


def parse_session_file_live(
    path: Union[str, Path],
    project_slug: str,
    session_id: str,
) -> List[LiveEvent]:
    """Extract usage events annotated with the preceding prompt preview."""
    return [
        LiveEvent.from_usage(event, preview)
        for event, preview in _scan(Path(path), project_slug, session_id)
    ]


def extract_project_path(path: Union[str, Path]) -> str:
    """First non-empty ``cwd`` recorded in a transcript, or ``""``."""
    try:
        with open(path, 'r', encoding='utf-8', errors='replace') as f:
            for line in f:
                record = _load_record(line)
                if record is not None and record.get("cwd"):
                    return record["cwd"]
    except OSError as e:
        logger.debug(f"Cannot read {path} for project path: {e}")
    return ""
