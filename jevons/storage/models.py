"""
Data models for the report store.

Defines the usage records extracted from transcripts and the summary of a
sync run. Every record is immutable; a sync run rebuilds them from source.
"""

from dataclasses import dataclass


UNKNOWN_PATH_PREFIX = "/unknown/"


def make_signature(
    input_tokens: int,
    output_tokens: int,
    cache_read_tokens: int,
    cache_create_tokens: int,
) -> str:
    """Build the dedup signature of a usage block from its four counts."""
    return f"{input_tokens}|{output_tokens}|{cache_read_tokens}|{cache_create_tokens}"


@dataclass(frozen=True)
class UsageEvent:
    """One measured unit of assistant work.

    Derived columns are stored alongside the raw counts so that a row in
    the tabular store is self-describing. They are validated on
    construction and can never disagree with the counts.
    """
    ts_epoch: int
    ts_iso: str
    project_slug: str
    session_id: str
    input_tokens: int
    output_tokens: int
    cache_read_tokens: int
    cache_create_tokens: int
    billable_tokens: int
    total_with_cache_tokens: int
    content_type: str
    signature: str

    def __post_init__(self):
        """Validate token counts and derived columns."""
        for name in ("input_tokens", "output_tokens", "cache_read_tokens", "cache_create_tokens"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} cannot be negative")
        if self.billable_tokens != self.input_tokens + self.output_tokens:
            raise ValueError("billable_tokens must equal input_tokens + output_tokens")
        expected_total = self.billable_tokens + self.cache_read_tokens + self.cache_create_tokens
        if self.total_with_cache_tokens != expected_total:
            raise ValueError("total_with_cache_tokens must equal billable_tokens + cache tokens")
        expected_signature = make_signature(
            self.input_tokens,
            self.output_tokens,
            self.cache_read_tokens,
            self.cache_create_tokens,
        )
        if self.signature != expected_signature:
            raise ValueError(f"signature {self.signature!r} does not match token counts")

    @classmethod
    def from_counts(
        cls,
        ts_epoch: int,
        ts_iso: str,
        project_slug: str,
        session_id: str,
        input_tokens: int,
        output_tokens: int,
        cache_read_tokens: int,
        cache_create_tokens: int,
        content_type: str = "-",
    ) -> "UsageEvent":
        """Create an event, computing the derived columns and signature."""
        billable = input_tokens + output_tokens
        return cls(
            ts_epoch=ts_epoch,
            ts_iso=ts_iso,
            project_slug=project_slug,
            session_id=session_id,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            cache_read_tokens=cache_read_tokens,
            cache_create_tokens=cache_create_tokens,
            billable_tokens=billable,
            total_with_cache_tokens=billable + cache_read_tokens + cache_create_tokens,
            content_type=content_type,
            signature=make_signature(
                input_tokens, output_tokens, cache_read_tokens, cache_create_tokens
            ),
        )


@dataclass(frozen=True)
class LiveEvent(UsageEvent):
    """Usage event annotated with a preview of the prompt that caused it.

    ``prompt_preview`` is ``-`` when no human turn preceded the event in its
    transcript.
    """
    prompt_preview: str = "-"

    @classmethod
    def from_usage(cls, event: UsageEvent, prompt_preview: str) -> "LiveEvent":
        """Attach a prompt preview to an existing usage event."""
        return cls(
            ts_epoch=event.ts_epoch,
            ts_iso=event.ts_iso,
            project_slug=event.project_slug,
            session_id=event.session_id,
            input_tokens=event.input_tokens,
            output_tokens=event.output_tokens,
            cache_read_tokens=event.cache_read_tokens,
            cache_create_tokens=event.cache_create_tokens,
            billable_tokens=event.billable_tokens,
            total_with_cache_tokens=event.total_with_cache_tokens,
            content_type=event.content_type,
            signature=event.signature,
            prompt_preview=prompt_preview,
        )


@dataclass(frozen=True)
class ProjectEntry:
    """Working directory associated with a project slug."""
    slug: str
    path: str

    @property
    def is_placeholder(self) -> bool:
        """True when the path was synthesized because no cwd was found."""
        return self.path.startswith(UNKNOWN_PATH_PREFIX)

    @classmethod
    def placeholder(cls, slug: str) -> "ProjectEntry":
        return cls(slug=slug, path=f"{UNKNOWN_PATH_PREFIX}{slug}")


@dataclass(frozen=True)
class SyncResult:
    """Summary of one orchestration run."""
    session_files: int
    event_rows: int
    live_event_rows: int
    source_root: str
