"""
Usage totals over a time range.

Aggregates rows read back from the usage store.
"""

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional

from jevons.storage.models import UsageEvent

# Range name -> seconds; 0 means no lower bound
RANGES = {
    "1h": 3600,
    "3h": 3 * 3600,
    "6h": 6 * 3600,
    "12h": 12 * 3600,
    "24h": 24 * 3600,
    "30h": 30 * 3600,
    "48h": 48 * 3600,
    "7d": 7 * 86400,
    "14d": 14 * 86400,
    "30d": 30 * 86400,
    "all": 0,
}


def range_to_seconds(name: str) -> int:
    """Convert a range name such as ``24h`` or ``7d`` to seconds.

    Raises:
        ValueError: If the range is unknown
    """
    if name not in RANGES:
        raise ValueError(f"unknown range: {name}")
    return RANGES[name]


@dataclass(frozen=True)
class UsageTotals:
    """Token sums for the events inside a range."""
    range: str
    project_slug: Optional[str]
    events: int = 0
    input: int = 0
    output: int = 0
    cache_read: int = 0
    cache_create: int = 0
    billable: int = 0
    total_with_cache: int = 0

    def as_dict(self) -> Dict[str, Any]:
        return {
            "range": self.range,
            "project_slug": self.project_slug,
            "events": self.events,
            "input": self.input,
            "output": self.output,
            "cache_read": self.cache_read,
            "cache_create": self.cache_create,
            "billable": self.billable,
            "total_with_cache": self.total_with_cache,
        }


def summarize(
    events: Iterable[UsageEvent],
    range_name: str,
    now: int,
    project_slug: Optional[str] = None,
) -> UsageTotals:
    """Sum token columns of events newer than ``now - range``.

    Args:
        events: Usage events, in any order
        range_name: Key of ``RANGES``
        now: Current Unix time in seconds
        project_slug: Optional filter for a single project

    Raises:
        ValueError: If the range is unknown
    """
    window = range_to_seconds(range_name)
    cutoff = now - window if window > 0 else 0

    sums = dict(events=0, input=0, output=0, cache_read=0, cache_create=0, billable=0, total_with_cache=0)
    for e in events:
        if cutoff > 0 and e.ts_epoch < cutoff:
            continue
        if project_slug is not None and e.project_slug != project_slug:
            continue
        sums["events"] += 1
        sums["input"] += e.input_tokens
        sums["output"] += e.output_tokens
        sums["cache_read"] += e.cache_read_tokens
        sums["cache_create"] += e.cache_create_tokens
        sums["billable"] += e.billable_tokens
        sums["total_with_cache"] += e.total_with_cache_tokens

    return UsageTotals(range=range_name, project_slug=project_slug, **sums)
