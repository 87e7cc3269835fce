"""
Durable writers for the report store.

Every output goes through atomic replace so a reader never observes a
half-written file: the data is written to a temporary file in the target
directory and renamed over the final path.
"""

import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from .models import LiveEvent, ProjectEntry, SyncResult, UsageEvent
from .tsv import (
    EVENTS_TSV_HEADER,
    LIVE_EVENTS_TSV_HEADER,
    encode_live_event,
    encode_usage_event,
)

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Output field -> key in the nested ``oauthAccount`` object
OAUTH_ACCOUNT_FIELDS = {
    "display_name": "displayName",
    "email": "emailAddress",
    "billing_type": "billingType",
    "account_uuid": "accountUuid",
    "organization_uuid": "organizationUuid",
    "has_extra_usage_enabled": "hasExtraUsageEnabled",
    "account_created_at": "accountCreatedAt",
    "subscription_created_at": "subscriptionCreatedAt",
}

# Output field -> top-level key of the account file
TOP_LEVEL_ACCOUNT_FIELDS = {
    "has_available_subscription": "hasAvailableSubscription",
    "has_opus_plan_default": "hasOpusPlanDefault",
    "user_id": "userID",
}


def format_utc(moment: datetime) -> str:
    """Format a datetime as ``YYYY-MM-DDTHH:MM:SSZ`` in UTC."""
    return moment.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def atomic_write_text(path: PathLike, data: str) -> None:
    """Replace ``path`` with ``data`` in a single rename.

    Raises:
        OSError: If the temporary file cannot be written or renamed
    """
    target = Path(path)
    handle = tempfile.NamedTemporaryFile(
        "w",
        encoding="utf-8",
        newline="\n",
        dir=str(target.parent),
        prefix=f".{target.name}.",
        suffix=".tmp",
        delete=False,
    )
    temp_name = handle.name
    try:
        with handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        os.chmod(temp_name, 0o644)
        os.replace(temp_name, target)
    finally:
        if os.path.exists(temp_name):
            try:
                os.remove(temp_name)
            except OSError:
                logger.warning(f"Could not remove temporary file {temp_name}")


def _dump_json(value: Any, sort_keys: bool = False) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False, sort_keys=sort_keys) + "\n"


def write_events_tsv(path: PathLike, events: Iterable[UsageEvent]) -> None:
    """Write the usage store: header plus one row per event."""
    lines = [EVENTS_TSV_HEADER]
    lines.extend(encode_usage_event(e) for e in events)
    atomic_write_text(path, "\n".join(lines) + "\n")


def write_live_events_tsv(path: PathLike, events: Iterable[LiveEvent]) -> None:
    """Write the live store: header plus one row per event."""
    lines = [LIVE_EVENTS_TSV_HEADER]
    lines.extend(encode_live_event(e) for e in events)
    atomic_write_text(path, "\n".join(lines) + "\n")


def build_project_index(entries: Iterable[ProjectEntry]) -> List[ProjectEntry]:
    """Reduce discovered (slug, path) pairs to one entry per slug.

    Within a slug the first real path wins over ``/unknown/`` placeholders,
    taking candidates in (slug, path) order. The result is sorted by path.
    """
    grouped: Dict[str, List[ProjectEntry]] = {}
    for entry in sorted(entries, key=lambda e: (e.slug, e.path)):
        grouped.setdefault(entry.slug, []).append(entry)

    index = []
    for candidates in grouped.values():
        chosen = next((c for c in candidates if not c.is_placeholder), candidates[0])
        index.append(chosen)
    return sorted(index, key=lambda e: (e.path, e.slug))


def write_projects_json(path: PathLike, entries: Iterable[ProjectEntry]) -> List[ProjectEntry]:
    """Write ``projects.json`` and return the index that was written."""
    index = build_project_index(entries)
    if not index:
        atomic_write_text(path, "[]\n")
        return index
    atomic_write_text(path, _dump_json([{"slug": e.slug, "path": e.path} for e in index]))
    return index


def extract_account(account_file: PathLike, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Project the account profile out of the assistant's account file.

    Best effort: any problem with the source yields an empty dict.
    """
    try:
        with open(account_file, 'r', encoding='utf-8') as f:
            raw = json.load(f)
    except (OSError, ValueError, RecursionError) as e:
        logger.debug(f"Account file {account_file} unavailable: {e}")
        return {}

    if not isinstance(raw, dict):
        logger.debug(f"Account file {account_file} is not a JSON object")
        return {}

    oauth = raw.get("oauthAccount")
    if not isinstance(oauth, dict):
        logger.debug(f"Account file {account_file} has no oauthAccount object")
        return {}

    account = {field: oauth.get(key) for field, key in OAUTH_ACCOUNT_FIELDS.items()}
    account.update({field: raw.get(key) for field, key in TOP_LEVEL_ACCOUNT_FIELDS.items()})
    account["generated_at"] = format_utc(now or datetime.now(timezone.utc))
    return account


def write_account_json(
    path: PathLike,
    account_file: PathLike,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Write ``account.json`` (``{}`` when the profile is unavailable)."""
    account = extract_account(account_file, now)
    atomic_write_text(path, _dump_json(account, sort_keys=True))
    return account


def write_sync_status(path: PathLike, now: datetime, result: SyncResult) -> None:
    """Write ``sync-status.json`` for a finished run."""
    status = {
        "last_sync_epoch": int(now.timestamp()),
        "last_sync_iso": format_utc(now),
        "source_root": result.source_root,
        "session_files": result.session_files,
        "event_rows": result.event_rows,
        "live_event_rows": result.live_event_rows,
    }
    atomic_write_text(path, _dump_json(status, sort_keys=True))
