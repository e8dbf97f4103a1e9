"""Timestamp comparison between local documents and remote backups.

Decision table:
| Remote backup             | Local vs remote            | Decision       | Action |
|---------------------------|----------------------------|----------------|--------|
| none                      | -                          | REMOTE_MISSING | push   |
| present                   | |delta| < tolerance        | SAME           | none   |
| present                   | local later                | LOCAL_NEWER    | push   |
| present                   | remote later               | REMOTE_NEWER   | pull   |
| unparsable timestamp      | -                          | LOCAL_NEWER    | push   |

A malformed remote entry never causes a pull.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import UTC, datetime

from vaultsync.core.types import (
    BackupMetadata,
    SyncAction,
    SyncDecision,
    parse_timestamp,
)

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE_MS = 5000

ACTIONS: dict[SyncDecision, SyncAction] = {
    SyncDecision.REMOTE_MISSING: SyncAction.PUSH,
    SyncDecision.LOCAL_NEWER: SyncAction.PUSH,
    SyncDecision.REMOTE_NEWER: SyncAction.PULL,
    SyncDecision.SAME: SyncAction.NONE,
}


def _sort_key(metadata: BackupMetadata) -> datetime:
    try:
        return parse_timestamp(metadata.timestamp)
    except (TypeError, ValueError):
        return datetime.min.replace(tzinfo=UTC)


def latest_first(backups: Iterable[BackupMetadata]) -> list[BackupMetadata]:
    """Sort backups newest first; unparsable timestamps sort last."""
    return sorted(backups, key=_sort_key, reverse=True)


def compare_timestamps(
    local_modified_at: datetime,
    remote_timestamp: str,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
) -> SyncDecision:
    """Compare a local modification time with a remote backup timestamp.

    Returns LOCAL_NEWER when the comparison itself fails.
    """
    try:
        remote = parse_timestamp(remote_timestamp)
        local = local_modified_at
        if local.tzinfo is None:
            local = local.replace(tzinfo=UTC)
        delta_ms = (local - remote).total_seconds() * 1000
    except (TypeError, ValueError) as e:
        logger.warning(
            "Cannot compare with remote timestamp %r (%s), assuming local is newer",
            remote_timestamp,
            e,
        )
        return SyncDecision.LOCAL_NEWER

    if abs(delta_ms) < tolerance_ms:
        return SyncDecision.SAME
    return SyncDecision.LOCAL_NEWER if delta_ms > 0 else SyncDecision.REMOTE_NEWER


def find_latest(
    catalog: Iterable[BackupMetadata],
    relative_path: str,
    collection_name: str | None = None,
) -> BackupMetadata | None:
    """Find the newest backup of a document in a catalog.

    Exact relative path matches are preferred; suffix matches cover
    legacy keys that carried extra leading directories. Backups are
    identified by collection and relative path together, so when
    collection_name is given other collections' backups never match.
    """
    entries = [
        m for m in catalog
        if m.relative_path
        and (collection_name is None or m.collection_name == collection_name)
    ]
    exact = [m for m in entries if m.relative_path == relative_path]
    if exact:
        return latest_first(exact)[0]

    suffix = [
        m for m in entries
        if m.relative_path and m.relative_path.endswith(f"/{relative_path}")
    ]
    if suffix:
        return latest_first(suffix)[0]
    return None


def diff_with_remote(
    catalog: Iterable[BackupMetadata],
    relative_path: str,
    local_modified_at: datetime,
    tolerance_ms: int = DEFAULT_TOLERANCE_MS,
    collection_name: str | None = None,
) -> tuple[SyncDecision, BackupMetadata | None]:
    """Compare a local document with its newest backup in a catalog.

    Returns:
        (decision, matched metadata or None)
    """
    match = find_latest(catalog, relative_path, collection_name)
    if match is None:
        return SyncDecision.REMOTE_MISSING, None
    return compare_timestamps(local_modified_at, match.timestamp, tolerance_ms), match
