"""Manifest extraction for synchronizing the change log with a remote replica.

A manifest is the log minus sync markers, optionally bounded by a lower
timestamp, with each entry reduced to the fields a remote replica can use.
``idx`` is a position in this process's inventory list and ``undone`` is
local display state, so neither is exported.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

from .models import LogEntry, SyncMarker

MANIFEST_KEYS = (
    "timestamp",
    "scope",
    "itemKey",
    "type",
    "field",
    "itemName",
    "oldValue",
    "newValue",
)


def to_manifest_record(entry: LogEntry) -> Dict[str, Any]:
    """Project one entry onto the manifest record shape."""
    data = entry.to_dict()
    return {key: data.get(key) for key in MANIFEST_KEYS}


def extract_manifest(
    entries: Iterable[LogEntry], since: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Return manifest records for ``entries`` stamped at or after ``since``.

    ``since=None`` keeps every entry. Sync markers are always dropped. Input
    order is preserved.
    """
    return [
        to_manifest_record(entry)
        for entry in entries
        if not isinstance(entry, SyncMarker)
        and (since is None or entry.timestamp >= since)
    ]


def last_sync_marker(entries: Iterable[LogEntry]) -> Optional[SyncMarker]:
    """Return the most recently appended sync marker, if any."""
    latest: Optional[SyncMarker] = None
    for entry in entries:
        if isinstance(entry, SyncMarker):
            latest = entry
    return latest
