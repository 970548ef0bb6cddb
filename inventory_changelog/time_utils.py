"""Datetime helpers for change log timestamps."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from typing import Optional


def epoch_ms() -> int:
    """Return the current time as integer milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def parse_iso_datetime(
    value: Optional[str], *, default: Optional[datetime] = None
) -> Optional[datetime]:
    """Parse ISO-8601 datetime strings, falling back to the provided default."""
    if not value:
        return default
    normalized = value.replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(normalized)
    except ValueError:
        pass
    for fmt in (
        "%Y-%m-%dT%H:%M:%S.%f%z",
        "%Y-%m-%dT%H:%M:%S%z",
        "%Y-%m-%dT%H:%M:%S.%f",
        "%Y-%m-%dT%H:%M:%S",
    ):
        try:
            return datetime.strptime(normalized, fmt)
        except ValueError:
            continue
    return default


def parse_timestamp_ms(value: Optional[str]) -> Optional[int]:
    """Parse epoch milliseconds or an ISO-8601 datetime into epoch milliseconds.

    Naive datetimes are taken as UTC. Returns ``None`` for empty input and
    raises ``ValueError`` for anything unparseable.
    """
    if value is None or not value.strip():
        return None
    text = value.strip()
    if text.lstrip("-").isdigit():
        return int(text)
    parsed = parse_iso_datetime(text)
    if parsed is None:
        raise ValueError(f"Marca de tiempo inválida: {value!r}")
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return round(parsed.timestamp() * 1000)
