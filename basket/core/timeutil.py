"""Timestamp helpers. All core timestamps are integer epoch milliseconds."""

from __future__ import annotations

import datetime
import time
from typing import Any


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


def from_millis(value: int) -> datetime.datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return datetime.datetime.fromtimestamp(value / 1000, tz=datetime.timezone.utc)


def to_millis(value: Any) -> int:
    """Coerce any stored timestamp shape to epoch milliseconds.

    Accepts datetimes (including Firestore's ``DatetimeWithNanoseconds``),
    ``{"seconds", "nanoseconds"}`` mappings as written by older backups,
    numbers, and ISO-8601 strings. Anything unreadable (including the
    server-timestamp sentinel before it resolves) maps to 0.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, datetime.datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=datetime.timezone.utc)
        return int(value.timestamp() * 1000)
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, dict) and "seconds" in value:
        seconds = value.get("seconds") or 0
        nanos = value.get("nanoseconds") or 0
        return int(seconds * 1000 + nanos / 1_000_000)
    if isinstance(value, str):
        try:
            return to_millis(datetime.datetime.fromisoformat(value))
        except ValueError:
            return 0
    to_datetime = getattr(value, "to_datetime", None)
    if callable(to_datetime):
        return to_millis(to_datetime())
    return 0
