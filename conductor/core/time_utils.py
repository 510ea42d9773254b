"""Utilities for dealing with timestamps.

Persisted records store ISO-8601 text; everything in memory is an aware UTC
datetime. The helpers below are the single place that converts between the two
and that produces lexically sortable stamps for file names.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

SORTABLE_FORMAT = "%Y%m%dT%H%M%S%fZ"


def now_utc() -> datetime:
    """Return the current UTC datetime with tzinfo."""

    return datetime.now(timezone.utc)


def isoformat(dt: datetime) -> str:
    """Serialize ``dt`` as ISO-8601, assuming UTC for naive values."""

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.isoformat()


def parse_datetime(value: Any) -> datetime | None:
    """Rebuild a datetime from ISO text; ``None`` when it cannot be parsed."""

    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def sortable_stamp(dt: datetime | None = None) -> str:
    """Zero-padded UTC stamp whose lexical order equals chronological order."""

    moment = (dt or now_utc()).astimezone(timezone.utc)
    return moment.strftime(SORTABLE_FORMAT)


def file_safe_stamp(dt: datetime | None = None) -> str:
    """ISO stamp with ``:`` and ``.`` replaced, suitable for backup suffixes."""

    return isoformat(dt or now_utc()).replace(":", "-").replace(".", "-").replace("+", "_")
