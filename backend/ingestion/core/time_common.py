"""
Common time helpers shared by the domain and the adapters.

All timestamps inside ingestion are timezone-aware UTC.
"""
from __future__ import annotations

from datetime import datetime, timezone

UTC = timezone.utc


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None or dt.utcoffset() is None:
        # Naive timestamps from sources are treated as UTC.
        return dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def elapsed_ms(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)
