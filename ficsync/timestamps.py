"""
Timestamp helpers.

All timestamps are normalized to aware UTC datetimes. Two timestamps are
equal when they denote the same instant, regardless of the tzinfo they were
built with.
"""

from __future__ import annotations
from datetime import datetime, timezone
from typing import Iterable, Optional, Union


def to_instant(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize to an aware UTC datetime. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Canonical string form of an instant."""
    instant = to_instant(value)
    return instant.isoformat() if instant is not None else None


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 string (a trailing Z is accepted)."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return to_instant(value)
    return to_instant(datetime.fromisoformat(value.strip().replace('Z', '+00:00')))


def dates_equal(a: Optional[datetime], b: Optional[datetime]) -> bool:
    """Instant equality. Two absent values are equal."""
    return format_timestamp(a) == format_timestamp(b)


def earliest(values: Iterable[Optional[datetime]]) -> Optional[datetime]:
    present = [to_instant(v) for v in values if v is not None]
    return min(present) if present else None


def latest(values: Iterable[Optional[datetime]]) -> Optional[datetime]:
    present = [to_instant(v) for v in values if v is not None]
    return max(present) if present else None
