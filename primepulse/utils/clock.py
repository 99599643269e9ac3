"""Shared time helpers.

All timestamps stored by the pipeline are naive datetimes in UTC, matching
the ``DateTime`` columns of the relational and analytics stores.
"""

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_zone(timestamp: datetime, zone: str | tzinfo) -> datetime:
    """
    Convert a stored (naive UTC) timestamp into the given timezone.

    Aware timestamps are converted as-is.
    """
    if isinstance(zone, str):
        zone = ZoneInfo(zone)
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(zone)
