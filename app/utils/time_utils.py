# app/utils/time_utils.py
"""
Timestamp helpers. The app works with aware UTC datetimes everywhere and
stores naive UTC in the database (SQLite has no timezone support).
"""

from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso(value: str) -> Optional[datetime]:
    """Parse an ISO-8601 string ('Z' suffix allowed). Naive values are taken as UTC. None on error."""
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return as_utc(parsed)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    return as_utc(value).replace(tzinfo=None)


def isoformat_z(value: datetime) -> str:
    """ISO-8601 with a 'Z' suffix, millisecond precision, like browsers emit."""
    return as_utc(value).isoformat(timespec="milliseconds").replace("+00:00", "Z")
