"""
Timestamp helpers shared by the data models and the storage layer.

All persisted datetimes are timezone-aware UTC.
"""
from datetime import date, datetime, timezone
from typing import Optional, Union


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_storage(value: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime so that string order matches time order."""
    if value is None:
        return None
    return ensure_utc(value).isoformat(timespec='microseconds')


def from_storage(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    return ensure_utc(datetime.fromisoformat(value))


def parse_date(value: Union[str, date, None]) -> Optional[date]:
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value)
