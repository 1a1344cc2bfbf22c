# src/alert_bridge/utils/time_utils.py

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo
from dateutil import parser as dateparser  # more robust than strptime


def utc_now() -> datetime:
    """Return tz-aware UTC "now"."""
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def to_utc_iso(dt: datetime) -> str:
    """Canonical storage form; lexicographic order matches time order."""
    return ensure_utc(dt).isoformat(timespec="seconds")


def from_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    return ensure_utc(datetime.fromisoformat(value))


def parse_source_timestamp(value: Optional[str]) -> datetime:
    """
    Normalize a source timestamp (e.g. Graph's ``createdDateTime``) to UTC.
    Falls back to "now" when the source omits it.
    """
    if not value:
        return utc_now()
    return ensure_utc(dateparser.isoparse(value))


def format_local(dt: datetime, tz_name: str) -> str:
    """Render a timestamp for humans in the fixed display timezone."""
    return ensure_utc(dt).astimezone(ZoneInfo(tz_name)).strftime("%d.%m.%Y %H:%M:%S")
