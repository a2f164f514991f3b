from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Optional

REGISTRY_DATE_FORMAT = "%Y-%m-%d"


def utcnow() -> datetime:
    """UTC 'now' without tzinfo; every stored timestamp is UTC-naive."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_registry_date(value) -> Optional[date]:
    """
    Registry date fields come as "2024-03-01" or "2024-03-01T00:00:00Z".

    Offsets are converted to UTC before the date is taken. Empty values
    give None; anything else unparseable raises ValueError.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return None
    if "T" not in text:
        return date.fromisoformat(text)

    parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc)
    return parsed.date()


def to_registry_date(value: Optional[date]) -> Optional[str]:
    if value is None:
        return None
    return value.strftime(REGISTRY_DATE_FORMAT)


def recent_date_range(days: int = 7) -> tuple[str, str]:
    """(start, end) registry dates covering the last `days` days."""
    end = utcnow().date()
    return to_registry_date(end - timedelta(days=days)), to_registry_date(end)


def to_utc_z(dt: Optional[datetime]) -> Optional[str]:
    """ISO-8601 with a trailing Z, to the second. Naive values are UTC."""
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"
