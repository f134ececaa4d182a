from __future__ import annotations

from datetime import datetime, timedelta, timezone


def to_iso(dt: datetime) -> str:
    """Format an aware datetime as ISO-8601 UTC with Z (seconds precision)."""
    return dt.astimezone(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def utcnow_iso() -> str:
    """Current UTC time as ISO-8601 string with Z."""
    return to_iso(datetime.now(timezone.utc))


def utc_in_minutes(minutes: int) -> str:
    return to_iso(datetime.now(timezone.utc) + timedelta(minutes=int(minutes)))
