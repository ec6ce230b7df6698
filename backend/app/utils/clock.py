"""Timezone-aware time helpers shared by the invitation lifecycle."""

from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes (SQLite drops tzinfo) as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def has_passed(deadline: Optional[datetime], now: Optional[datetime] = None) -> bool:
    """True once ``now`` reaches ``deadline``. A tie counts as passed."""
    if deadline is None:
        return False
    return as_utc(deadline) <= as_utc(now or utcnow())
