# clinicqueue/clock.py
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import get_settings

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def clinic_timezone(offset_minutes: Optional[int] = None) -> timezone:
    """Fixed-offset zone in which slot times are expressed (IST by default)."""
    if offset_minutes is None:
        offset_minutes = get_settings().clinic_utc_offset_minutes
    return timezone(timedelta(minutes=offset_minutes))


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from start to end, rounded half up."""
    seconds = (as_utc(end) - as_utc(start)).total_seconds()
    if seconds >= 0:
        return int(seconds / 60 + 0.5)
    return -int(-seconds / 60 + 0.5)


def today_slot_date(now: Optional[datetime] = None) -> str:
    """Today's day key in the D_M_YYYY form the booking front-ends use."""
    local = (now or utcnow()).astimezone(clinic_timezone())
    return f"{local.day}_{local.month}_{local.year}"
