from datetime import datetime, date, timezone, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime read back from the database.
    SQLite drops tzinfo, so naive values are taken to be UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def get_zone(tz_name: Optional[str]):
    if not tz_name:
        return timezone.utc
    try:
        return ZoneInfo(tz_name)
    except Exception:
        # invalid timezone -> UTC
        return timezone.utc

def local_now(tz_name: Optional[str], now: Optional[datetime] = None) -> datetime:
    """Current time in the user's timezone (UTC when tz_name is missing or invalid)."""
    now_utc = as_utc(now) if now else utcnow()
    return now_utc.astimezone(get_zone(tz_name))

def local_today(tz_name: Optional[str], now: Optional[datetime] = None) -> date:
    return local_now(tz_name, now).date()

def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes elapsed, never negative."""
    delta = as_utc(end) - as_utc(start)
    return max(0, int(delta / timedelta(minutes=1)))

def format_span(minutes: int) -> str:
    """Render a countdown as '3h 25m'."""
    minutes = max(0, minutes)
    return f"{minutes // 60}h {minutes % 60}m"
