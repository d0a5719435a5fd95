"""Date manipulation utilities"""

from datetime import date, datetime, timedelta, timezone


def add_days(from_date: date, days: int) -> date:
    """Calendar-day addition (rolls over months, years and leap days)"""
    return from_date + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    """Signed number of calendar days from start to end"""
    return (end - start).days


def utcnow() -> datetime:
    """Timezone-aware current UTC time"""
    return datetime.now(timezone.utc)
