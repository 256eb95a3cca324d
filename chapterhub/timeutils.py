# chapterhub/timeutils.py
# Mongo hands back naive UTC datetimes, so everything stored is naive UTC.
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
from zoneinfo import ZoneInfo

from chapterhub.config import CHAPTER_TIMEZONE

CHAPTER_ZONE = ZoneInfo(CHAPTER_TIMEZONE)


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_utc_naive(value: datetime) -> datetime:
    """Incoming datetimes without tzinfo are taken as UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def to_chapter_time(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc).astimezone(CHAPTER_ZONE)


def from_chapter_time(value: datetime) -> datetime:
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc).isoformat().replace("+00:00", "Z")


def meeting_date_key(value: datetime) -> str:
    """YYYY-MM-DD of a stored UTC datetime, as seen in the chapter's zone."""
    return to_chapter_time(value).strftime("%Y-%m-%d")


def meeting_date_range(key: str) -> Optional[Tuple[datetime, datetime]]:
    """UTC bounds of the chapter-local day named by ``key``, or None."""
    try:
        day = date.fromisoformat(key)
    except ValueError:
        return None
    start = datetime.combine(day, time.min, tzinfo=CHAPTER_ZONE)
    end = start + timedelta(days=1)
    return from_chapter_time(start), from_chapter_time(end)
