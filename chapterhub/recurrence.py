# chapterhub/recurrence.py
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional, Tuple

from dateutil.relativedelta import relativedelta
from pymongo import ASCENDING
from pymongo.collection import Collection

from chapterhub.timeutils import from_chapter_time, to_chapter_time, utcnow

logger = logging.getLogger(__name__)

FREQUENCIES = ("daily", "weekly", "monthly")


def normalize_recurrence(raw: Optional[Dict[str, Any]], previous: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Fill in defaults; unknown frequencies fall back to the previous value or weekly."""
    raw = raw or {}
    previous = previous or {}
    frequency = raw.get("frequency")
    if frequency not in FREQUENCIES:
        frequency = previous.get("frequency") or "weekly"
    interval = int(raw.get("interval") or previous.get("interval") or 1)
    count = int(raw.get("count") or previous.get("count") or 1)
    if "end_date" in raw:
        end_date = raw.get("end_date")
    else:
        end_date = previous.get("end_date")
    return {
        "enabled": bool(raw.get("enabled")),
        "frequency": frequency,
        "interval": max(interval, 1),
        "end_date": end_date,
        "count": max(count, 1),
    }


def add_recurrence(
    start_time: datetime,
    end_time: datetime,
    frequency: str = "weekly",
    interval: int = 1,
    end_date: Optional[datetime] = None,
) -> Optional[Tuple[datetime, datetime]]:
    """
    Next occurrence after (start_time, end_time), or None once past end_date.

    Arithmetic happens in the chapter's time zone so a weekly 7pm meeting
    stays at 7pm local; the duration of the previous occurrence is kept.
    """
    interval = max(int(interval or 1), 1)
    local_start = to_chapter_time(start_time)
    if frequency == "daily":
        next_local = local_start + timedelta(days=interval)
    elif frequency == "monthly":
        next_local = local_start + relativedelta(months=interval)
    else:
        next_local = local_start + timedelta(weeks=interval)

    next_start = from_chapter_time(next_local)
    if end_date is not None and next_start > end_date:
        return None
    return next_start, next_start + (end_time - start_time)


def ensure_future_occurrences(events: Collection, parent_id) -> int:
    """
    Materialize occurrences of a recurring event until ``recurrence.count``
    of them lie in the future. Returns how many were created.
    """
    parent = events.find_one({"_id": parent_id})
    if not parent or not (parent.get("recurrence") or {}).get("enabled"):
        return 0
    recurrence = parent["recurrence"]
    count = max(int(recurrence.get("count") or 1), 1)
    now = utcnow()

    series = list(
        events.find({"$or": [{"_id": parent_id}, {"recurrence_parent_id": parent_id}]})
        .sort("start_time", ASCENDING)
    )
    future = [e for e in series if e["start_time"] >= now]
    to_create = count - len(future)
    last = series[-1] if series else parent
    created = 0

    while to_create > 0:
        nxt = add_recurrence(
            last["start_time"],
            last["end_time"],
            recurrence.get("frequency", "weekly"),
            recurrence.get("interval", 1),
            recurrence.get("end_date"),
        )
        if nxt is None:
            break
        occurrence = {
            "name": parent["name"],
            "description": parent.get("description", ""),
            "committee_id": parent.get("committee_id"),
            "start_time": nxt[0],
            "end_time": nxt[1],
            "started_at": None,
            "ended_at": None,
            "location": parent.get("location", ""),
            "event_type": parent.get("event_type", "event"),
            "gem_category": parent.get("gem_category"),
            "recurrence": {"enabled": False},
            "recurrence_parent_id": parent_id,
            "status": "scheduled",
            "visible_to_alumni": parent.get("visible_to_alumni", True),
            "attendees": [],
            "rsvps": [],
            "created_at": now,
        }
        occurrence["_id"] = events.insert_one(occurrence).inserted_id
        last = occurrence
        to_create -= 1
        created += 1

    if created:
        logger.info(f"Created {created} occurrence(s) of recurring event {parent_id}")
    return created
