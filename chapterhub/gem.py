"""
GEM (good-standing) status computed from the attendance ledger.

A member is in good standing for a semester once they satisfy at least
``GEM_REQUIRED_COUNT`` of the requirements below. Each attended event counts
toward the GEM category set on it, or the one implied by its type: chapter
events are general conference meetings and committee meetings count toward
their committee.
"""
import math
import re
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, NamedTuple, Optional, get_args

from chapterhub.models.event_model import GemCategory
from chapterhub.timeutils import CHAPTER_ZONE, from_chapter_time, meeting_date_range, to_chapter_time

GEM_CATEGORIES = get_args(GemCategory)

GEM_GPA_THRESHOLD = 3.0
RUSH_TARGET = 5
GEM_REQUIRED_COUNT = 5

# Categories that only need a single attended event
PILLAR_KEYS = {
    "pillar-brotherhood": "brotherhood",
    "pillar-service": "service",
    "pillar-professionalism": "professionalism",
    "fso-event": "fso",
    "lock-in": "lock_in",
}

_SEMESTER_NAME = re.compile(r"^(spring|fall)\s+(\d{4})$", re.IGNORECASE)


class SemesterRange(NamedTuple):
    name: str
    start: datetime  # inclusive, naive UTC
    end: datetime  # exclusive, naive UTC


def _local_midnight(year: int, month: int) -> datetime:
    return from_chapter_time(datetime(year, month, 1, tzinfo=CHAPTER_ZONE))


def semester_for_term(term: str, year: int) -> SemesterRange:
    """Spring runs January through June, Fall July through December, in chapter time."""
    if term == "Spring":
        return SemesterRange(f"Spring {year}", _local_midnight(year, 1), _local_midnight(year, 7))
    return SemesterRange(f"Fall {year}", _local_midnight(year, 7), _local_midnight(year + 1, 1))


def semester_containing(moment: datetime) -> SemesterRange:
    local = to_chapter_time(moment)
    return semester_for_term("Spring" if local.month < 7 else "Fall", local.year)


def parse_semester_name(name: str) -> Optional[SemesterRange]:
    match = _SEMESTER_NAME.match(name.strip())
    if not match:
        return None
    return semester_for_term(match.group(1).capitalize(), int(match.group(2)))


def resolve_semester(
    reference: datetime,
    start: Optional[date] = None,
    end: Optional[date] = None,
    semester: Optional[str] = None,
) -> SemesterRange:
    """
    Explicit ``start``/``end`` days win over a semester name; anything that
    does not parse falls back to the semester containing ``reference``.
    """
    default = semester_containing(reference)
    if start or end:
        if start and end and start > end:
            start, end = end, start
        lower = meeting_date_range(start.isoformat())[0] if start else default.start
        upper = meeting_date_range(end.isoformat())[1] if end else default.end
        return SemesterRange(semester_containing(lower).name, lower, upper)
    if semester:
        parsed = parse_semester_name(semester)
        if parsed:
            return parsed
    return default


def event_category(event: Dict[str, Any]) -> Optional[str]:
    category = event.get("gem_category")
    if category in GEM_CATEGORIES:
        return category
    if event.get("event_type") == "chapter":
        return "general-conference"
    if event.get("event_type") == "meeting" and event.get("committee_id"):
        return "committee-meeting"
    return None


class AttendanceTally:
    """Per-member attendance counts over a set of events."""

    def __init__(self, events: Iterable[Dict[str, Any]], now: datetime):
        self.general_total = 0
        self.committee_totals: Dict[Any, int] = {}
        self._counts: Dict[Any, Dict[str, int]] = {}
        self._committee_counts: Dict[Any, Dict[Any, int]] = {}
        for event in events:
            self._add(event, now)

    def _add(self, event: Dict[str, Any], now: datetime) -> None:
        if event.get("status") == "cancelled":
            return
        if event["start_time"] > now and event.get("status") != "completed":
            return
        category = event_category(event)
        if category is None:
            return
        committee_id = event.get("committee_id")
        if category == "general-conference":
            self.general_total += 1
        if category == "committee-meeting" and committee_id:
            self.committee_totals[committee_id] = self.committee_totals.get(committee_id, 0) + 1

        attendee_ids = {a["member_id"] for a in event.get("attendees") or [] if a.get("member_id")}
        for member_id in attendee_ids:
            counts = self._counts.setdefault(member_id, {})
            counts[category] = counts.get(category, 0) + 1
            if category == "committee-meeting" and committee_id:
                per_committee = self._committee_counts.setdefault(member_id, {})
                per_committee[committee_id] = per_committee.get(committee_id, 0) + 1

    def attended(self, member_id, category: str) -> int:
        return self._counts.get(member_id, {}).get(category, 0)

    def committee_attended(self, member_id, committee_id) -> int:
        return self._committee_counts.get(member_id, {}).get(committee_id, 0)

    @property
    def general_target(self) -> int:
        return math.ceil(self.general_total / 3) if self.general_total else 0


def member_gem_status(
    member: Dict[str, Any],
    tally: AttendanceTally,
    committees: List[Dict[str, Any]],
    gpa: Optional[float] = None,
) -> Dict[str, Any]:
    """
    GEM breakdown for one member. ``committees`` are the committees the member
    heads or sits on; each needs a strict majority of its meetings attended.
    """
    member_id = member["_id"]
    general = tally.attended(member_id, "general-conference")
    gem: Dict[str, Any] = {
        "general": {
            "attended": general,
            "total": tally.general_total,
            "required": tally.general_target,
            "satisfied": tally.general_total > 0 and general >= tally.general_target,
        },
    }

    details = []
    for committee in committees:
        total = tally.committee_totals.get(committee["_id"], 0)
        attended = tally.committee_attended(member_id, committee["_id"])
        required = total // 2 + 1 if total else 1
        details.append({
            "id": committee["_id"],
            "name": committee["name"],
            "total_meetings": total,
            "attended": attended,
            "required": required,
            "satisfied": total > 0 and attended >= required,
        })
    gem["committee"] = {"satisfied": all(d["satisfied"] for d in details), "details": details}

    for category, key in PILLAR_KEYS.items():
        attended = tally.attended(member_id, category)
        gem[key] = {"attended": attended, "satisfied": attended > 0}

    rush_events = tally.attended(member_id, "rush-event")
    rush_tabling = tally.attended(member_id, "rush-tabling")
    gem["rush"] = {
        "event_count": rush_events,
        "tabling_count": rush_tabling,
        "total": rush_events + rush_tabling,
        "required": RUSH_TARGET,
        "satisfied": rush_events + rush_tabling >= RUSH_TARGET,
    }
    gem["gpa"] = {
        "value": gpa,
        "threshold": GEM_GPA_THRESHOLD,
        "satisfied": gpa is not None and gpa >= GEM_GPA_THRESHOLD,
    }

    requirement_names = [
        ("general_conference", "general"),
        ("committee_meetings", "committee"),
        ("brotherhood", "brotherhood"),
        ("service", "service"),
        ("professionalism", "professionalism"),
        ("rush", "rush"),
        ("fso", "fso"),
        ("lock_in", "lock_in"),
        ("gpa", "gpa"),
    ]
    satisfied = [name for name, key in requirement_names if gem[key]["satisfied"]]
    return {
        "member_id": member_id,
        "roll_no": member.get("roll_no"),
        "first_name": member.get("first_name"),
        "last_name": member.get("last_name"),
        "status": member.get("status"),
        "role": member.get("role") or "member",
        "committees": [c["name"] for c in committees],
        "committee_ids": [c["_id"] for c in committees],
        "gem": gem,
        "satisfied_requirements": satisfied,
        "total_satisfied": len(satisfied),
        "has_completed_gem": len(satisfied) >= GEM_REQUIRED_COUNT,
    }
