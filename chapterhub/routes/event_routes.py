import logging
from datetime import date
from typing import Optional

from bson import ObjectId
from fastapi import APIRouter, Depends, Query
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from chapterhub.checkin_code import verify_checkin_code
from chapterhub.database.connection import (
    COMMITTEES_COLLECTION,
    EVENTS_COLLECTION,
    MEMBERS_COLLECTION,
    get_db,
)
from chapterhub.errors import (
    AuthorizationError,
    NotFoundError,
    ValidationError,
    parse_body_object_id,
    parse_object_id,
)
from chapterhub.models.event_model import CheckInIn, EventCreate, EventUpdate, ManualCheckInIn
from chapterhub.recurrence import ensure_future_occurrences, normalize_recurrence
from chapterhub.security import get_current_member, is_admin, is_elections_officer
from chapterhub.serializers import serialize_doc, serialize_docs, to_json
from chapterhub.timeutils import meeting_date_range, to_utc_naive, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/events", tags=["Events"])


def _committee_roles(db: Database, member: dict, committee_id) -> tuple:
    """(is_head, is_member) of ``member`` for the committee, both False if none."""
    if not committee_id:
        return False, False
    committee = db[COMMITTEES_COLLECTION].find_one({"_id": committee_id})
    if not committee:
        return False, False
    is_head = committee.get("head_id") == member["_id"]
    return is_head, member["_id"] in (committee.get("member_ids") or [])


def _can_manage_event(db: Database, member: dict, event: dict) -> bool:
    if is_admin(member) or is_elections_officer(member):
        return True
    is_head, _ = _committee_roles(db, member, event.get("committee_id"))
    return is_head


def _can_run_check_in(db: Database, member: dict, event: dict) -> bool:
    if is_admin(member):
        return True
    is_head, _ = _committee_roles(db, member, event.get("committee_id"))
    return is_head


def _find_event(db: Database, event_id: str) -> dict:
    event = db[EVENTS_COLLECTION].find_one({"_id": parse_object_id(event_id, "Event")})
    if not event:
        raise NotFoundError("Event not found")
    return event


def _recurrence_doc(recurrence, previous: Optional[dict] = None) -> dict:
    raw = recurrence.model_dump() if recurrence is not None else {}
    if raw.get("end_date") is not None:
        raw["end_date"] = to_utc_naive(raw["end_date"])
    return normalize_recurrence(raw, previous)


# ------------------------------
# LIST / CREATE
# ------------------------------
@router.get("")
def list_events(
    committee_id: Optional[str] = None,
    include_past: bool = False,
    status: Optional[str] = None,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    query = {}
    if committee_id:
        query["committee_id"] = parse_body_object_id(committee_id, "committee_id")
    if not include_past:
        query["end_time"] = {"$gte": utcnow()}
    if status:
        statuses = [s.strip() for s in status.split(",") if s.strip()]
        if len(statuses) == 1:
            query["status"] = statuses[0]
        elif statuses:
            query["status"] = {"$in": statuses}
    if member.get("status") == "Alumni":
        query["visible_to_alumni"] = True

    events = db[EVENTS_COLLECTION].find(query).sort("start_time", ASCENDING)
    return serialize_docs(events)


@router.post("", status_code=201)
def create_event(
    data: EventCreate,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    start_time = to_utc_naive(data.start_time)
    end_time = to_utc_naive(data.end_time)
    if end_time <= start_time:
        raise ValidationError("end_time must be after start_time")

    committee_id = None
    privileged = is_admin(member) or is_elections_officer(member)
    if data.committee_id:
        committee_id = parse_body_object_id(data.committee_id, "committee_id")
        if not db[COMMITTEES_COLLECTION].find_one({"_id": committee_id}):
            raise NotFoundError("Committee not found")
        is_head, is_member = _committee_roles(db, member, committee_id)
        if not (privileged or is_head or is_member):
            raise AuthorizationError("Forbidden")
    elif not privileged:
        raise AuthorizationError("Chapter-wide events need an admin or E-Council member")

    event = {
        "name": data.name.strip(),
        "description": data.description,
        "committee_id": committee_id,
        "start_time": start_time,
        "end_time": end_time,
        "started_at": None,
        "ended_at": None,
        "location": data.location,
        "event_type": data.event_type,
        "gem_category": data.gem_category,
        "recurrence": _recurrence_doc(data.recurrence),
        "recurrence_parent_id": None,
        "status": data.status,
        "visible_to_alumni": data.visible_to_alumni,
        "attendees": [],
        "rsvps": [],
        "created_by": member["_id"],
        "created_at": utcnow(),
    }
    event["_id"] = db[EVENTS_COLLECTION].insert_one(event).inserted_id

    if committee_id:
        db[COMMITTEES_COLLECTION].update_one(
            {"_id": committee_id}, {"$addToSet": {"event_ids": event["_id"]}}
        )
    if event["recurrence"]["enabled"]:
        ensure_future_occurrences(db[EVENTS_COLLECTION], event["_id"])

    logger.info(f"Event {event['_id']} created by {member['user_id']}")
    return serialize_doc(event)


# ------------------------------
# ATTENDANCE LEDGER
# ------------------------------
@router.get("/attendance")
def get_attendance(
    member_id: str,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    viewer: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    """
    Events a member was checked in to, optionally limited to a date range
    (inclusive, chapter-local days). Admins and E-Council get the event list,
    everyone else only the total.
    """
    target = parse_body_object_id(member_id, "member_id")
    lower = meeting_date_range(start.isoformat())[0] if start else None
    upper = meeting_date_range(end.isoformat())[1] if end else None

    events = db[EVENTS_COLLECTION].find({"attendees.member_id": target}).sort("start_time", DESCENDING)
    attended = []
    for event in events:
        entry = next(a for a in event["attendees"] if a.get("member_id") == target)
        when = entry.get("checked_in_at") or event.get("start_time")
        if lower and when < lower:
            continue
        if upper and when >= upper:
            continue
        attended.append((event, entry))

    if not (is_admin(viewer) or is_elections_officer(viewer)):
        return {"total": len(attended)}

    committee_ids = list({e["committee_id"] for e, _ in attended if e.get("committee_id")})
    names = {
        c["_id"]: c["name"]
        for c in db[COMMITTEES_COLLECTION].find({"_id": {"$in": committee_ids}}, {"name": 1})
    }
    return to_json({
        "total": len(attended),
        "events": [
            {
                "id": event["_id"],
                "name": event["name"],
                "start_time": event["start_time"],
                "event_type": event.get("event_type") or ("event" if event.get("committee_id") else "chapter"),
                "committee_id": event.get("committee_id"),
                "committee_name": names.get(event.get("committee_id"), "Committee") if event.get("committee_id") else "Chapter",
                "checked_in_at": entry.get("checked_in_at"),
            }
            for event, entry in attended
        ],
    })


# ------------------------------
# SINGLE EVENT
# ------------------------------
@router.get("/{event_id}")
def get_event(
    event_id: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    event = _find_event(db, event_id)
    if member.get("status") == "Alumni" and not event.get("visible_to_alumni", True):
        raise AuthorizationError("Forbidden")

    ids = [a["member_id"] for a in event.get("attendees", []) if a.get("member_id")]
    people = {
        m["_id"]: m
        for m in db[MEMBERS_COLLECTION].find(
            {"_id": {"$in": ids}}, {"first_name": 1, "last_name": 1, "roll_no": 1}
        )
    }
    for attendee in event.get("attendees", []):
        person = people.get(attendee.get("member_id"))
        if person:
            attendee["member"] = {
                "id": person["_id"],
                "first_name": person.get("first_name"),
                "last_name": person.get("last_name"),
                "roll_no": person.get("roll_no"),
            }
    return serialize_doc(event)


@router.patch("/{event_id}")
def update_event(
    event_id: str,
    updates: EventUpdate,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    event = _find_event(db, event_id)
    if not _can_manage_event(db, member, event):
        raise AuthorizationError("Forbidden")
    provided = updates.model_dump(exclude_unset=True)
    if "committee_id" in provided and not is_admin(member):
        raise AuthorizationError("Only admins can change committee_id")

    changes = {}
    for field in ("name", "description", "location", "event_type", "gem_category", "visible_to_alumni", "status"):
        if provided.get(field) is not None:
            changes[field] = provided[field]
    if provided.get("start_time") is not None:
        changes["start_time"] = to_utc_naive(provided["start_time"])
    if provided.get("end_time") is not None:
        changes["end_time"] = to_utc_naive(provided["end_time"])
    if changes.get("end_time", event["end_time"]) <= changes.get("start_time", event["start_time"]):
        raise ValidationError("end_time must be after start_time")
    if "recurrence" in provided:
        changes["recurrence"] = _recurrence_doc(updates.recurrence, event.get("recurrence"))
    if "committee_id" in provided:
        new_committee = provided["committee_id"]
        changes["committee_id"] = parse_body_object_id(new_committee, "committee_id") if new_committee else None
        if changes["committee_id"] and not db[COMMITTEES_COLLECTION].find_one({"_id": changes["committee_id"]}):
            raise NotFoundError("Committee not found")

    status = changes.get("status")
    if status == "ongoing" and not event.get("started_at"):
        changes["started_at"] = utcnow()
    if status == "completed" and not event.get("ended_at"):
        changes["ended_at"] = utcnow()
    if status == "cancelled":
        changes["ended_at"] = utcnow()

    updated = db[EVENTS_COLLECTION].find_one_and_update(
        {"_id": event["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
    )

    old_committee, new_committee = event.get("committee_id"), updated.get("committee_id")
    if old_committee != new_committee:
        if old_committee:
            db[COMMITTEES_COLLECTION].update_one({"_id": old_committee}, {"$pull": {"event_ids": event["_id"]}})
        if new_committee:
            db[COMMITTEES_COLLECTION].update_one({"_id": new_committee}, {"$addToSet": {"event_ids": event["_id"]}})
    if (updated.get("recurrence") or {}).get("enabled"):
        ensure_future_occurrences(db[EVENTS_COLLECTION], event["_id"])

    logger.info(f"Event {event['_id']} updated by {member['user_id']}: {sorted(changes)}")
    return serialize_doc(updated)


@router.delete("/{event_id}")
def delete_event(
    event_id: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    event = _find_event(db, event_id)
    if not _can_manage_event(db, member, event):
        raise AuthorizationError("Forbidden")
    db[EVENTS_COLLECTION].delete_one({"_id": event["_id"]})
    if event.get("committee_id"):
        db[COMMITTEES_COLLECTION].update_one(
            {"_id": event["committee_id"]}, {"$pull": {"event_ids": event["_id"]}}
        )
    logger.info(f"Event {event['_id']} deleted by {member['user_id']}")
    return {"status": "deleted"}


# ------------------------------
# CHECK-IN
# ------------------------------
def _record_check_in(db: Database, event: dict, member_id: ObjectId, source=None, scanner=None) -> bool:
    """Adds the attendee unless already present. True when newly recorded."""
    result = db[EVENTS_COLLECTION].update_one(
        {"_id": event["_id"], "attendees.member_id": {"$ne": member_id}},
        {"$push": {"attendees": {
            "member_id": member_id,
            "checked_in_at": utcnow(),
            "source": source,
            "scanner_member_id": scanner,
        }}},
    )
    return result.matched_count > 0


@router.post("/{event_id}/check-in")
def check_in(
    event_id: str,
    data: CheckInIn,
    actor: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    event = _find_event(db, event_id)
    if event.get("status") != "ongoing":
        raise ValidationError("Event is not accepting check-ins")
    if not _can_run_check_in(db, actor, event):
        raise AuthorizationError("Forbidden")

    decoded = verify_checkin_code(data.code)
    if not decoded:
        logger.warning(f"Rejected check-in code for event {event['_id']} from scanner {actor['user_id']}")
        raise ValidationError("Invalid code")
    if not ObjectId.is_valid(decoded["member_id"]):
        raise ValidationError("Member referenced in code is invalid")
    target = ObjectId(decoded["member_id"])
    if not db[MEMBERS_COLLECTION].find_one({"_id": target}):
        raise NotFoundError("Member not found")

    scanner = None
    if data.scanner_member_id and ObjectId.is_valid(data.scanner_member_id):
        scanner = ObjectId(data.scanner_member_id)

    if not _record_check_in(db, event, target, data.source, scanner):
        return {"status": "already-checked-in", "member_id": decoded["member_id"]}
    logger.info(f"Checked in member {target} to event {event['_id']} via {data.source}")
    return {
        "status": "checked-in",
        "member_id": decoded["member_id"],
        "source": data.source,
        "scanner_member_id": data.scanner_member_id,
    }


@router.post("/{event_id}/manual-check-in")
def manual_check_in(
    event_id: str,
    data: ManualCheckInIn,
    actor: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    target = parse_body_object_id(data.member_id, "member_id")
    event = _find_event(db, event_id)
    if not _can_run_check_in(db, actor, event):
        raise AuthorizationError("Forbidden")
    if not db[MEMBERS_COLLECTION].find_one({"_id": target}):
        raise NotFoundError("Member not found")

    if not _record_check_in(db, event, target, source="manual", scanner=actor["_id"]):
        return {"status": "already-checked-in"}
    logger.info(f"Manual check-in of {target} to event {event['_id']} by {actor['user_id']}")
    return {"status": "checked-in"}


@router.post("/{event_id}/rsvp")
def toggle_rsvp(
    event_id: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    event = _find_event(db, event_id)
    if member.get("status") == "Alumni" and not event.get("visible_to_alumni", True):
        raise AuthorizationError("Forbidden")

    attending = member["_id"] in (event.get("rsvps") or [])
    update = {"$pull": {"rsvps": member["_id"]}} if attending else {"$addToSet": {"rsvps": member["_id"]}}
    updated = db[EVENTS_COLLECTION].find_one_and_update(
        {"_id": event["_id"]}, update, return_document=ReturnDocument.AFTER
    )
    return {"attending": not attending, "rsvp_count": len(updated.get("rsvps") or [])}
