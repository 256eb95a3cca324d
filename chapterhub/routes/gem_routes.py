import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from chapterhub.database.connection import (
    COMMITTEES_COLLECTION,
    EVENTS_COLLECTION,
    GEM_RECORDS_COLLECTION,
    MEMBERS_COLLECTION,
    get_db,
)
from chapterhub.errors import AuthorizationError, NotFoundError, ValidationError, parse_body_object_id
from chapterhub.gem import GEM_GPA_THRESHOLD, RUSH_TARGET, AttendanceTally, member_gem_status, resolve_semester
from chapterhub.models.gem_model import GpaUpdate
from chapterhub.security import get_current_member, is_admin, is_elections_officer
from chapterhub.serializers import serialize_doc, to_json
from chapterhub.timeutils import iso, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/gem", tags=["GEM"])

GEM_MEMBER_FIELDS = {"roll_no": 1, "first_name": 1, "last_name": 1, "status": 1, "role": 1}


def _is_privileged(member: dict) -> bool:
    return is_admin(member) or is_elections_officer(member)


def _committees_by_member(db: Database) -> dict:
    """member id -> committees they head or sit on, in name order."""
    memberships = {}
    for committee in db[COMMITTEES_COLLECTION].find({}, {"name": 1, "head_id": 1, "member_ids": 1}).sort("name"):
        people = set(committee.get("member_ids") or [])
        if committee.get("head_id"):
            people.add(committee["head_id"])
        for member_id in people:
            memberships.setdefault(member_id, []).append(committee)
    return memberships


@router.get("/status")
def get_gem_status(
    member_id: Optional[str] = None,
    start: Optional[date] = Query(None),
    end: Optional[date] = Query(None),
    semester: Optional[str] = None,
    viewer: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    """
    GEM progress for the semester. Admins and E-Council see every active
    member (or ``member_id`` alone); everyone else only themselves. Without a
    range or semester the semester of the latest scheduled event is used.
    """
    privileged = _is_privileged(viewer)
    target = parse_body_object_id(member_id, "member_id") if member_id else None
    if not privileged and target is not None and target != viewer["_id"]:
        raise AuthorizationError("Forbidden")

    reference = utcnow()
    if not (start or end or semester):
        latest = db[EVENTS_COLLECTION].find_one(
            {"status": {"$ne": "cancelled"}}, {"start_time": 1}, sort=[("start_time", DESCENDING)]
        )
        if latest:
            reference = latest["start_time"]
    term = resolve_semester(reference, start=start, end=end, semester=semester)

    events = db[EVENTS_COLLECTION].find(
        {"start_time": {"$gte": term.start, "$lt": term.end}, "status": {"$ne": "cancelled"}},
        {"committee_id": 1, "attendees": 1, "start_time": 1, "event_type": 1, "status": 1, "gem_category": 1},
    )
    tally = AttendanceTally(events, utcnow())

    if privileged:
        query = {"_id": target} if target is not None else {"status": "Active"}
    else:
        query = {"_id": viewer["_id"]}
    members = list(db[MEMBERS_COLLECTION].find(query, GEM_MEMBER_FIELDS))
    if target is not None and not members:
        raise NotFoundError("Member not found")

    gpas = {
        record["member_id"]: record.get("gpa")
        for record in db[GEM_RECORDS_COLLECTION].find(
            {"member_id": {"$in": [m["_id"] for m in members]}, "semester": term.name}
        )
    }
    memberships = _committees_by_member(db)
    statuses = [
        member_gem_status(member, tally, memberships.get(member["_id"], []), gpas.get(member["_id"]))
        for member in members
    ]
    statuses.sort(key=lambda s: s.get("roll_no") or "")

    return to_json({
        "semester_name": term.name,
        "start_date": iso(term.start),
        "end_date": iso(term.end),
        "general_total": tally.general_total,
        "general_target": tally.general_target,
        "rush_target": RUSH_TARGET,
        "gpa_threshold": GEM_GPA_THRESHOLD,
        "members": statuses,
    })


@router.patch("/status")
def set_gpa(
    data: GpaUpdate,
    viewer: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    """Records a member's GPA for a semester (default: the current one)."""
    if not _is_privileged(viewer):
        raise AuthorizationError("Forbidden")
    member_oid = parse_body_object_id(data.member_id, "member_id")
    if not db[MEMBERS_COLLECTION].find_one({"_id": member_oid}, {"_id": 1}):
        raise NotFoundError("Member not found")
    if data.gpa is not None and not 0 <= data.gpa <= 4:
        raise ValidationError("GPA must be between 0.0 and 4.0")

    term = resolve_semester(utcnow(), semester=data.semester)
    record = db[GEM_RECORDS_COLLECTION].find_one_and_update(
        {"member_id": member_oid, "semester": term.name},
        {"$set": {"gpa": data.gpa, "updated_at": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.info(f"GPA for {member_oid} in {term.name} set by {viewer['user_id']}")
    return {"record": serialize_doc(record)}
