import logging
from typing import List, Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from chapterhub.database.connection import (
    COMMITTEES_COLLECTION,
    EVENTS_COLLECTION,
    MEMBERS_COLLECTION,
    get_db,
)
from chapterhub.errors import ConflictError, NotFoundError, ValidationError, parse_body_object_id, parse_object_id
from chapterhub.models.committee_model import CommitteeCreate, CommitteeUpdate
from chapterhub.security import get_current_member, require_admin
from chapterhub.serializers import serialize_doc, to_json
from chapterhub.timeutils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/committees", tags=["Committees"])

MEMBER_SUMMARY = {"first_name": 1, "last_name": 1, "roll_no": 1}


def _member_ids(raw: List[str]) -> list:
    ids = []
    for value in raw:
        oid = parse_body_object_id(value, "member_ids")
        if oid not in ids:
            ids.append(oid)
    return ids


def _update_head_flags(db: Database, old_head, new_head, committee_id) -> None:
    """Keep ``is_committee_head`` true exactly for members heading some committee."""
    if new_head:
        db[MEMBERS_COLLECTION].update_one({"_id": new_head}, {"$set": {"is_committee_head": True}})
    if old_head and old_head != new_head:
        still_head = db[COMMITTEES_COLLECTION].find_one(
            {"_id": {"$ne": committee_id}, "head_id": old_head}
        )
        if not still_head:
            db[MEMBERS_COLLECTION].update_one({"_id": old_head}, {"$set": {"is_committee_head": False}})


def _populate(db: Database, committee: dict) -> dict:
    ids = list(committee.get("member_ids") or [])
    if committee.get("head_id"):
        ids.append(committee["head_id"])
    people = {m["_id"]: m for m in db[MEMBERS_COLLECTION].find({"_id": {"$in": ids}}, MEMBER_SUMMARY)}

    data = serialize_doc(committee)
    head = people.get(committee.get("head_id"))
    data["head"] = serialize_doc(head) if head else None
    data["members"] = [serialize_doc(people[i]) for i in committee.get("member_ids") or [] if i in people]
    return data


def _find_committee(db: Database, committee_id: str) -> dict:
    committee = db[COMMITTEES_COLLECTION].find_one({"_id": parse_object_id(committee_id, "Committee")})
    if not committee:
        raise NotFoundError("Committee not found")
    return committee


# ------------------------------
# READ
# ------------------------------
@router.get("")
def list_committees(
    member_id: Optional[str] = None,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    query = {}
    if member_id:
        oid = parse_body_object_id(member_id, "member_id")
        query["$or"] = [{"head_id": oid}, {"member_ids": oid}]
    return [_populate(db, c) for c in db[COMMITTEES_COLLECTION].find(query).sort("name", 1)]


@router.get("/{committee_id}")
def get_committee(
    committee_id: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    committee = _find_committee(db, committee_id)
    data = _populate(db, committee)
    events = db[EVENTS_COLLECTION].find(
        {"_id": {"$in": committee.get("event_ids") or []}},
        {"name": 1, "start_time": 1, "end_time": 1, "status": 1},
    ).sort("start_time", 1)
    data["events"] = [serialize_doc(e) for e in events]
    return to_json(data)


# ------------------------------
# ADMIN
# ------------------------------
@router.post("", status_code=201)
def create_committee(
    data: CommitteeCreate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    name = data.name.strip()
    if not name:
        raise ValidationError("Name is required")
    committee = {
        "name": name,
        "description": data.description,
        "head_id": parse_body_object_id(data.head_id, "head_id") if data.head_id else None,
        "member_ids": _member_ids(data.member_ids),
        "event_ids": [],
        "created_at": utcnow(),
    }
    try:
        committee["_id"] = db[COMMITTEES_COLLECTION].insert_one(committee).inserted_id
    except DuplicateKeyError:
        raise ConflictError("Committee name already exists")

    _update_head_flags(db, None, committee["head_id"], committee["_id"])
    logger.info(f"Committee {committee['_id']} ({name}) created by {admin['user_id']}")
    return _populate(db, committee)


@router.patch("/{committee_id}")
def update_committee(
    committee_id: str,
    updates: CommitteeUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    committee = _find_committee(db, committee_id)
    provided = updates.model_dump(exclude_unset=True)

    changes = {}
    if provided.get("name") is not None:
        if not provided["name"].strip():
            raise ValidationError("Name is required")
        changes["name"] = provided["name"].strip()
    if "description" in provided:
        changes["description"] = provided["description"] or ""
    if "head_id" in provided:
        changes["head_id"] = parse_body_object_id(provided["head_id"], "head_id") if provided["head_id"] else None
    if "member_ids" in provided:
        changes["member_ids"] = _member_ids(provided["member_ids"] or [])

    old_head = committee.get("head_id")
    if changes:
        try:
            committee = db[COMMITTEES_COLLECTION].find_one_and_update(
                {"_id": committee["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
        except DuplicateKeyError:
            raise ConflictError("Committee name already exists")
        _update_head_flags(db, old_head, committee.get("head_id"), committee["_id"])
        logger.info(f"Committee {committee['_id']} updated by {admin['user_id']}: {sorted(changes)}")
    return _populate(db, committee)


@router.delete("/{committee_id}")
def delete_committee(
    committee_id: str,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    committee = _find_committee(db, committee_id)
    removed = db[EVENTS_COLLECTION].delete_many({"committee_id": committee["_id"]}).deleted_count
    db[COMMITTEES_COLLECTION].delete_one({"_id": committee["_id"]})
    _update_head_flags(db, committee.get("head_id"), None, committee["_id"])
    logger.info(f"Committee {committee['_id']} deleted by {admin['user_id']} with {removed} event(s)")
    return {"status": "deleted"}
