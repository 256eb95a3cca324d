import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import DESCENDING, ReturnDocument
from pymongo.database import Database

from chapterhub.database.connection import EVENTS_COLLECTION, MINUTES_COLLECTION, get_db
from chapterhub.errors import AuthorizationError, NotFoundError, ValidationError, parse_body_object_id
from chapterhub.models.minute_model import MinuteCreate, MinuteUpdate
from chapterhub.security import get_current_member, is_admin, is_scribe
from chapterhub.serializers import serialize_doc, serialize_docs
from chapterhub.timeutils import meeting_date_key, meeting_date_range, to_utc_naive, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/minutes", tags=["Minutes"])


def _can_edit_minutes(member: dict) -> bool:
    return is_admin(member) or is_scribe(member)


def _require_editor(member: dict) -> None:
    if not _can_edit_minutes(member):
        raise AuthorizationError("Forbidden")


def _find_by_date_key(db: Database, key: str) -> Optional[dict]:
    minute = db[MINUTES_COLLECTION].find_one({"meeting_date_key": key})
    if minute:
        return minute
    # older records only carry meeting_date
    bounds = meeting_date_range(key)
    if not bounds:
        return None
    return db[MINUTES_COLLECTION].find_one({"meeting_date": {"$gte": bounds[0], "$lt": bounds[1]}})


def _linked_event(db: Database, event_id: Optional[str]) -> tuple:
    """(event _id, event name) for a linked event, or (None, "") when unlinked."""
    if not event_id:
        return None, ""
    event = db[EVENTS_COLLECTION].find_one({"_id": parse_body_object_id(event_id, "event_id")}, {"name": 1})
    if not event:
        raise NotFoundError("Linked event not found")
    return event["_id"], event.get("name", "")


def _meeting_fields(start_time) -> dict:
    key = meeting_date_key(start_time)
    return {"meeting_date_key": key, "meeting_date": meeting_date_range(key)[0]}


# ------------------------------
# LIST / CREATE
# ------------------------------
@router.get("")
def list_minutes(
    include_hidden: bool = False,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    query = {}
    if not (include_hidden and _can_edit_minutes(member)):
        query["hidden"] = False
    return serialize_docs(db[MINUTES_COLLECTION].find(query).sort("meeting_date", DESCENDING))


@router.post("", status_code=201)
def create_minutes(
    data: MinuteCreate,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    _require_editor(member)
    start_time = to_utc_naive(data.start_time)
    end_time = to_utc_naive(data.end_time)
    if end_time <= start_time:
        raise ValidationError("End time must be after start time")
    summary = data.executive_summary.strip()
    if not summary:
        raise ValidationError("Executive summary is required")
    event_id, event_name = _linked_event(db, data.event_id)

    minute = {
        **_meeting_fields(start_time),
        "start_time": start_time,
        "end_time": end_time,
        "actives_present": data.actives_present,
        "quorum_required": data.quorum_required,
        "executive_summary": summary,
        "event_id": event_id,
        "event_name": event_name,
        "minutes_url": data.minutes_url,
        "created_by": member["_id"],
        "hidden": False,
        "created_at": utcnow(),
    }
    minute["_id"] = db[MINUTES_COLLECTION].insert_one(minute).inserted_id
    logger.info(f"Minutes for {minute['meeting_date_key']} created by {member['user_id']}")
    return serialize_doc(minute)


# ------------------------------
# BY MEETING DATE
# ------------------------------
@router.get("/{date_key}")
def get_minutes(
    date_key: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    minute = _find_by_date_key(db, date_key)
    if not minute or (minute.get("hidden") and not _can_edit_minutes(member)):
        raise NotFoundError("Minutes not found")
    return serialize_doc(minute)


@router.patch("/{date_key}")
def update_minutes(
    date_key: str,
    updates: MinuteUpdate,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    _require_editor(member)
    minute = _find_by_date_key(db, date_key)
    if not minute:
        raise NotFoundError("Minutes not found")
    provided = updates.model_dump(exclude_unset=True)

    changes = {}
    if provided.get("start_time") is not None:
        changes["start_time"] = to_utc_naive(provided["start_time"])
        changes.update(_meeting_fields(changes["start_time"]))
    if provided.get("end_time") is not None:
        changes["end_time"] = to_utc_naive(provided["end_time"])
    if changes.get("end_time", minute["end_time"]) <= changes.get("start_time", minute["start_time"]):
        raise ValidationError("End time must be after start time")
    for field in ("actives_present", "quorum_required", "hidden", "minutes_url"):
        if provided.get(field) is not None:
            changes[field] = provided[field]
    if provided.get("executive_summary") is not None:
        if not provided["executive_summary"].strip():
            raise ValidationError("Executive summary is required")
        changes["executive_summary"] = provided["executive_summary"].strip()
    if "event_id" in provided:
        changes["event_id"], changes["event_name"] = _linked_event(db, provided["event_id"])

    if changes:
        minute = db[MINUTES_COLLECTION].find_one_and_update(
            {"_id": minute["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        logger.info(f"Minutes {minute['_id']} updated by {member['user_id']}: {sorted(changes)}")
    return serialize_doc(minute)


@router.delete("/{date_key}")
def delete_minutes(
    date_key: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    _require_editor(member)
    minute = _find_by_date_key(db, date_key)
    if not minute:
        raise NotFoundError("Minutes not found")
    db[MINUTES_COLLECTION].delete_one({"_id": minute["_id"]})
    logger.info(f"Minutes {minute['_id']} deleted by {member['user_id']}")
    return {"status": "deleted"}
