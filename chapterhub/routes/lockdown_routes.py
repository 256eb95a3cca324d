import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import ReturnDocument
from pymongo.database import Database

from chapterhub.config import LOCKDOWN_KEY
from chapterhub.database.connection import LOCKDOWN_COLLECTION, get_db
from chapterhub.models.lockdown_model import LockdownIn
from chapterhub.security import require_admin
from chapterhub.timeutils import iso, utcnow

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Lockdown"])


def serialize_lockdown(doc: Optional[dict]) -> dict:
    """Public view of the site lockdown; a lockdown past ``ends_at`` reads as inactive."""
    if not doc:
        doc = {}
    ends_at = doc.get("ends_at")
    active = bool(doc.get("active")) and not (ends_at and ends_at <= utcnow())
    return {
        "active": active,
        "reason": doc.get("reason") or "",
        "duration_minutes": doc.get("duration_minutes") or 0,
        "started_at": iso(doc.get("started_at")),
        "ends_at": iso(ends_at),
        "created_by": doc.get("created_by") or "",
    }


@router.get("/lockdown")
def get_lockdown(db: Database = Depends(get_db)):
    return serialize_lockdown(db[LOCKDOWN_COLLECTION].find_one({"key": LOCKDOWN_KEY}))


@router.post("/admin/lockdown")
def set_lockdown(
    data: LockdownIn,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    now = utcnow()
    if data.action == "release":
        state = {"active": False, "reason": "", "duration_minutes": 0, "started_at": None, "ends_at": None, "created_by": ""}
    else:
        name = f"{admin.get('first_name') or ''} {admin.get('last_name') or ''}".strip()
        state = {
            "active": True,
            "reason": data.reason.strip(),
            "duration_minutes": data.duration_minutes,
            "started_at": now,
            "ends_at": now + timedelta(minutes=data.duration_minutes) if data.duration_minutes > 0 else None,
            "created_by": name or admin.get("role", ""),
        }

    doc = db[LOCKDOWN_COLLECTION].find_one_and_update(
        {"key": LOCKDOWN_KEY},
        {"$set": {"key": LOCKDOWN_KEY, **state}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )
    logger.warning(f"Lockdown {data.action} by {admin['user_id']}: {state['reason'] or 'no reason given'}")
    return serialize_lockdown(doc)
