import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from chapterhub.checkin_code import generate_checkin_code
from chapterhub.database.connection import MEMBERS_COLLECTION, get_db
from chapterhub.errors import ConflictError, NotFoundError
from chapterhub.models.member_model import MemberCreate, PermissionUpdate, ProfileUpdate
from chapterhub.security import get_current_member, require_admin
from chapterhub.serializers import serialize_doc, serialize_docs
from chapterhub.timeutils import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/members", tags=["Members"])

ROSTER_FIELDS = {
    "user_id": 1,
    "roll_no": 1,
    "first_name": 1,
    "last_name": 1,
    "grad_year": 1,
    "status": 1,
    "is_ecouncil": 1,
    "ecouncil_position": 1,
    "is_committee_head": 1,
    "headline": 1,
    "majors": 1,
}


def _find_by_roll_no(db: Database, roll_no: str) -> dict:
    member = db[MEMBERS_COLLECTION].find_one({"roll_no": roll_no})
    if not member:
        raise NotFoundError("Member not found")
    return member


# ------------------------------
# SELF
# ------------------------------
@router.get("/me")
def get_me(member: dict = Depends(get_current_member)):
    return serialize_doc(member)


@router.patch("/me")
def update_profile(
    updates: ProfileUpdate,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    changes = {k: v for k, v in updates.model_dump(exclude_unset=True).items() if v is not None}
    if changes:
        member = db[MEMBERS_COLLECTION].find_one_and_update(
            {"_id": member["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        logger.info(f"Member {member['user_id']} updated profile fields {sorted(changes)}")
    return serialize_doc(member)


@router.get("/me/checkin-code")
def get_checkin_code(member: dict = Depends(get_current_member)):
    """Current rotating code for the member's check-in QR."""
    return generate_checkin_code(str(member["_id"]))


# ------------------------------
# ROSTER
# ------------------------------
@router.get("")
def list_members(
    status: Optional[str] = None,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    query = {"status": status} if status else {}
    members = db[MEMBERS_COLLECTION].find(query, ROSTER_FIELDS).sort(
        [("last_name", ASCENDING), ("first_name", ASCENDING)]
    )
    return serialize_docs(members)


@router.get("/{roll_no}")
def get_member(
    roll_no: str,
    member: dict = Depends(get_current_member),
    db: Database = Depends(get_db),
):
    return serialize_doc(_find_by_roll_no(db, roll_no))


# ------------------------------
# ADMIN
# ------------------------------
@router.post("", status_code=201)
def create_member(
    data: MemberCreate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    member = data.model_dump()
    member.update({"is_committee_head": False, "created_at": utcnow()})
    try:
        member["_id"] = db[MEMBERS_COLLECTION].insert_one(member).inserted_id
    except DuplicateKeyError:
        raise ConflictError("A member with this user id or roll number already exists")
    logger.info(f"Member {member['roll_no']} created by {admin['user_id']}")
    return serialize_doc(member)


@router.patch("/{roll_no}/permissions")
def update_permissions(
    roll_no: str,
    updates: PermissionUpdate,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    member = _find_by_roll_no(db, roll_no)
    changes = updates.model_dump(exclude_unset=True)
    if changes:
        member = db[MEMBERS_COLLECTION].find_one_and_update(
            {"_id": member["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
        )
        logger.info(f"Permissions of {roll_no} changed by {admin['user_id']}: {changes}")
    return serialize_doc(member)
