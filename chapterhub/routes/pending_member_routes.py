import logging

from fastapi import APIRouter, Depends
from pymongo import ASCENDING, ReturnDocument
from pymongo.database import Database
from pymongo.errors import DuplicateKeyError

from chapterhub.database.connection import MEMBERS_COLLECTION, PENDING_MEMBERS_COLLECTION, get_db
from chapterhub.errors import ConflictError, NotFoundError, parse_object_id
from chapterhub.models.pending_member_model import PendingMemberCreate, PendingReview
from chapterhub.security import require_admin, require_auth
from chapterhub.serializers import serialize_doc, serialize_docs
from chapterhub.timeutils import utcnow

logger = logging.getLogger(__name__)

# Include before the member router, whose /members/{roll_no} also matches /members/pending
router = APIRouter(prefix="/members", tags=["Onboarding"])

# Profile fields carried over to the member record on approval
PROFILE_FIELDS = ("majors", "bio", "hometown", "pledge_class", "family_line", "social_links")


def _roll_no_taken(db: Database, roll_no: str, pending_id=None) -> bool:
    if db[MEMBERS_COLLECTION].find_one({"roll_no": roll_no}, {"_id": 1}):
        return True
    query = {"roll_no": roll_no}
    if pending_id is not None:
        query["_id"] = {"$ne": pending_id}
    return db[PENDING_MEMBERS_COLLECTION].find_one(query, {"_id": 1}) is not None


@router.post("/onboard", status_code=201)
def submit_onboarding(
    data: PendingMemberCreate,
    user_id: str = Depends(require_auth),
    db: Database = Depends(get_db),
):
    if db[MEMBERS_COLLECTION].find_one({"user_id": user_id}, {"_id": 1}):
        raise ConflictError("You are already a member")
    if db[PENDING_MEMBERS_COLLECTION].find_one({"user_id": user_id}, {"_id": 1}):
        raise ConflictError("You have already submitted your profile.")

    pending = data.model_dump()
    pending["roll_no"] = pending["roll_no"].strip()
    if _roll_no_taken(db, pending["roll_no"]):
        raise ConflictError("Roll number already in use")
    pending.update({
        "user_id": user_id,
        "status": "pending",
        "submitted_at": utcnow(),
    })
    try:
        inserted = db[PENDING_MEMBERS_COLLECTION].insert_one(pending)
    except DuplicateKeyError:
        raise ConflictError("You have already submitted your profile.")

    logger.info(f"Onboarding submitted by {user_id} for roll number {pending['roll_no']}")
    return {"id": str(inserted.inserted_id)}


@router.get("/pending")
def list_pending(
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    pending = db[PENDING_MEMBERS_COLLECTION].find({"status": "pending"}).sort("submitted_at", ASCENDING)
    return serialize_docs(pending)


@router.patch("/pending/{pending_id}")
def review_pending(
    pending_id: str,
    review: PendingReview,
    admin: dict = Depends(require_admin),
    db: Database = Depends(get_db),
):
    pending = db[PENDING_MEMBERS_COLLECTION].find_one({"_id": parse_object_id(pending_id, "Pending request")})
    if not pending:
        raise NotFoundError("Not found")

    if review.action == "update":
        changes = {}
        if review.updates is not None:
            changes = {k: v for k, v in review.updates.model_dump(exclude_unset=True).items() if v is not None}
        if "roll_no" in changes:
            changes["roll_no"] = changes["roll_no"].strip()
            if changes["roll_no"] != pending["roll_no"] and _roll_no_taken(db, changes["roll_no"], pending["_id"]):
                raise ConflictError("Roll number already in use")
        if changes:
            pending = db[PENDING_MEMBERS_COLLECTION].find_one_and_update(
                {"_id": pending["_id"]}, {"$set": changes}, return_document=ReturnDocument.AFTER
            )
            logger.info(f"Pending request {pending_id} edited by {admin['user_id']}: {sorted(changes)}")
        return serialize_doc(pending)

    if review.action == "approve":
        member = {
            "user_id": pending["user_id"],
            "roll_no": pending["roll_no"],
            "first_name": pending["first_name"],
            "last_name": pending["last_name"],
            "grad_year": pending["grad_year"],
            "status": pending.get("preferred_status") or "Active",
            "role": pending.get("preferred_role") or "member",
            "is_ecouncil": bool(pending.get("is_ecouncil")),
            "ecouncil_position": pending.get("ecouncil_position") or None,
            "is_committee_head": False,
            "created_at": utcnow(),
        }
        for field in PROFILE_FIELDS:
            if pending.get(field):
                member[field] = pending[field]
        try:
            member["_id"] = db[MEMBERS_COLLECTION].insert_one(member).inserted_id
        except DuplicateKeyError:
            raise ConflictError("A member with this user id or roll number already exists")
        db[PENDING_MEMBERS_COLLECTION].delete_one({"_id": pending["_id"]})
        logger.info(f"Pending request {pending_id} approved by {admin['user_id']}")
        return {"status": "approved", "member": serialize_doc(member)}

    db[PENDING_MEMBERS_COLLECTION].delete_one({"_id": pending["_id"]})
    logger.info(
        f"Pending request {pending_id} rejected by {admin['user_id']}"
        + (f": {review.review_comments}" if review.review_comments else "")
    )
    return {"status": "rejected"}
