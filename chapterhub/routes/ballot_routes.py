from fastapi import APIRouter, Depends
from pymongo.database import Database

from chapterhub.database.connection import MEMBERS_COLLECTION, get_db
from chapterhub.errors import ValidationError
from chapterhub.models.vote_model import InvalidateIn, PledgeConsIn, SnapBidIn
from chapterhub.security import require_elections_officer, require_regent
from chapterhub.vote_store import VoteStore, get_vote_store

ballot_router = APIRouter(prefix="/votes/{vote_id}", tags=["Voter Roll"])


# ------------------------------
# VOTER LIST
# ------------------------------
@ballot_router.get("/ballots")
def get_voter_list(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
    db: Database = Depends(get_db),
):
    """Every active member with whether they voted, by proxy, or not at all."""
    return store.voter_list(vote_id, db[MEMBERS_COLLECTION])


@ballot_router.post("/ballots/invalidate")
def invalidate_ballot(
    vote_id: str,
    data: InvalidateIn,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.invalidate_ballot(vote_id, data.voter_id, officer["user_id"])
    return {"success": True, "invalidated_ballots": vote.get("invalidated_ballots") or []}


@ballot_router.delete("/ballots/invalidate/{voter_id}")
def restore_ballot(
    vote_id: str,
    voter_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.restore_ballot(vote_id, voter_id, officer["user_id"])
    return {"success": True, "invalidated_ballots": vote.get("invalidated_ballots") or []}


@ballot_router.put("/ballots/verify")
def verify_voter_list(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    store.verify_voter_list(vote_id, officer["user_id"])
    return {"success": True, "voter_list_verified": True}


# ------------------------------
# PLEDGE CONS
# ------------------------------
@ballot_router.get("/pledge-cons")
def get_pledge_cons(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.get(vote_id)
    if vote["type"] != "Pledge":
        raise ValidationError("Not a pledge vote")
    cons = vote.get("pledge_valid_cons") or {}
    return {
        "pledges": vote["pledges"],
        "pledge_valid_cons": {p["id"]: bool(cons.get(p["id"], False)) for p in vote["pledges"]},
    }


@ballot_router.post("/pledge-cons")
def update_pledge_cons(
    vote_id: str,
    data: PledgeConsIn,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.set_pledge_cons(vote_id, data.pledge_valid_cons, officer["user_id"])
    return {"success": True, "pledge_valid_cons": vote.get("pledge_valid_cons") or {}}


# ------------------------------
# SNAP BIDS
# ------------------------------
@ballot_router.post("/snap-bid")
def toggle_snap_bid(
    vote_id: str,
    data: SnapBidIn,
    regent: dict = Depends(require_regent),
    store: VoteStore = Depends(get_vote_store),
):
    snap_bids = store.toggle_snap_bid(vote_id, data.rushee, regent["user_id"])
    return {"success": True, "snap_bids": snap_bids}
