from fastapi import APIRouter, Depends, Query

from chapterhub.models.vote_model import OptionIn, RoundUpdate, VoteCreate, VoteEnd
from chapterhub.security import require_elections_officer
from chapterhub.serializers import serialize_vote
from chapterhub.vote_store import VoteStore, get_vote_store

router = APIRouter(prefix="/votes", tags=["Vote Management"])


# ------------------------------
# CREATE / LIST
# ------------------------------
@router.post("", status_code=201)
def create_vote(
    data: VoteCreate,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.create(data, officer["user_id"])
    return {"message": "Vote created successfully!", "vote": serialize_vote(vote)}


@router.get("")
def list_votes(
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    return {"votes": [serialize_vote(v) for v in store.list_votes()]}


@router.get("/{vote_id}")
def get_vote_detail(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    return serialize_vote(store.get(vote_id))


# ------------------------------
# LIFECYCLE
# ------------------------------
@router.patch("/{vote_id}/start")
def start_vote(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    return serialize_vote(store.start(vote_id, officer["user_id"]))


@router.patch("/{vote_id}/end")
def end_vote(
    vote_id: str,
    data: VoteEnd = VoteEnd(),
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    """Ends now, or after ``countdown_seconds`` when given."""
    return serialize_vote(store.end(vote_id, officer["user_id"], data.countdown_seconds))


@router.patch("/{vote_id}/round")
def set_pledge_round(
    vote_id: str,
    data: RoundUpdate,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    return serialize_vote(store.set_round(vote_id, data.round, officer["user_id"]))


@router.delete("/{vote_id}")
def delete_vote(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    store.delete(vote_id, officer["user_id"])
    return {"success": True}


# ------------------------------
# ELECTION OPTIONS
# ------------------------------
@router.post("/{vote_id}/options")
def add_option(
    vote_id: str,
    data: OptionIn,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.add_option(vote_id, data.option, officer["user_id"])
    return {"success": True, "options": vote["options"]}


@router.delete("/{vote_id}/options")
def remove_option(
    vote_id: str,
    option: str = Query(..., min_length=1),
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.remove_option(vote_id, option, officer["user_id"])
    return {
        "success": True,
        "options": vote["options"],
        "removed_options": vote.get("removed_options") or [],
    }


# ------------------------------
# RESULTS
# ------------------------------
@router.get("/{vote_id}/results")
def get_results(
    vote_id: str,
    officer: dict = Depends(require_elections_officer),
    store: VoteStore = Depends(get_vote_store),
):
    vote = store.get(vote_id)
    results = store.results(vote_id)
    results.update({
        "id": str(vote["_id"]),
        "type": vote["type"],
        "title": vote.get("title"),
        "voter_list_verified": bool(vote.get("voter_list_verified")),
        "invalidated_ballots": vote.get("invalidated_ballots") or [],
    })
    return results
