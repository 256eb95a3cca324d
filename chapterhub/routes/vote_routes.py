from fastapi import APIRouter, Depends

from chapterhub.models.vote_model import BallotIn, PledgeBatchIn
from chapterhub.security import require_active_member
from chapterhub.serializers import member_vote_view
from chapterhub.vote_store import VoteStore, get_vote_store

vote_router = APIRouter(prefix="/vote", tags=["Vote"])


# ------------------------------
# CURRENT VOTE (member view)
# ------------------------------
@vote_router.get("/current")
def get_current_vote(
    member: dict = Depends(require_active_member),
    store: VoteStore = Depends(get_vote_store),
):
    """
    The running or suspended vote, else the most recently ended one.
    Shows the caller's own voting status, never other ballots.
    """
    vote = store.current()
    return member_vote_view(vote, member["user_id"])


@vote_router.get("/{vote_id}")
def get_vote(
    vote_id: str,
    member: dict = Depends(require_active_member),
    store: VoteStore = Depends(get_vote_store),
):
    return member_vote_view(store.get(vote_id), member["user_id"])


# ------------------------------
# CAST BALLOT
# ------------------------------
@vote_router.post("/{vote_id}/ballot")
def cast_ballot(
    vote_id: str,
    ballot: BallotIn,
    member: dict = Depends(require_active_member),
    store: VoteStore = Depends(get_vote_store),
):
    """
    Records one ballot for the caller.

    Election votes take ``choice``; Pledge votes take ``pledge``, ``choice``
    and optionally ``round`` (defaults to the vote's active round); Bidding
    votes take ``rushee`` and ``choice``. Before the vote starts only ballots
    flagged ``proxy`` are accepted.
    """
    return store.submit(vote_id, member["user_id"], ballot)


@vote_router.post("/{vote_id}/ballot/batch")
def cast_pledge_ballot_batch(
    vote_id: str,
    batch: PledgeBatchIn,
    member: dict = Depends(require_active_member),
    store: VoteStore = Depends(get_vote_store),
):
    return store.submit_pledge_batch(vote_id, member["user_id"], batch)
