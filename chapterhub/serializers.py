from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi.encoders import jsonable_encoder

from chapterhub.models.vote_model import ABSTAIN


def to_json(value: Any) -> Any:
    return jsonable_encoder(value, custom_encoder={ObjectId: str})


def serialize_doc(doc: Optional[Dict[str, Any]], exclude: Iterable[str] = ()) -> Optional[Dict[str, Any]]:
    """Mongo document -> JSON-ready dict with ``_id`` exposed as ``id``."""
    if doc is None:
        return None
    data = {k: v for k, v in doc.items() if k not in exclude}
    if "_id" in data:
        data["id"] = data.pop("_id")
    return to_json(data)


def serialize_docs(docs: Iterable[Dict[str, Any]], exclude: Iterable[str] = ()) -> List[Dict[str, Any]]:
    return [serialize_doc(doc, exclude) for doc in docs]


def serialize_vote(vote: Dict[str, Any]) -> Dict[str, Any]:
    """Full view for elections officers, ballots included."""
    return serialize_doc(vote, exclude=("ballot_keys",))


def member_vote_view(vote: Dict[str, Any], user_id: str) -> Dict[str, Any]:
    """What a voter sees: the vote's state and their own ballots, never anyone else's."""
    mine = [b for b in vote.get("votes", []) if b.get("voter_id") == user_id]
    view = {
        "id": str(vote["_id"]),
        "type": vote["type"],
        "title": vote.get("title"),
        "started": vote["started"],
        "ended": vote["ended"],
        "started_at": vote.get("started_at"),
        "end_time": vote.get("end_time"),
        "voter_list_verified": bool(vote.get("voter_list_verified")),
    }
    if vote["type"] == "Election":
        view.update({
            "options": vote["options"],
            "has_voted": bool(mine),
            "total_votes": len(vote.get("votes", [])),
        })
    elif vote["type"] == "Pledge":
        voted, abstained = {}, {}
        for pledge in vote["pledges"]:
            board = next((b for b in mine if b.get("pledge") == pledge["id"] and b.get("round") == "board"), None)
            blackball = next((b for b in mine if b.get("pledge") == pledge["id"] and b.get("round") == "blackball"), None)
            voted[pledge["id"]] = bool(board and blackball)
            abstained[pledge["id"]] = bool(
                board and blackball and board["choice"] == ABSTAIN and blackball["choice"] == ABSTAIN
            )
        view.update({
            "pledges": vote["pledges"],
            "round": vote.get("round"),
            "voted_pledges": voted,
            "abstained_pledges": abstained,
            "total_votes": len({b["voter_id"] for b in vote.get("votes", []) if b.get("round") == "board"}),
        })
    else:
        view.update({
            "rushees": vote["rushees"],
            "snap_bids": vote.get("snap_bids") or [],
            "voted_rushees": sorted({b["rushee"] for b in mine if b.get("rushee")}),
        })
    return to_json(view)
