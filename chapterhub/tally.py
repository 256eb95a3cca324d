"""
Result computation for ended votes.

All functions take the raw vote document as stored in Mongo and never modify
it. Ballots from voters listed in ``invalidated_ballots`` are ignored
everywhere, including the totals.
"""
from typing import Any, Dict, List

from chapterhub.models.vote_model import ABSTAIN


def _valid_ballots(vote: Dict[str, Any]) -> List[Dict[str, Any]]:
    invalidated = set(vote.get("invalidated_ballots") or [])
    return [b for b in vote.get("votes", []) if b.get("voter_id") not in invalidated]


def compute_election_results(vote: Dict[str, Any]) -> Dict[str, Any]:
    removed = list(vote.get("removed_options") or [])
    tally = {opt: 0 for opt in vote.get("options", []) if opt not in removed}
    ballots = _valid_ballots(vote)
    for ballot in ballots:
        choice = ballot.get("choice")
        if choice in tally:
            tally[choice] += 1
    # Abstentions and ballots for removed options still count toward the total
    return {
        "results": tally,
        "total_votes": len(ballots),
        "removed_options": removed,
    }


def compute_pledge_results(vote: Dict[str, Any]) -> Dict[str, Any]:
    cons = vote.get("pledge_valid_cons") or {}
    board_results = {}
    blackball_results = {}
    for pledge in vote.get("pledges", []):
        board_results[pledge["id"]] = {
            "name": pledge["name"], "continue": 0, "board": 0, "invalid_board": False,
        }
        blackball_results[pledge["id"]] = {
            "name": pledge["name"], "continue": 0, "blackball": 0, "invalid_blackball": False,
        }

    board_voters = set()
    for ballot in _valid_ballots(vote):
        pledge_id = ballot.get("pledge")
        choice = ballot.get("choice")
        if ballot.get("round") == "board":
            board_voters.add(ballot["voter_id"])
            entry = board_results.get(pledge_id)
            if entry is None:
                continue
            if choice == "Continue":
                entry["continue"] += 1
            elif choice == "Board":
                entry["board"] += 1
        elif ballot.get("round") == "blackball":
            entry = blackball_results.get(pledge_id)
            if entry is None:
                continue
            if choice == "Continue":
                entry["continue"] += 1
            elif choice == "Blackball":
                entry["blackball"] += 1

    for pledge_id, entry in board_results.items():
        entry["invalid_board"] = entry["board"] > 0 and not cons.get(pledge_id, False)
    for pledge_id, entry in blackball_results.items():
        entry["invalid_blackball"] = entry["blackball"] > 0 and not cons.get(pledge_id, False)

    return {
        "board_results": board_results,
        "blackball_results": blackball_results,
        "pledge_valid_cons": {p["id"]: bool(cons.get(p["id"], False)) for p in vote.get("pledges", [])},
        "total_votes": len(board_voters),
    }


def compute_bidding_results(vote: Dict[str, Any]) -> Dict[str, Any]:
    snap_bids = set(vote.get("snap_bids") or [])
    results = {
        rushee: {"bid": 0, "no_bid": 0, "abstain": 0, "snap_bid": rushee in snap_bids}
        for rushee in vote.get("rushees", [])
    }
    voters = set()
    for ballot in _valid_ballots(vote):
        entry = results.get(ballot.get("rushee"))
        if entry is None:
            continue
        voters.add(ballot["voter_id"])
        if ballot["choice"] == "Bid":
            entry["bid"] += 1
        elif ballot["choice"] == "No Bid":
            entry["no_bid"] += 1
        elif ballot["choice"] == ABSTAIN:
            entry["abstain"] += 1
    return {
        "results": results,
        "snap_bids": sorted(snap_bids),
        "total_votes": len(voters),
    }


def compute_results(vote: Dict[str, Any]) -> Dict[str, Any]:
    vote_type = vote.get("type")
    if vote_type == "Election":
        return compute_election_results(vote)
    if vote_type == "Pledge":
        return compute_pledge_results(vote)
    return compute_bidding_results(vote)
