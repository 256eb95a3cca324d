# chapterhub/vote_store.py
import logging
import uuid
from collections import defaultdict
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional

from bson import ObjectId
from fastapi import Depends
from pymongo import DESCENDING, ReturnDocument
from pymongo.collection import Collection
from pymongo.database import Database

from chapterhub.database.connection import VOTE_STATE_COLLECTION, VOTES_COLLECTION, get_db
from chapterhub.errors import ConflictError, NotFoundError, ValidationError, parse_object_id
from chapterhub.models.vote_model import (
    ABSTAIN,
    BID_CHOICES,
    BLACKBALL_CHOICES,
    BOARD_CHOICES,
    BallotIn,
    PledgeBatchIn,
    VoteCreate,
)
from chapterhub.scheduler import FinalizeScheduler, get_scheduler
from chapterhub.tally import compute_results
from chapterhub.timeutils import utcnow

logger = logging.getLogger(__name__)

RUNNING_LOCK_ID = "running"


def _ballot_key(voter_id: str, round_name: str = "", target: str = "") -> str:
    return f"{voter_id}|{round_name}|{target}"


def _clean_names(values: Iterable[str], what: str) -> List[str]:
    cleaned = []
    for value in values:
        name = (value or "").strip()
        if not name:
            continue
        if name == ABSTAIN:
            raise ValidationError(f"'{ABSTAIN}' is reserved and cannot be used as {what} name")
        if name in cleaned:
            raise ValidationError(f"Duplicate {what}: {name}")
        cleaned.append(name)
    return cleaned


class VoteStore:
    """
    Lifecycle, ballots and roll management for votes.

    Every state change is a single conditional update so that two requests
    racing through the same check cannot both succeed. When a conditional
    update matches nothing the document is re-read to report why.
    """

    def __init__(self, db: Database, scheduler: Optional[FinalizeScheduler] = None):
        self.votes: Collection = db[VOTES_COLLECTION]
        self.state: Collection = db[VOTE_STATE_COLLECTION]
        self.scheduler = scheduler

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _find(self, oid: ObjectId) -> Dict[str, Any]:
        vote = self.votes.find_one({"_id": oid})
        if not vote:
            raise NotFoundError("Vote not found.")
        return vote

    def get(self, vote_id: str) -> Dict[str, Any]:
        """Fetch a vote, finalizing it first if its countdown has run out."""
        oid = parse_object_id(vote_id, "Vote")
        vote = self._find(oid)
        if self._is_due(vote):
            self.finalize_if_due(oid)
            vote = self._find(oid)
        return vote

    def current(self) -> Dict[str, Any]:
        """The running vote, else the newest suspended one, else the newest ended one."""
        self.finalize_expired()
        newest = [("created_at", DESCENDING)]
        vote = self.votes.find_one({"started": True, "ended": False}, sort=newest)
        if vote is None:
            vote = self.votes.find_one({"started": False, "ended": False}, sort=newest)
        if vote is None:
            vote = self.votes.find_one({"ended": True}, sort=newest)
        if vote is None:
            raise NotFoundError("No vote found")
        return vote

    def list_votes(self, limit: int = 50) -> List[Dict[str, Any]]:
        self.finalize_expired()
        return list(self.votes.find({}).sort("created_at", DESCENDING).limit(limit))

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create(self, data: VoteCreate, created_by: str) -> Dict[str, Any]:
        doc: Dict[str, Any] = {
            "type": data.type,
            "title": (data.title or "").strip() or None,
            "options": [],
            "pledges": [],
            "rushees": [],
            "round": None,
            "started": False,
            "ended": False,
            "started_at": None,
            "end_time": None,
            "ended_at": None,
            "votes": [],
            "ballot_keys": [],
            "invalidated_ballots": [],
            "voter_list_verified": False,
            "removed_options": [],
            "pledge_valid_cons": {},
            "snap_bids": [],
            "created_by": created_by,
            "created_at": utcnow(),
        }
        if data.type == "Election":
            doc["options"] = _clean_names(data.options, "option")
            if not doc["options"]:
                raise ValidationError("Election votes need at least one option")
        elif data.type == "Pledge":
            names = _clean_names(data.pledges, "pledge")
            if not names:
                raise ValidationError("Pledge votes need at least one pledge")
            doc["pledges"] = [{"id": uuid.uuid4().hex[:12], "name": name} for name in names]
            doc["pledge_valid_cons"] = {p["id"]: False for p in doc["pledges"]}
            doc["round"] = "board"
        else:
            doc["rushees"] = _clean_names(data.rushees, "rushee")
            if not doc["rushees"]:
                raise ValidationError("Bidding votes need at least one rushee")

        result = self.votes.insert_one(doc)
        doc["_id"] = result.inserted_id
        logger.info(f"Vote {result.inserted_id} ({data.type}) created by {created_by}")
        return doc

    def _acquire_running_slot(self, oid: ObjectId) -> bool:
        self.state.update_one(
            {"_id": RUNNING_LOCK_ID}, {"$setOnInsert": {"vote_id": None}}, upsert=True
        )
        for _ in range(2):
            acquired = self.state.find_one_and_update(
                {"_id": RUNNING_LOCK_ID, "vote_id": None},
                {"$set": {"vote_id": oid, "acquired_at": utcnow()}},
            )
            if acquired is not None:
                return True
            # A holder that is gone or already ended left a stale lock behind
            lock = self.state.find_one({"_id": RUNNING_LOCK_ID}) or {}
            holder = lock.get("vote_id")
            if holder == oid:
                return True
            holder_vote = self.votes.find_one({"_id": holder}) if holder else None
            if holder_vote is not None and not holder_vote.get("ended"):
                return False
            logger.warning(f"Clearing stale running-vote lock held by {holder}")
            self.state.update_one(
                {"_id": RUNNING_LOCK_ID, "vote_id": holder}, {"$set": {"vote_id": None}}
            )
        return False

    def _release_running_slot(self, oid: ObjectId) -> None:
        self.state.update_one(
            {"_id": RUNNING_LOCK_ID, "vote_id": oid}, {"$set": {"vote_id": None}}
        )

    def start(self, vote_id: str, actor: str) -> Dict[str, Any]:
        self.finalize_expired()
        vote = self.get(vote_id)
        oid = vote["_id"]
        if vote["started"]:
            raise ConflictError("Vote already started")
        running = self.votes.find_one({"started": True, "ended": False, "_id": {"$ne": oid}})
        if running is not None or not self._acquire_running_slot(oid):
            logger.warning(f"Start of vote {oid} by {actor} rejected: another vote is running")
            raise ConflictError("Another vote is already running")

        updated = self.votes.find_one_and_update(
            {"_id": oid, "started": False},
            {"$set": {"started": True, "started_at": utcnow(), "end_time": None}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            self._release_running_slot(oid)
            raise ConflictError("Vote already started")
        logger.info(f"Vote {oid} started by {actor}")
        return updated

    def end(self, vote_id: str, actor: str, countdown_seconds: Optional[int] = None) -> Dict[str, Any]:
        vote = self.get(vote_id)
        oid = vote["_id"]
        if not vote["started"]:
            raise ConflictError("Vote not started")
        if vote["ended"]:
            raise ConflictError("Vote already ended")

        if countdown_seconds and countdown_seconds > 0:
            end_time = utcnow() + timedelta(seconds=countdown_seconds)
            updated = self.votes.find_one_and_update(
                {"_id": oid, "started": True, "ended": False},
                {"$set": {"end_time": end_time}},
                return_document=ReturnDocument.AFTER,
            )
            if updated is None:
                raise ConflictError("Vote already ended")
            if self.scheduler is not None:
                self.scheduler.schedule(oid, countdown_seconds, lambda: self.finalize_if_due(oid))
            logger.info(f"Vote {oid} set to end in {countdown_seconds}s by {actor}")
            return updated

        if not self.finalize(oid):
            raise ConflictError("Vote already ended")
        logger.info(f"Vote {oid} ended by {actor}")
        return self._find(oid)

    def finalize(self, oid: ObjectId, extra_filter: Optional[Dict[str, Any]] = None) -> bool:
        """Move a running vote to ended. Safe to call any number of times."""
        query = {"_id": oid, "started": True, "ended": False}
        if extra_filter:
            query.update(extra_filter)
        result = self.votes.update_one(
            query, {"$set": {"ended": True, "ended_at": utcnow(), "end_time": None}}
        )
        if result.modified_count:
            self._release_running_slot(oid)
            if self.scheduler is not None:
                self.scheduler.cancel(oid)
            logger.info(f"Vote {oid} finalized")
            return True
        return False

    @staticmethod
    def _is_due(vote: Dict[str, Any]) -> bool:
        end_time = vote.get("end_time")
        return bool(not vote.get("ended") and end_time is not None and end_time <= utcnow())

    def finalize_if_due(self, oid: ObjectId) -> bool:
        return self.finalize(oid, {"end_time": {"$ne": None, "$lte": utcnow()}})

    def finalize_expired(self) -> int:
        due = self.votes.find(
            {"ended": False, "end_time": {"$ne": None, "$lte": utcnow()}}, {"_id": 1}
        )
        return sum(1 for doc in list(due) if self.finalize_if_due(doc["_id"]))

    def delete(self, vote_id: str, actor: str) -> None:
        vote = self.get(vote_id)
        oid = vote["_id"]
        if vote["started"] and not vote["ended"]:
            raise ConflictError("Cannot delete a running vote")
        result = self.votes.delete_one(
            {"_id": oid, "$or": [{"started": False}, {"ended": True}]}
        )
        if result.deleted_count == 0:
            raise ConflictError("Cannot delete a running vote")
        if self.scheduler is not None:
            self.scheduler.cancel(oid)
        logger.info(f"Vote {oid} deleted by {actor}")

    def set_round(self, vote_id: str, round_name: str, actor: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if vote["type"] != "Pledge":
            raise ValidationError("Only Pledge votes have rounds")
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"], "ended": False},
            {"$set": {"round": round_name}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("Vote has ended")
        logger.info(f"Vote {vote['_id']} moved to {round_name} round by {actor}")
        return updated

    # ------------------------------------------------------------------
    # Election options
    # ------------------------------------------------------------------

    def _editable_election(self, vote_id: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if vote["type"] != "Election":
            raise ValidationError("Can only manage options for Election votes")
        if vote["started"]:
            raise ConflictError("Cannot modify options after vote has started")
        return vote

    def add_option(self, vote_id: str, option: str, actor: str) -> Dict[str, Any]:
        vote = self._editable_election(vote_id)
        cleaned = _clean_names([option], "option")
        if not cleaned:
            raise ValidationError("Option is required")
        option = cleaned[0]
        if option in vote["options"]:
            raise ValidationError("Option already exists")
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"], "started": False, "options": {"$ne": option}},
            {"$push": {"options": option}, "$pull": {"removed_options": option}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("Cannot modify options after vote has started")
        logger.info(f"Option '{option}' added to vote {vote['_id']} by {actor}")
        return updated

    def remove_option(self, vote_id: str, option: str, actor: str) -> Dict[str, Any]:
        vote = self._editable_election(vote_id)
        if option not in vote["options"]:
            raise NotFoundError("Option not found")
        if len(vote["options"]) <= 1:
            raise ValidationError("Cannot remove all options")

        has_proxy_votes = any(
            b.get("choice") == option and b.get("proxy") for b in vote.get("votes", [])
        )
        update: Dict[str, Any] = {"$pull": {"options": option}}
        if has_proxy_votes:
            # Keep the ballots auditable; the tally skips removed options
            update["$addToSet"] = {"removed_options": option}
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"], "started": False, "options": option},
            update,
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("Cannot modify options after vote has started")
        logger.info(
            f"Option '{option}' removed from vote {vote['_id']} by {actor}"
            + (" (kept as removed option, proxy ballots exist)" if has_proxy_votes else "")
        )
        return updated

    # ------------------------------------------------------------------
    # Ballots
    # ------------------------------------------------------------------

    def _open_for_ballots(self, vote_id: str, proxy: bool) -> Dict[str, Any]:
        oid = parse_object_id(vote_id, "Vote")
        vote = self._find(oid)
        if self._is_due(vote):
            self.finalize_if_due(oid)
            raise ConflictError("Vote has ended")
        if vote["ended"]:
            raise ConflictError("Vote has ended")
        if not vote["started"] and not proxy:
            raise ConflictError("Vote has not started; only proxy ballots are accepted")
        return vote

    def _append_ballots(
        self,
        vote: Dict[str, Any],
        voter_id: str,
        records: List[Dict[str, Any]],
        keys: List[str],
        duplicate_message: str,
    ) -> Dict[str, Any]:
        proxy = not vote["started"]
        cast_at = utcnow()
        for record in records:
            record.update({"voter_id": voter_id, "proxy": proxy, "cast_at": cast_at})

        result = self.votes.update_one(
            {
                "_id": vote["_id"],
                "started": vote["started"],
                "ended": False,
                "ballot_keys": {"$nin": keys},
            },
            {"$push": {"votes": {"$each": records}, "ballot_keys": {"$each": keys}}},
        )
        if result.matched_count == 0:
            fresh = self._find(vote["_id"])
            if fresh["ended"]:
                reason = "Vote has ended"
            elif set(keys) & set(fresh.get("ballot_keys") or []):
                reason = duplicate_message
            else:
                reason = "Vote has started; submit a regular ballot"
            logger.warning(f"Ballot from {voter_id} on vote {vote['_id']} rejected: {reason}")
            raise ConflictError(reason)

        logger.info(
            f"{len(records)} {'proxy ' if proxy else ''}ballot(s) recorded for {voter_id} on vote {vote['_id']}"
        )
        return {"success": True, "proxy": proxy, "ballots": len(records)}

    def submit(self, vote_id: str, voter_id: str, ballot: BallotIn) -> Dict[str, Any]:
        vote = self._open_for_ballots(vote_id, ballot.proxy)
        choice = ballot.choice

        if vote["type"] == "Election":
            if choice not in vote["options"] and choice != ABSTAIN:
                raise ValidationError("Invalid choice")
            record = {"choice": choice}
            key = _ballot_key(voter_id)
            duplicate = "Already voted"
        elif vote["type"] == "Pledge":
            names = {p["id"]: p["name"] for p in vote["pledges"]}
            if ballot.pledge not in names:
                raise ValidationError("Invalid pledge")
            round_name = vote.get("round") or "board"
            if ballot.round and ballot.round != round_name:
                raise ValidationError("Ballot round does not match the active round")
            valid = BOARD_CHOICES if round_name == "board" else BLACKBALL_CHOICES
            if choice not in valid:
                raise ValidationError("Invalid choice")
            record = {"choice": choice, "pledge": ballot.pledge, "round": round_name}
            key = _ballot_key(voter_id, round_name, ballot.pledge)
            duplicate = f"Already voted for {names[ballot.pledge]} this round"
        else:
            if ballot.rushee not in vote["rushees"]:
                raise ValidationError("Invalid rushee")
            if choice not in BID_CHOICES and choice != ABSTAIN:
                raise ValidationError("Invalid choice")
            record = {"choice": choice, "rushee": ballot.rushee, "round": "bid"}
            key = _ballot_key(voter_id, "bid", ballot.rushee)
            duplicate = f"Already voted on {ballot.rushee}"

        return self._append_ballots(vote, voter_id, [record], [key], duplicate)

    def submit_pledge_batch(self, vote_id: str, voter_id: str, batch: PledgeBatchIn) -> Dict[str, Any]:
        vote = self._open_for_ballots(vote_id, batch.proxy)
        if vote["type"] != "Pledge":
            raise ValidationError("Batch ballots only apply to Pledge votes")
        if not batch.ballot:
            raise ValidationError("Ballot is empty")

        names = {p["id"]: p["name"] for p in vote["pledges"]}
        records: List[Dict[str, Any]] = []
        keys: List[str] = []
        for item in batch.ballot:
            if item.pledge not in names:
                raise ValidationError(f"Invalid pledge: {item.pledge}")
            if _ballot_key(voter_id, "board", item.pledge) in keys:
                raise ValidationError(f"Pledge listed twice: {names[item.pledge]}")
            board_choice = item.board_choice or ABSTAIN
            blackball_choice = item.blackball_choice or ABSTAIN
            if board_choice != ABSTAIN and board_choice not in BOARD_CHOICES:
                raise ValidationError(f"Invalid board choice for {names[item.pledge]}")
            if blackball_choice != ABSTAIN and blackball_choice not in BLACKBALL_CHOICES:
                raise ValidationError(f"Invalid blackball choice for {names[item.pledge]}")
            records.append({"choice": board_choice, "pledge": item.pledge, "round": "board"})
            records.append({"choice": blackball_choice, "pledge": item.pledge, "round": "blackball"})
            keys.append(_ballot_key(voter_id, "board", item.pledge))
            keys.append(_ballot_key(voter_id, "blackball", item.pledge))

        return self._append_ballots(
            vote, voter_id, records, keys, "Already voted for one of these pledges"
        )

    # ------------------------------------------------------------------
    # Roll and invalidation
    # ------------------------------------------------------------------

    def invalidate_ballot(self, vote_id: str, voter_id: str, actor: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if not vote["ended"]:
            raise ConflictError("Cannot invalidate ballots until vote has ended")
        if vote.get("voter_list_verified"):
            raise ConflictError("Cannot modify ballots after voter list has been verified")
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"], "ended": True, "voter_list_verified": {"$ne": True}},
            {"$addToSet": {"invalidated_ballots": voter_id}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("Cannot modify ballots after voter list has been verified")
        logger.info(f"Ballot of {voter_id} on vote {vote['_id']} invalidated by {actor}")
        return updated

    def restore_ballot(self, vote_id: str, voter_id: str, actor: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if vote.get("voter_list_verified"):
            raise ConflictError("Cannot modify ballots after voter list has been verified")
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"], "voter_list_verified": {"$ne": True}},
            {"$pull": {"invalidated_ballots": voter_id}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("Cannot modify ballots after voter list has been verified")
        logger.info(f"Ballot of {voter_id} on vote {vote['_id']} restored by {actor}")
        return updated

    def verify_voter_list(self, vote_id: str, actor: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if not vote["ended"]:
            raise ConflictError("Cannot verify voter list until vote has ended")
        if vote.get("voter_list_verified"):
            raise ConflictError("Voter list has already been verified and cannot be modified")
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"], "ended": True, "voter_list_verified": {"$ne": True}},
            {"$set": {"voter_list_verified": True, "voter_list_verified_at": utcnow()}},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            raise ConflictError("Voter list has already been verified and cannot be modified")
        logger.info(f"Voter list of vote {vote['_id']} verified by {actor}")
        return updated

    def voter_list(self, vote_id: str, members: Collection) -> Dict[str, Any]:
        vote = self.get(vote_id)
        invalidated = set(vote.get("invalidated_ballots") or [])
        ballots = defaultdict(list)
        for ballot in vote.get("votes", []):
            ballots[ballot["voter_id"]].append(ballot)

        roster = []
        active = members.find({"status": "Active"}).sort([("last_name", 1), ("first_name", 1)])
        for member in active:
            user_id = member["user_id"]
            member_ballots = ballots.get(user_id, [])
            is_invalidated = user_id in invalidated
            is_proxy = any(b.get("proxy") for b in member_ballots)
            status = "no-ballot"
            if member_ballots and not is_invalidated:
                status = "proxy" if is_proxy else "voted"
            roster.append({
                "user_id": user_id,
                "name": f"{member.get('first_name', '')} {member.get('last_name', '')}".strip(),
                "roll_no": member.get("roll_no"),
                "status": status,
                "is_invalidated": is_invalidated,
                "is_proxy": is_proxy,
            })
        return {
            "voter_list": roster,
            "vote_type": vote["type"],
            "vote_ended": vote["ended"],
            "voter_list_verified": bool(vote.get("voter_list_verified")),
        }

    def set_pledge_cons(self, vote_id: str, cons: Dict[str, bool], actor: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if vote["type"] != "Pledge":
            raise ValidationError("Not a pledge vote")
        known = {p["id"] for p in vote["pledges"]}
        unknown = sorted(set(cons) - known)
        if unknown:
            raise ValidationError(f"Unknown pledge: {', '.join(unknown)}")
        if not cons:
            return vote
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"]},
            {"$set": {f"pledge_valid_cons.{pid}": bool(has_con) for pid, has_con in cons.items()}},
            return_document=ReturnDocument.AFTER,
        )
        logger.info(f"Pledge cons updated on vote {vote['_id']} by {actor}: {cons}")
        return updated

    def toggle_snap_bid(self, vote_id: str, rushee: str, actor: str) -> List[str]:
        vote = self.get(vote_id)
        if vote["type"] != "Bidding":
            raise ValidationError("Only Bidding votes support snap bids")
        if rushee not in vote.get("rushees", []):
            raise ValidationError("Invalid rushee")
        if rushee in (vote.get("snap_bids") or []):
            update = {"$pull": {"snap_bids": rushee}}
        else:
            update = {"$addToSet": {"snap_bids": rushee}}
        updated = self.votes.find_one_and_update(
            {"_id": vote["_id"]}, update, return_document=ReturnDocument.AFTER
        )
        logger.info(f"Snap bid for {rushee} on vote {vote['_id']} toggled by {actor}")
        return list(updated.get("snap_bids") or [])

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    def results(self, vote_id: str) -> Dict[str, Any]:
        vote = self.get(vote_id)
        if not vote["ended"]:
            raise ConflictError("Results are available once the vote has ended")
        return compute_results(vote)


def get_vote_store(
    db: Database = Depends(get_db),
    scheduler: FinalizeScheduler = Depends(get_scheduler),
) -> VoteStore:
    return VoteStore(db, scheduler)
