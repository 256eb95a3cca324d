"""End-to-end vote flows through the HTTP API."""
from datetime import timedelta

import pytest
from bson import ObjectId

from chapterhub.timeutils import utcnow


@pytest.fixture
def voters(make_member, auth):
    return {name: auth(make_member(name)) for name in ("v1", "v2", "v3")}


def create_vote(client, headers, **body):
    resp = client.post("/votes", json=body, headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["vote"]


def start(client, headers, vote_id):
    resp = client.patch(f"/votes/{vote_id}/start", headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


def end(client, headers, vote_id, **body):
    resp = client.patch(f"/votes/{vote_id}/end", json=body or None, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestElectionFlow:
    def test_two_voters_split_evenly(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", title="President", options=["A", "B"])
        start(client, officer_headers, vote["id"])

        assert client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v1"]).status_code == 200
        assert client.post(f"/vote/{vote['id']}/ballot", json={"choice": "B"}, headers=voters["v2"]).status_code == 200
        end(client, officer_headers, vote["id"])

        results = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()
        assert results["results"] == {"A": 1, "B": 1}
        assert results["total_votes"] == 2

    def test_second_ballot_from_same_voter_rejected(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v1"])

        resp = client.post(f"/vote/{vote['id']}/ballot", json={"choice": "B"}, headers=voters["v1"])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Already voted"

    def test_invalid_choice_rejected(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        start(client, officer_headers, vote["id"])
        resp = client.post(f"/vote/{vote['id']}/ballot", json={"choice": "Z"}, headers=voters["v1"])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid choice"

    def test_member_view_hides_other_ballots(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v1"])

        mine = client.get("/vote/current", headers=voters["v1"]).json()
        theirs = client.get("/vote/current", headers=voters["v2"]).json()
        assert mine["has_voted"] is True
        assert theirs["has_voted"] is False
        assert "votes" not in theirs
        assert theirs["total_votes"] == 1

    def test_results_unavailable_while_running(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        resp = client.get(f"/votes/{vote['id']}/results", headers=officer_headers)
        assert resp.status_code == 400


class TestLifecycle:
    def test_only_one_vote_runs_at_a_time(self, client, officer_headers):
        first = create_vote(client, officer_headers, type="Election", options=["A"])
        second = create_vote(client, officer_headers, type="Election", options=["B"])
        start(client, officer_headers, first["id"])

        resp = client.patch(f"/votes/{second['id']}/start", headers=officer_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Another vote is already running"

        end(client, officer_headers, first["id"])
        start(client, officer_headers, second["id"])

    def test_start_twice_conflicts(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        resp = client.patch(f"/votes/{vote['id']}/start", headers=officer_headers)
        assert resp.json()["detail"] == "Vote already started"

    def test_end_requires_started_vote(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        resp = client.patch(f"/votes/{vote['id']}/end", headers=officer_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Vote not started"

    def test_running_vote_cannot_be_deleted(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        assert client.delete(f"/votes/{vote['id']}", headers=officer_headers).status_code == 400
        end(client, officer_headers, vote["id"])
        assert client.delete(f"/votes/{vote['id']}", headers=officer_headers).status_code == 200

    def test_stale_lock_from_deleted_vote_is_cleared(self, client, db, officer_headers):
        db["vote_state"].insert_one({"_id": "running", "vote_id": ObjectId()})
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        assert start(client, officer_headers, vote["id"])["started"] is True

    def test_countdown_finalizes_on_next_read(self, client, db, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        ended = end(client, officer_headers, vote["id"], countdown_seconds=60)
        assert ended["ended"] is False
        assert ended["end_time"] is not None

        db["votes"].update_one(
            {"_id": ObjectId(vote["id"])}, {"$set": {"end_time": utcnow() - timedelta(seconds=1)}}
        )
        resp = client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v1"])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Vote has ended"

        detail = client.get(f"/votes/{vote['id']}", headers=officer_headers).json()
        assert detail["ended"] is True
        assert detail["end_time"] is None
        # the running slot was released
        other = create_vote(client, officer_headers, type="Election", options=["B"])
        start(client, officer_headers, other["id"])

    def test_current_prefers_running_vote_over_newer_draft(self, client, officer_headers, voters):
        running = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, running["id"])
        draft = create_vote(client, officer_headers, type="Election", options=["B"])

        current = client.get("/vote/current", headers=voters["v1"]).json()
        assert current["id"] == running["id"]
        assert current["started"] is True

        end(client, officer_headers, running["id"])
        assert client.get("/vote/current", headers=voters["v1"]).json()["id"] == draft["id"]

    def test_current_falls_back_to_latest_ended_vote(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        end(client, officer_headers, vote["id"])
        current = client.get("/vote/current", headers=voters["v1"]).json()
        assert current["id"] == vote["id"]
        assert current["ended"] is True

    def test_non_officer_cannot_manage_votes(self, client, voters):
        resp = client.post("/votes", json={"type": "Election", "options": ["A"]}, headers=voters["v1"])
        assert resp.status_code == 403

    def test_missing_token_is_unauthorized(self, client):
        assert client.get("/vote/current").status_code == 401

    def test_inactive_member_cannot_vote(self, client, officer_headers, make_member, auth):
        alum = auth(make_member("alum", status="Alumni"))
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        resp = client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=alum)
        assert resp.status_code == 403


class TestOptionsAndProxies:
    def test_proxy_ballot_before_start(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        resp = client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A", "proxy": True}, headers=voters["v1"])
        assert resp.json()["proxy"] is True

        resp = client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v2"])
        assert resp.status_code == 400

    def test_proxy_voter_cannot_vote_again_after_start(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        url = f"/vote/{vote['id']}/ballot"
        assert client.post(url, json={"choice": "A", "proxy": True}, headers=voters["v1"]).json()["proxy"] is True
        start(client, officer_headers, vote["id"])

        resp = client.post(url, json={"choice": "B"}, headers=voters["v1"])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Already voted"

    def test_removed_option_with_proxy_ballots_kept_out_of_results(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B", "C"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "C", "proxy": True}, headers=voters["v1"])

        resp = client.delete(f"/votes/{vote['id']}/options", params={"option": "C"}, headers=officer_headers)
        assert resp.json()["removed_options"] == ["C"]
        assert resp.json()["options"] == ["A", "B"]

        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v2"])
        end(client, officer_headers, vote["id"])
        results = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()
        assert results["results"] == {"A": 1, "B": 0}
        assert results["total_votes"] == 2

    def test_remove_option_containing_slash(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["Smith/Jones", "Lee"])
        resp = client.delete(f"/votes/{vote['id']}/options", params={"option": "Smith/Jones"}, headers=officer_headers)
        assert resp.status_code == 200
        assert resp.json()["options"] == ["Lee"]

    def test_option_parameter_required(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        resp = client.delete(f"/votes/{vote['id']}/options", headers=officer_headers)
        assert resp.status_code == 422

    def test_cannot_remove_last_option(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        resp = client.delete(f"/votes/{vote['id']}/options", params={"option": "A"}, headers=officer_headers)
        assert resp.json()["detail"] == "Cannot remove all options"

    def test_options_frozen_after_start(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        resp = client.post(f"/votes/{vote['id']}/options", json={"option": "B"}, headers=officer_headers)
        assert resp.json()["detail"] == "Cannot modify options after vote has started"

    def test_abstain_is_reserved(self, client, officer_headers):
        resp = client.post("/votes", json={"type": "Election", "options": ["Abstain"]}, headers=officer_headers)
        assert resp.status_code == 400


class TestPledgeFlow:
    def test_board_without_con_is_flagged_invalid(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1"])
        pledge_id = vote["pledges"][0]["id"]
        assert vote["round"] == "board"
        assert vote["pledge_valid_cons"] == {pledge_id: False}

        start(client, officer_headers, vote["id"])
        resp = client.post(
            f"/vote/{vote['id']}/ballot", json={"choice": "Board", "pledge": pledge_id}, headers=voters["v1"]
        )
        assert resp.status_code == 200
        end(client, officer_headers, vote["id"])

        board = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()["board_results"]
        assert board[pledge_id]["continue"] == 0
        assert board[pledge_id]["board"] == 1
        assert board[pledge_id]["invalid_board"] is True

    def test_marking_con_clears_invalid_flag(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1"])
        pledge_id = vote["pledges"][0]["id"]
        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "Board", "pledge": pledge_id}, headers=voters["v1"])
        end(client, officer_headers, vote["id"])

        resp = client.post(
            f"/votes/{vote['id']}/pledge-cons", json={"pledge_valid_cons": {pledge_id: True}}, headers=officer_headers
        )
        assert resp.status_code == 200
        board = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()["board_results"]
        assert board[pledge_id]["invalid_board"] is False

    def test_one_ballot_per_pledge_per_round(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1"])
        pledge_id = vote["pledges"][0]["id"]
        start(client, officer_headers, vote["id"])
        url = f"/vote/{vote['id']}/ballot"
        client.post(url, json={"choice": "Continue", "pledge": pledge_id}, headers=voters["v1"])

        resp = client.post(url, json={"choice": "Board", "pledge": pledge_id}, headers=voters["v1"])
        assert resp.json()["detail"] == "Already voted for P1 this round"

        client.patch(f"/votes/{vote['id']}/round", json={"round": "blackball"}, headers=officer_headers)
        resp = client.post(
            url, json={"choice": "Continue", "pledge": pledge_id, "round": "blackball"}, headers=voters["v1"]
        )
        assert resp.status_code == 200

    def test_ballot_for_inactive_round_rejected(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1"])
        pledge_id = vote["pledges"][0]["id"]
        start(client, officer_headers, vote["id"])
        resp = client.post(
            f"/vote/{vote['id']}/ballot",
            json={"choice": "Blackball", "pledge": pledge_id, "round": "blackball"},
            headers=voters["v1"],
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Ballot round does not match the active round"

    def test_single_pledge_ballot_cannot_abstain(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1"])
        pledge_id = vote["pledges"][0]["id"]
        start(client, officer_headers, vote["id"])
        resp = client.post(
            f"/vote/{vote['id']}/ballot", json={"choice": "Abstain", "pledge": pledge_id}, headers=voters["v1"]
        )
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid choice"

    def test_proxy_pledge_voter_cannot_vote_again_after_start(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1"])
        pledge_id = vote["pledges"][0]["id"]
        url = f"/vote/{vote['id']}/ballot"
        proxy = client.post(url, json={"choice": "Continue", "pledge": pledge_id, "proxy": True}, headers=voters["v1"])
        assert proxy.json()["proxy"] is True
        start(client, officer_headers, vote["id"])

        resp = client.post(url, json={"choice": "Board", "pledge": pledge_id}, headers=voters["v1"])
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Already voted for P1 this round"

    def test_batch_records_both_rounds(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Pledge", pledges=["P1", "P2"])
        ids = [p["id"] for p in vote["pledges"]]
        start(client, officer_headers, vote["id"])
        batch = {"ballot": [
            {"pledge": ids[0], "board_choice": "Continue", "blackball_choice": "Continue"},
            {"pledge": ids[1]},
        ]}
        resp = client.post(f"/vote/{vote['id']}/ballot/batch", json=batch, headers=voters["v1"])
        assert resp.json()["ballots"] == 4

        view = client.get(f"/vote/{vote['id']}", headers=voters["v1"]).json()
        assert view["voted_pledges"] == {ids[0]: True, ids[1]: True}
        assert view["abstained_pledges"] == {ids[0]: False, ids[1]: True}

        again = client.post(f"/vote/{vote['id']}/ballot/batch", json=batch, headers=voters["v1"])
        assert again.json()["detail"] == "Already voted for one of these pledges"

    def test_round_switch_only_for_pledge_votes(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        resp = client.patch(f"/votes/{vote['id']}/round", json={"round": "blackball"}, headers=officer_headers)
        assert resp.json()["detail"] == "Only Pledge votes have rounds"


class TestBiddingFlow:
    def test_bid_ballots_and_snap_bid(self, client, officer_headers, voters, make_member, auth):
        regent = auth(make_member("regent", is_ecouncil=True, ecouncil_position="Regent"))
        vote = create_vote(client, officer_headers, type="Bidding", rushees=["Jordan"])
        start(client, officer_headers, vote["id"])

        url = f"/vote/{vote['id']}/ballot"
        assert client.post(url, json={"choice": "Bid", "rushee": "Jordan"}, headers=voters["v1"]).status_code == 200
        resp = client.post(url, json={"choice": "No Bid", "rushee": "Jordan"}, headers=voters["v1"])
        assert resp.json()["detail"] == "Already voted on Jordan"

        denied = client.post(f"/votes/{vote['id']}/snap-bid", json={"rushee": "Jordan"}, headers=officer_headers)
        assert denied.status_code == 403
        snap = client.post(f"/votes/{vote['id']}/snap-bid", json={"rushee": "Jordan"}, headers=regent)
        assert snap.json()["snap_bids"] == ["Jordan"]

        end(client, officer_headers, vote["id"])
        results = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()
        assert results["results"]["Jordan"]["bid"] == 1
        assert results["results"]["Jordan"]["snap_bid"] is True


class TestVoterRoll:
    def test_invalidate_verify_then_restore_fails(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A", "B"])
        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v1"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "B"}, headers=voters["v2"])
        end(client, officer_headers, vote["id"])

        resp = client.post(f"/votes/{vote['id']}/ballots/invalidate", json={"voter_id": "v1"}, headers=officer_headers)
        assert resp.json()["invalidated_ballots"] == ["v1"]
        results = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()
        assert results["results"] == {"A": 0, "B": 1}

        assert client.put(f"/votes/{vote['id']}/ballots/verify", headers=officer_headers).status_code == 200
        resp = client.delete(f"/votes/{vote['id']}/ballots/invalidate/v1", headers=officer_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot modify ballots after voter list has been verified"

    def test_invalidate_after_verify_fails(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v1"])
        end(client, officer_headers, vote["id"])
        client.put(f"/votes/{vote['id']}/ballots/verify", headers=officer_headers)

        resp = client.post(f"/votes/{vote['id']}/ballots/invalidate", json={"voter_id": "v1"}, headers=officer_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Cannot modify ballots after voter list has been verified"
        results = client.get(f"/votes/{vote['id']}/results", headers=officer_headers).json()
        assert results["results"] == {"A": 1}

    def test_invalidate_requires_ended_vote(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        resp = client.post(f"/votes/{vote['id']}/ballots/invalidate", json={"voter_id": "v1"}, headers=officer_headers)
        assert resp.json()["detail"] == "Cannot invalidate ballots until vote has ended"

    def test_voter_list_statuses(self, client, officer_headers, voters):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A", "proxy": True}, headers=voters["v1"])
        start(client, officer_headers, vote["id"])
        client.post(f"/vote/{vote['id']}/ballot", json={"choice": "A"}, headers=voters["v2"])
        end(client, officer_headers, vote["id"])

        roll = client.get(f"/votes/{vote['id']}/ballots", headers=officer_headers).json()
        statuses = {row["user_id"]: row["status"] for row in roll["voter_list"]}
        assert statuses["v1"] == "proxy"
        assert statuses["v2"] == "voted"
        assert statuses["v3"] == "no-ballot"
        assert roll["vote_ended"] is True

    def test_verify_twice_rejected(self, client, officer_headers):
        vote = create_vote(client, officer_headers, type="Election", options=["A"])
        start(client, officer_headers, vote["id"])
        end(client, officer_headers, vote["id"])
        client.put(f"/votes/{vote['id']}/ballots/verify", headers=officer_headers)
        resp = client.put(f"/votes/{vote['id']}/ballots/verify", headers=officer_headers)
        assert resp.json()["detail"] == "Voter list has already been verified and cannot be modified"
