"""Events: permissions, recurrence, QR/manual check-in, RSVPs and the attendance ledger."""
from datetime import timedelta

import pytest

from chapterhub import checkin_code
from chapterhub.timeutils import utcnow


def event_body(**overrides):
    start = utcnow() + timedelta(days=1)
    body = {
        "name": "Chapter Meeting",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=2)).isoformat(),
        "location": "Memorial Union",
        "event_type": "meeting",
    }
    body.update(overrides)
    return body


@pytest.fixture(autouse=True)
def frozen_window(monkeypatch):
    monkeypatch.setattr(checkin_code, "window_for_time", lambda timestamp=None: 4242)


@pytest.fixture
def committee(client, admin_headers, make_member):
    head = make_member("head")
    helper = make_member("helper")
    resp = client.post(
        "/committees",
        json={"name": "Philanthropy", "head_id": str(head["_id"]), "member_ids": [str(helper["_id"])]},
        headers=admin_headers,
    )
    assert resp.status_code == 201, resp.text
    return {"id": resp.json()["id"], "head": head, "helper": helper}


class TestEventPermissions:
    def test_officer_creates_chapter_event(self, client, officer_headers):
        resp = client.post("/events", json=event_body(), headers=officer_headers)
        assert resp.status_code == 201
        assert resp.json()["committee_id"] is None
        assert resp.json()["attendees"] == []

    def test_plain_member_cannot_create_chapter_event(self, client, make_member, auth):
        resp = client.post("/events", json=event_body(), headers=auth(make_member("m1")))
        assert resp.status_code == 403

    def test_committee_member_creates_committee_event(self, client, db, committee, auth):
        resp = client.post(
            "/events", json=event_body(committee_id=committee["id"]), headers=auth(committee["helper"])
        )
        assert resp.status_code == 201
        stored = db["committees"].find_one({"name": "Philanthropy"})
        assert [str(e) for e in stored["event_ids"]] == [resp.json()["id"]]

    def test_end_before_start_rejected(self, client, officer_headers):
        body = event_body()
        body["end_time"], body["start_time"] = body["start_time"], body["end_time"]
        assert client.post("/events", json=body, headers=officer_headers).status_code == 400

    def test_only_admin_moves_event_between_committees(self, client, committee, officer_headers):
        event = client.post("/events", json=event_body(), headers=officer_headers).json()
        resp = client.patch(f"/events/{event['id']}", json={"committee_id": committee["id"]}, headers=officer_headers)
        assert resp.status_code == 403

    def test_status_change_stamps_started_at(self, client, officer_headers):
        event = client.post("/events", json=event_body(), headers=officer_headers).json()
        resp = client.patch(f"/events/{event['id']}", json={"status": "ongoing"}, headers=officer_headers)
        assert resp.json()["status"] == "ongoing"
        assert resp.json()["started_at"] is not None

    def test_delete_pulls_event_from_committee(self, client, db, committee, auth):
        head = auth(committee["head"])
        event = client.post("/events", json=event_body(committee_id=committee["id"]), headers=head).json()
        assert client.delete(f"/events/{event['id']}", headers=head).status_code == 200
        assert db["committees"].find_one({"name": "Philanthropy"})["event_ids"] == []

    def test_unknown_event_is_404(self, client, officer_headers):
        assert client.get("/events/not-an-id", headers=officer_headers).status_code == 404


class TestListing:
    def test_alumni_see_only_visible_events(self, client, officer_headers, make_member, auth):
        client.post("/events", json=event_body(name="Open"), headers=officer_headers)
        client.post("/events", json=event_body(name="Actives", visible_to_alumni=False), headers=officer_headers)

        alum = auth(make_member("alum", status="Alumni"))
        names = [e["name"] for e in client.get("/events", headers=alum).json()]
        assert names == ["Open"]
        assert len(client.get("/events", headers=officer_headers).json()) == 2

    def test_past_events_hidden_by_default(self, client, officer_headers):
        past = utcnow() - timedelta(days=3)
        client.post(
            "/events",
            json=event_body(start_time=past.isoformat(), end_time=(past + timedelta(hours=1)).isoformat()),
            headers=officer_headers,
        )
        assert client.get("/events", headers=officer_headers).json() == []
        assert len(client.get("/events?include_past=true", headers=officer_headers).json()) == 1

    def test_recurring_event_materializes_occurrences(self, client, officer_headers):
        body = event_body(recurrence={"enabled": True, "frequency": "weekly", "interval": 1, "count": 3})
        client.post("/events", json=body, headers=officer_headers)
        events = client.get("/events", headers=officer_headers).json()
        assert len(events) == 3
        assert sum(1 for e in events if e["recurrence_parent_id"]) == 2


class TestCheckIn:
    @pytest.fixture
    def ongoing(self, client, officer_headers):
        event = client.post("/events", json=event_body(status="ongoing"), headers=officer_headers).json()
        return event["id"]

    def test_qr_check_in_records_once(self, client, ongoing, admin_headers, make_member, auth):
        member = make_member("m1")
        code = client.get("/members/me/checkin-code", headers=auth(member)).json()["code"]

        first = client.post(f"/events/{ongoing}/check-in", json={"code": code, "source": "qr"}, headers=admin_headers)
        assert first.json()["status"] == "checked-in"
        assert first.json()["member_id"] == str(member["_id"])

        second = client.post(f"/events/{ongoing}/check-in", json={"code": code, "source": "qr"}, headers=admin_headers)
        assert second.json()["status"] == "already-checked-in"

        attendees = client.get(f"/events/{ongoing}", headers=admin_headers).json()["attendees"]
        assert len(attendees) == 1
        assert attendees[0]["member"]["roll_no"] == member["roll_no"]

    def test_bad_code_rejected(self, client, ongoing, admin_headers):
        resp = client.post(f"/events/{ongoing}/check-in", json={"code": "x|1|y", "source": "qr"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid code"

    def test_scheduled_event_not_accepting_check_ins(self, client, officer_headers, admin_headers):
        event = client.post("/events", json=event_body(), headers=officer_headers).json()
        code = checkin_code.generate_checkin_code("000000000000000000000000")["code"]
        resp = client.post(f"/events/{event['id']}/check-in", json={"code": code, "source": "qr"}, headers=admin_headers)
        assert resp.json()["detail"] == "Event is not accepting check-ins"

    def test_plain_member_cannot_scan(self, client, ongoing, make_member, auth):
        scanner = auth(make_member("m2"))
        code = checkin_code.generate_checkin_code("000000000000000000000000")["code"]
        resp = client.post(f"/events/{ongoing}/check-in", json={"code": code, "source": "qr"}, headers=scanner)
        assert resp.status_code == 403

    def test_committee_head_manual_check_in(self, client, committee, make_member, auth):
        head = auth(committee["head"])
        event = client.post("/events", json=event_body(committee_id=committee["id"]), headers=head).json()
        member = make_member("m3")

        url = f"/events/{event['id']}/manual-check-in"
        assert client.post(url, json={"member_id": str(member["_id"])}, headers=head).json()["status"] == "checked-in"
        assert client.post(url, json={"member_id": str(member["_id"])}, headers=head).json()["status"] == "already-checked-in"


class TestRsvpAndAttendance:
    def test_rsvp_toggles(self, client, officer_headers, make_member, auth):
        event = client.post("/events", json=event_body(), headers=officer_headers).json()
        member = auth(make_member("m1"))
        assert client.post(f"/events/{event['id']}/rsvp", headers=member).json() == {"attending": True, "rsvp_count": 1}
        assert client.post(f"/events/{event['id']}/rsvp", headers=member).json() == {"attending": False, "rsvp_count": 0}

    def test_ledger_details_for_privileged_viewers_only(self, client, officer_headers, admin_headers, make_member, auth):
        member = make_member("m1")
        event = client.post("/events", json=event_body(status="ongoing"), headers=officer_headers).json()
        client.post(f"/events/{event['id']}/manual-check-in", json={"member_id": str(member["_id"])}, headers=admin_headers)

        url = f"/events/attendance?member_id={member['_id']}"
        detailed = client.get(url, headers=officer_headers).json()
        assert detailed["total"] == 1
        assert detailed["events"][0]["name"] == "Chapter Meeting"
        assert detailed["events"][0]["committee_name"] == "Chapter"

        assert client.get(url, headers=auth(member)).json() == {"total": 1}

    def test_ledger_date_range(self, client, officer_headers, admin_headers, make_member):
        member = make_member("m1")
        event = client.post("/events", json=event_body(status="ongoing"), headers=officer_headers).json()
        client.post(f"/events/{event['id']}/manual-check-in", json={"member_id": str(member["_id"])}, headers=admin_headers)

        url = f"/events/attendance?member_id={member['_id']}&start=2020-01-01&end=2020-12-31"
        assert client.get(url, headers=officer_headers).json()["total"] == 0
