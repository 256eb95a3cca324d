"""Shared fixtures: an in-memory Mongo database wired into the app, plus member/token helpers."""
import itertools

import mongomock
import pytest
from fastapi.testclient import TestClient

from chapterhub.database.connection import ensure_indexes, get_db
from chapterhub.main import app
from chapterhub.scheduler import get_scheduler
from chapterhub.security import create_access_token

_roll = itertools.count(100)


@pytest.fixture
def db():
    database = mongomock.MongoClient()["chapterhub_test"]
    ensure_indexes(database)
    return database


@pytest.fixture
def client(db):
    """TestClient against the real app; countdown timers are disabled so tests stay synchronous."""
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_scheduler] = lambda: None
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_member(db):
    """Factory inserting a member document; keyword arguments override the defaults."""
    def _make(user_id, **fields):
        n = next(_roll)
        member = {
            "user_id": user_id,
            "roll_no": str(n),
            "first_name": user_id.capitalize(),
            "last_name": f"Brother{n}",
            "grad_year": 2027,
            "status": "Active",
            "role": "member",
            "is_ecouncil": False,
            "ecouncil_position": None,
            "is_committee_head": False,
        }
        member.update(fields)
        member["_id"] = db["members"].insert_one(member).inserted_id
        return member
    return _make


def auth_headers(member):
    token = create_access_token({"sub": member["user_id"]})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def officer(make_member):
    return make_member("officer", is_ecouncil=True, ecouncil_position="Treasurer")


@pytest.fixture
def admin(make_member):
    return make_member("admin", role="admin")


@pytest.fixture
def officer_headers(officer):
    return auth_headers(officer)


@pytest.fixture
def admin_headers(admin):
    return auth_headers(admin)


@pytest.fixture
def auth():
    return auth_headers
