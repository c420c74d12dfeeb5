"""Shared test fixtures and helpers."""

from datetime import datetime

import pytest

from app import create_app
from config import TestConfig
from models import db
from models.activity import Activity
from models.user import Role as RoleRow
from models.user import User
from services.availability import AvailabilityService
from services.capacity import SlotCapacityIndex
from services.catalog import ActivityInfo, InMemoryActivityCatalog
from services.identity import Actor, Role
from services.lifecycle import BookingEngine
from services.store import InMemoryBookingStore

NOW = datetime(2025, 7, 20, 9, 0)

TENNIS = ActivityInfo(id=1, name="Tennis Court", capacity_per_slot=1, available_slots=("09:00", "10:00", "11:00"))
POOL = ActivityInfo(id=2, name="Swimming Pool", capacity_per_slot=3, available_slots=("10:00", "2:00 PM"))


class FixedClock:
    """Settable clock; tests move ``now`` forward to age bookings."""

    def __init__(self, now=NOW):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def store():
    return InMemoryBookingStore()


@pytest.fixture
def catalog():
    return InMemoryActivityCatalog([TENNIS, POOL])


@pytest.fixture
def capacity(store):
    return SlotCapacityIndex(store)


@pytest.fixture
def engine(store, catalog, capacity, clock):
    return BookingEngine(store, catalog, capacity=capacity, clock=clock)


@pytest.fixture
def availability(capacity, catalog, clock):
    return AvailabilityService(capacity, catalog, clock=clock)


@pytest.fixture
def member_a():
    return Actor(id=1, role=Role.MEMBER)


@pytest.fixture
def member_b():
    return Actor(id=2, role=Role.MEMBER)


@pytest.fixture
def staff():
    return Actor(id=10, role=Role.STAFF)


@pytest.fixture
def admin():
    return Actor(id=11, role=Role.ADMIN)


# ---------- Flask application ----------

@pytest.fixture
def app(clock):
    app = create_app(TestConfig, clock=clock)
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client_anon(app):
    return app.test_client()


@pytest.fixture
def tennis_id(app):
    with app.app_context():
        activity = Activity(name="Tennis Court", capacity_per_slot=1, available_slots=["09:00", "10:00", "11:00"])
        db.session.add(activity)
        db.session.commit()
        return activity.id


class ApiUser:
    """Logged-in test client that echoes the CSRF cookie on writes."""

    def __init__(self, client, user_id):
        self.client = client
        self.id = user_id

    def _headers(self):
        cookie = self.client.get_cookie("csrf_token")
        return {"X-CSRF-Token": cookie.value} if cookie else {}

    def get(self, url, **kwargs):
        return self.client.get(url, **kwargs)

    def post(self, url, json=None):
        return self.client.post(url, json=json or {}, headers=self._headers())

    def patch(self, url, json=None):
        return self.client.patch(url, json=json or {}, headers=self._headers())


@pytest.fixture
def make_user(app):
    counter = {"n": 0}

    def _make(role="MEMBER", email=None, full_name=None):
        counter["n"] += 1
        email = email or f"user{counter['n']}@example.com"
        client = app.test_client()
        resp = client.post("/auth/register", json={"email": email, "password": "correct-horse", "full_name": full_name})
        assert resp.status_code == 201, resp.get_json()
        user_id = resp.get_json()["id"]

        if role != "MEMBER":
            with app.app_context():
                user = db.session.get(User, user_id)
                user.roles.append(RoleRow.query.filter_by(name=role).first())
                db.session.commit()

        resp = client.post("/auth/login", json={"email": email, "password": "correct-horse"})
        assert resp.status_code == 200
        return ApiUser(client, user_id)

    return _make
