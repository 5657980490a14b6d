"""Shared fixtures: an in-memory MongoDB and a few users."""

from datetime import date

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

from app.core import config
from app.models.booking import BookingCreate

BOOKING_DAY = date(2026, 11, 2)


@pytest.fixture(autouse=True)
def fast_slot_lock(monkeypatch):
    """Keep lock contention tests quick."""
    monkeypatch.setattr(config, "SLOT_LOCK_RETRIES", 1)
    monkeypatch.setattr(config, "SLOT_LOCK_BACKOFF_SECONDS", 0)


@pytest.fixture
def db():
    client = mongomock.MongoClient()
    yield client["setkar_test"]
    client.close()


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make(role="customer", name=None, **fields):
        counter["n"] += 1
        user = {
            "_id": ObjectId(),
            "name": name or f"{role}-{counter['n']}",
            "email": f"{role}{counter['n']}@example.com",
            "role": role,
            "setkar_coins": 0,
            "completed_bookings": 0,
            **fields,
        }
        db.users.insert_one(user)
        return user

    return _make


@pytest.fixture
def barber(make_user):
    return make_user("barber", name="Ravi", max_appointments_per_day=3, todays_bookings=0)


@pytest.fixture
def customer(make_user):
    return make_user("customer", name="Asha")


def booking_request(barber, tier="Basic", day=BOOKING_DAY, time="10:00", offline=False, **fields):
    payload = {
        "barber_id": str(barber["_id"]),
        "date": day,
        "time": time,
        "services": [{"id": "s1", "name": "Haircut", "price": 200}],
        "total_price": 200,
        "appointment_type": tier,
        "is_offline_booking": offline,
    }
    if offline:
        payload.update({"customer_name": "Walk In", "customer_phone": "9876543210"})
    payload.update(fields)
    return BookingCreate(**payload)


@pytest.fixture
def book(db):
    """Admit a booking through the real admission path."""
    from app.services.admission_service import AdmissionService

    admission = AdmissionService(db)

    def _book(actor, barber, tier="Basic", **kwargs):
        return admission.create_booking(booking_request(barber, tier, **kwargs), actor)

    return _book


@pytest.fixture
def app_client(db):
    from app.core.security import get_current_user
    from app.db.client import get_db
    from app.main import app

    acting = {"user": None}
    app.dependency_overrides[get_db] = lambda: db
    app.dependency_overrides[get_current_user] = lambda: acting["user"]

    with TestClient(app) as client:
        client.act_as = lambda user: acting.update(user=user)
        yield client

    app.dependency_overrides.clear()
