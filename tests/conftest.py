import os
import tempfile
from datetime import timedelta

import jwt
import pytest


# Ensure sensible defaults for tests before app import
_TMP = tempfile.mkdtemp(prefix="evcharge-tests-")
os.environ.setdefault("ENV", "dev")
os.environ.setdefault("DB_URL", f"sqlite:///{os.path.join(_TMP, 'evcharge.db')}")
os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("RATE_LIMIT_BACKEND", "memory")
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "100000")
os.environ.setdefault("RATE_LIMIT_AUTH_BOOST", "1")

from evcharge.config import settings  # noqa: E402
from evcharge.database import SessionLocal, engine  # noqa: E402
from evcharge.models import Base, Booking, Station, utcnow  # noqa: E402


ADMIN_A = "admin-a"
ADMIN_B = "admin-b"
USER_1 = "user-1"
USER_2 = "user-2"


def make_token(sub: str, role: str = "user") -> str:
    return jwt.encode({"sub": sub, "role": role}, settings.JWT_SECRET, algorithm="HS256")


def auth_headers(sub: str, role: str = "user") -> dict:
    return {"Authorization": f"Bearer {make_token(sub, role)}"}


def available_slots(station_id) -> int:
    """Read the counter through a fresh session so no cached row is involved."""
    with SessionLocal() as s:
        return s.get(Station, station_id).available_slots


def load_booking(booking_id) -> Booking:
    with SessionLocal() as s:
        b = s.get(Booking, booking_id)
        s.expunge(b)
        return b


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from evcharge.main import app

    return TestClient(app)


@pytest.fixture
def make_station(db):
    def _make(owner_id: str = ADMIN_A, total: int = 5, available=None, rate_cents: int = 12000, status: str = "operational", **kw) -> Station:
        s = Station(
            name=kw.pop("name", "Central Charging Hub"),
            address=kw.pop("address", "MG Road"),
            lat=kw.pop("lat", 12.9716),
            lng=kw.pop("lng", 77.5946),
            total_slots=total,
            available_slots=total if available is None else available,
            rate_per_hour_cents=rate_cents,
            currency="INR",
            status=status,
            owner_id=owner_id,
            **kw,
        )
        db.add(s)
        db.commit()
        return s

    return _make


@pytest.fixture
def future_start():
    return (utcnow() + timedelta(minutes=10)).replace(microsecond=0)
