# tests/conftest.py
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ENVIRONMENT"] = "testing"
os.environ["RATE_LIMIT_ENABLED"] = "false"

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from clinicqueue import crud, schemas
from clinicqueue.database import create_tables, drop_tables, get_db
from clinicqueue.main import app
from clinicqueue.routers.common import get_clock
from clinicqueue.services import booking_service

DAY = "5_6_2025"
IST = timezone(timedelta(hours=5, minutes=30))


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, minutes: int = 0, seconds: int = 0) -> datetime:
        self.now = self.now + timedelta(minutes=minutes, seconds=seconds)
        return self.now

    def set_local(self, hour: int, minute: int = 0) -> datetime:
        self.now = datetime(2025, 6, 5, hour, minute, tzinfo=IST).astimezone(timezone.utc)
        return self.now


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    create_tables(bind=engine)
    yield engine
    drop_tables(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock():
    # 09:00 in the clinic on 5 June 2025
    return FrozenClock(datetime(2025, 6, 5, 9, 0, tzinfo=IST).astimezone(timezone.utc))


@pytest.fixture
def make_doctor(db):
    def _make(name="Dr. Test", average=15, **fields):
        return crud.create_doctor(db, name=name, average_consultation_time=average, **fields)
    return _make


@pytest.fixture
def doctor(make_doctor):
    return make_doctor()


@pytest.fixture
def book(db):
    def _book(doctor, slot_time, patient_id="patient-1", slot_date=DAY):
        return booking_service.book_appointment(
            db,
            schemas.Actor.patient(patient_id),
            schemas.AppointmentCreate(doctor_id=doctor.id, slot_date=slot_date, slot_time=slot_time),
        )
    return _book


@pytest.fixture
def client(session_factory, clock):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    yield TestClient(app)
    app.dependency_overrides.clear()


def headers(role: str, actor_id=None) -> dict:
    values = {"X-Actor-Role": role}
    if actor_id is not None:
        values["X-Actor-Id"] = str(actor_id)
    return values
