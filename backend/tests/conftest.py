import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Point the module-level engine away from backend/app.db before the app is imported.
os.environ.setdefault("DATABASE_URL", f"sqlite:///{Path(tempfile.mkdtemp()) / 'bootstrap.db'}")

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session  # noqa: E402

from scholarship_api import models  # noqa: E402
from scholarship_api.auth import create_access_token  # noqa: E402
from scholarship_api.database import build_engine, create_db_and_tables, get_session  # noqa: E402
from scholarship_api.main import _booking_rate_limiter, app  # noqa: E402
from scholarship_api.schemas import SlotCreateIn  # noqa: E402
from scholarship_api.services import SlotService  # noqa: E402

FIXED_NOW = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def fixed_clock():
    return FIXED_NOW


@pytest.fixture
def engine(tmp_path):
    """Fresh SQLite file database per test."""
    eng = build_engine(f"sqlite:///{tmp_path / 'interviews.db'}", busy_timeout=15)
    create_db_and_tables(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as s:
        yield s


@pytest.fixture
def client(engine):
    def _session_override():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _session_override
    _booking_rate_limiter.reset()
    yield TestClient(app)
    app.dependency_overrides.clear()


def auth_headers(user_id: str, *roles: str) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user_id, roles)}"}


@pytest.fixture
def scholarship(session):
    s = models.Scholarship(scholarship_name="Merit Award")
    session.add(s)
    session.add(models.User(user_id="int-1", first_name="Ada", last_name="Lovelace", email="ada@example.edu"))
    session.commit()
    session.refresh(s)
    return s


@pytest.fixture
def make_student(session):
    """Create an account, its student record and an application; return the application."""
    def _make(user_id: str, scholarship_id: int, status: str = "submitted") -> models.ScholarshipApplication:
        student_id = f"S-{user_id}"
        session.add(models.User(user_id=user_id, first_name="Stu", last_name=user_id))
        session.add(models.Student(student_id=student_id, user_id=user_id))
        application = models.ScholarshipApplication(
            student_id=student_id,
            scholarship_id=scholarship_id,
            application_status=status,
            submitted_at=FIXED_NOW,
        )
        session.add(application)
        session.commit()
        session.refresh(application)
        return application

    return _make


@pytest.fixture
def make_slot(session):
    def _make(scholarship_id: int, day: str = "2024-01-10", start: str = "09:00", end: str = "09:30",
              interviewer_id: str = "int-1", **extra) -> models.InterviewSlot:
        data = SlotCreateIn(
            scholarship_id=scholarship_id,
            interviewer_id=interviewer_id,
            interview_date=day,
            start_time=start,
            end_time=end,
            **extra,
        )
        return SlotService(session, clock=fixed_clock).create_slot(data, created_by="officer-1")

    return _make
