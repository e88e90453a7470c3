from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

import main
from core.config import settings
from core.database import build_engine, get_db, init_db
from models.attendance import Attendance
from models.classroom import Classroom
from models.exam import Exam
from models.profile import Profile
from services.attendance_engine import AttendanceTimerEngine
from services.break_alerts import BreakAlertTracker
from services.events import EventBus


T0 = datetime(2026, 1, 12, 9, 0, tzinfo=timezone.utc)


def at(hour: int, minute: int = 0, second: int = 0) -> datetime:
    return T0.replace(hour=hour, minute=minute, second=second)


@pytest.fixture()
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'examonitor_test.db'}")
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def bus():
    return EventBus(history_size=50)


@pytest.fixture()
def timer(bus):
    return AttendanceTimerEngine(events=bus, alerts=BreakAlertTracker(threshold=timedelta(minutes=15)))


class Seeder:
    def __init__(self, db):
        self.db = db

    def profile(self, name: str = "Student", *, role: str = "student", extension: float = 0.0) -> Profile:
        p = Profile(
            full_name=name,
            role=role,
            student_number=f"S-{uuid.uuid4().hex[:8]}" if role == "student" else None,
            personal_extension_percent=extension,
        )
        self.db.add(p)
        self.db.commit()
        return p

    def exam(self, start: datetime = T0, duration: int = 180, *, status: str = "active", extra: int = 0) -> Exam:
        e = Exam(original_start_time=start, original_duration=duration, extra_time=extra, status=status)
        self.db.add(e)
        self.db.commit()
        return e

    def classroom(self, exam: Exam, room_number: str = "302", *, supervisor=None, floor_supervisor=None) -> Classroom:
        c = Classroom(
            exam_id=exam.id,
            room_number=room_number,
            supervisor_id=supervisor.id if supervisor is not None else None,
            floor_supervisor_id=floor_supervisor.id if floor_supervisor is not None else None,
        )
        self.db.add(c)
        self.db.commit()
        return c

    def attendance(self, classroom: Classroom, student: Profile, *, status: str = "absent") -> Attendance:
        a = Attendance(classroom_id=classroom.id, student_id=student.id, status=status)
        self.db.add(a)
        self.db.commit()
        return a


@pytest.fixture()
def seed(db):
    return Seeder(db)


@pytest.fixture()
def client(engine, session_factory, monkeypatch):
    monkeypatch.setattr(settings, "enforcement_enabled", False)
    monkeypatch.setattr(main, "init_db", lambda: init_db(engine))
    monkeypatch.setattr(main, "SessionLocal", session_factory)
    monkeypatch.setattr(main, "ENGINE", engine)

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    main.app.dependency_overrides[get_db] = _get_db
    with TestClient(main.app) as c:
        yield c
    main.app.dependency_overrides.clear()
