from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from models.attendance import Attendance
from models.classroom import Classroom
from models.exam import Exam
from models.profile import Profile
from services.attendance_engine import AttendanceAction, AttendanceTimerEngine, TransitionResult
from services.conflict_validator import ConflictKind, ConflictRequest, check_conflicts
from services.errors import NotFound, PersistenceFailure, ValidationConflict
from services.timing import remaining_seconds, total_allotted_minutes, utcnow


logger = logging.getLogger(__name__)


def get_attendance(db: Session, attendance_id: uuid.UUID) -> Attendance:
    record = db.get(Attendance, attendance_id)
    if record is None:
        raise NotFound("Attendance record not found", code="ATTENDANCE_NOT_FOUND")
    return record


def _find(db: Session, classroom_id: uuid.UUID, student_id: uuid.UUID) -> Attendance | None:
    return (
        db.execute(
            select(Attendance).where(Attendance.classroom_id == classroom_id, Attendance.student_id == student_id)
        )
        .scalars()
        .first()
    )


def enroll_student(db: Session, *, classroom_id: uuid.UUID, student_id: uuid.UUID) -> Attendance:
    """Bind a student to a room as ``absent``; returns the existing record if already bound."""

    classroom = db.get(Classroom, classroom_id)
    if classroom is None:
        raise NotFound("Classroom not found", code="CLASSROOM_NOT_FOUND")
    if db.get(Profile, student_id) is None:
        raise NotFound("Student not found", code="STUDENT_NOT_FOUND")

    existing = _find(db, classroom_id, student_id)
    if existing is not None:
        return existing

    conflicts = check_conflicts(
        db,
        ConflictKind.STUDENT_ENROLL,
        ConflictRequest(exam_id=classroom.exam_id, student_id=student_id),
    )
    if conflicts:
        raise ValidationConflict([c.message for c in conflicts], conflicts=conflicts)

    record = Attendance(student_id=student_id, classroom_id=classroom_id, status="absent")
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # Concurrent enrollment of the same student won the race.
        db.rollback()
        existing = _find(db, classroom_id, student_id)
        if existing is None:
            raise
        return existing
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not enroll student; nothing was changed.") from exc
    db.refresh(record)
    return record


def admit_student(
    db: Session,
    engine: AttendanceTimerEngine,
    *,
    classroom_id: uuid.UUID,
    student_id: uuid.UUID,
) -> TransitionResult:
    """Scan / manual add / search-add: enroll if needed, then admit."""

    record = enroll_student(db, classroom_id=classroom_id, student_id=student_id)
    return engine.transition(db, record.id, AttendanceAction.ADMIT)


def room_students(
    db: Session,
    *,
    exam_id: uuid.UUID,
    supervisor_id: uuid.UUID,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    """Students in the supervisor's room for an exam, with their personal countdown."""

    exam = db.get(Exam, exam_id)
    if exam is None:
        raise NotFound("Exam not found", code="EXAM_NOT_FOUND")

    classroom = (
        db.execute(
            select(Classroom)
            .where(Classroom.exam_id == exam_id, Classroom.supervisor_id == supervisor_id)
            .order_by(Classroom.room_number.asc())
        )
        .scalars()
        .first()
    )
    if classroom is None:
        logger.info("No classroom for supervisor_id=%s in exam_id=%s", supervisor_id, exam_id)
        return []

    now = now or utcnow()
    rows = db.execute(
        select(Attendance, Profile)
        .join(Profile, Profile.id == Attendance.student_id)
        .where(Attendance.classroom_id == classroom.id)
        .order_by(Profile.full_name.asc())
    ).all()

    out: list[dict[str, Any]] = []
    for record, profile in rows:
        left = 0
        if str(exam.status) != "finished":
            total = total_allotted_minutes(exam.original_duration, exam.extra_time, profile.personal_extension_percent)
            left = remaining_seconds(now, exam.original_start_time, total)
        out.append(
            {
                "id": record.id,
                "student_id": profile.id,
                "student_number": profile.student_number,
                "name": profile.full_name,
                "status": str(record.status),
                "classroom_id": classroom.id,
                "room_number": classroom.room_number,
                "personal_extension_percent": float(profile.personal_extension_percent or 0),
                "remaining_seconds": left,
            }
        )
    return out


def floor_summary(
    db: Session,
    *,
    floor_supervisor_id: uuid.UUID,
    exam_id: uuid.UUID | None = None,
) -> dict[str, int]:
    q = (
        select(Attendance.status)
        .join(Classroom, Classroom.id == Attendance.classroom_id)
        .where(Classroom.floor_supervisor_id == floor_supervisor_id)
    )
    if exam_id is not None:
        q = q.where(Classroom.exam_id == exam_id)
    counts = Counter(str(s) for s in db.execute(q).scalars().all())

    room_q = select(Classroom.id).where(Classroom.floor_supervisor_id == floor_supervisor_id)
    if exam_id is not None:
        room_q = room_q.where(Classroom.exam_id == exam_id)
    rooms = len(db.execute(room_q).all())

    return {
        "rooms": rooms,
        "total_students": sum(counts.values()),
        "absent": counts.get("absent", 0),
        "present": counts.get("present", 0),
        "on_break": counts.get("on_break", 0),
        "submitted": counts.get("submitted", 0),
    }
