from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.attendance import Attendance
from models.classroom import Classroom
from models.exam import Exam
from services.attendance_engine import AttendanceTimerEngine
from services.conflict_validator import ConflictDescription, ConflictKind, ConflictRequest, check_conflicts
from services.errors import NotFound, PersistenceFailure, ServiceError, StateConflict, ValidationConflict
from services.timing import ExamWindow, ensure_utc


logger = logging.getLogger(__name__)


EXAM_STATUSES = ("pending", "active", "finished")


def get_exam(db: Session, exam_id: uuid.UUID) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise NotFound("Exam not found", code="EXAM_NOT_FOUND")
    return exam


def list_exams(db: Session, *, status: str | None = None) -> list[Exam]:
    q = select(Exam).order_by(Exam.original_start_time.desc())
    if status:
        q = q.where(Exam.status == status)
    return list(db.execute(q).scalars().all())


def exam_window(exam: Exam) -> ExamWindow:
    return ExamWindow.for_exam(exam.original_start_time, exam.original_duration, exam.extra_time)


def create_exam(
    db: Session,
    *,
    original_start_time: datetime,
    original_duration: int,
    course_id: uuid.UUID | None = None,
) -> Exam:
    exam = Exam(
        course_id=course_id,
        original_start_time=ensure_utc(original_start_time),
        original_duration=int(original_duration),
        extra_time=0,
        status="pending",
    )
    db.add(exam)
    _commit(db, "create exam")
    db.refresh(exam)
    return exam


def _commit(db: Session, what: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.error("Could not %s", what, exc_info=exc)
        raise PersistenceFailure(f"Could not {what}; nothing was changed.") from exc


def _assignment_conflicts(db: Session, exam: Exam, kind: ConflictKind) -> list[ConflictDescription]:
    """Re-validate every room assignment and enrolled student of the exam against its current window."""

    conflicts: list[ConflictDescription] = []
    classrooms = db.execute(select(Classroom).where(Classroom.exam_id == exam.id)).scalars().all()
    for c in classrooms:
        conflicts.extend(
            check_conflicts(
                db,
                kind,
                ConflictRequest(
                    exam_id=exam.id,
                    existing_classroom_id=c.id,
                    room_number=c.room_number,
                    supervisor_id=c.supervisor_id,
                    floor_supervisor_id=c.floor_supervisor_id,
                ),
            )
        )

    rows = db.execute(
        select(Attendance.id, Attendance.student_id)
        .join(Classroom, Classroom.id == Attendance.classroom_id)
        .where(Classroom.exam_id == exam.id)
    ).all()
    for r in rows:
        conflicts.extend(
            check_conflicts(
                db,
                kind,
                ConflictRequest(exam_id=exam.id, student_id=r.student_id, existing_attendance_id=r.id),
            )
        )
    return conflicts


def reschedule_exam(
    db: Session,
    exam_id: uuid.UUID,
    *,
    original_start_time: datetime | None = None,
    original_duration: int | None = None,
) -> Exam:
    exam = get_exam(db, exam_id)
    if str(exam.status) == "finished":
        raise StateConflict("A finished exam cannot be rescheduled.", code="EXAM_FINISHED")

    if original_duration is not None and int(original_duration) <= 0:
        raise ServiceError("Duration must be positive.", code="INVALID_DURATION")

    if original_start_time is not None:
        exam.original_start_time = ensure_utc(original_start_time)
    if original_duration is not None:
        exam.original_duration = int(original_duration)

    try:
        db.flush()
        # Validated after the flush and immediately before commit.
        conflicts = _assignment_conflicts(db, exam, ConflictKind.EXAM_RESCHEDULE)
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not reschedule exam; nothing was changed.") from exc

    if conflicts:
        db.rollback()
        raise ValidationConflict([c.message for c in conflicts], conflicts=conflicts)

    _commit(db, "reschedule exam")
    db.refresh(exam)
    logger.info("Exam %s rescheduled to %s (%d min)", exam.id, exam.original_start_time, exam.original_duration)
    return exam


def add_extra_time(db: Session, exam_id: uuid.UUID, minutes: int) -> Exam:
    """Atomically add session-wide extra time; every student's deadline moves with it."""

    exam = get_exam(db, exam_id)
    if str(exam.status) == "finished":
        raise StateConflict("Extra time cannot be added to a finished exam.", code="EXAM_FINISHED")
    minutes = int(minutes)
    if minutes == 0:
        return exam

    try:
        res = db.execute(
            update(Exam)
            .where(Exam.id == exam_id, Exam.status != "finished", Exam.extra_time + minutes >= 0)
            .values(extra_time=Exam.extra_time + minutes)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise ServiceError("Extra time cannot become negative.", code="INVALID_EXTRA_TIME")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not add extra time; nothing was changed.") from exc

    db.refresh(exam)

    # A longer window may now collide with later bookings; warn, but never block a live grant.
    conflicts = _assignment_conflicts(db, exam, ConflictKind.EXAM_RESCHEDULE)
    db.rollback()
    db.refresh(exam)
    for c in conflicts:
        logger.warning("Extra time on exam %s: %s", exam.id, c.message)

    logger.info("Exam %s extra time now %d min", exam.id, exam.extra_time)
    return exam


def activate_exam(db: Session, exam_id: uuid.UUID) -> Exam:
    exam = get_exam(db, exam_id)
    try:
        res = db.execute(
            update(Exam)
            .where(Exam.id == exam_id, Exam.status == "pending")
            .values(status="active")
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            db.refresh(exam)
            raise StateConflict(f"Exam is {exam.status}; only a pending exam can be activated.", code="EXAM_NOT_PENDING")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not activate exam; nothing was changed.") from exc
    db.refresh(exam)
    logger.info("Exam %s is now active", exam.id)
    return exam


def update_status(db: Session, engine: AttendanceTimerEngine, exam_id: uuid.UUID, status: str) -> Exam:
    status = (status or "").strip().lower()
    if status not in EXAM_STATUSES:
        raise ServiceError(f"Unknown exam status '{status}'.", code="INVALID_STATUS")
    if status == "active":
        return activate_exam(db, exam_id)
    if status == "finished":
        engine.finish_exam(db, exam_id)
        return get_exam(db, exam_id)
    raise StateConflict("An exam cannot return to pending.", code="INVALID_STATUS_TRANSITION")
