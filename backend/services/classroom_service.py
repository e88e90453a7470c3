from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from models.classroom import Classroom
from models.exam import Exam
from models.profile import Profile
from services.conflict_validator import (
    ConflictDescription,
    ConflictKind,
    ConflictRequest,
    check_conflicts,
    normalize_room_number,
)
from services.errors import NotFound, PersistenceFailure, ServiceError, ValidationConflict


logger = logging.getLogger(__name__)


# Marker for "field not supplied" on partial updates (None means unassign).
UNSET: Any = object()


def get_classroom(db: Session, classroom_id: uuid.UUID) -> Classroom:
    classroom = db.get(Classroom, classroom_id)
    if classroom is None:
        raise NotFound("Classroom not found", code="CLASSROOM_NOT_FOUND")
    return classroom


def list_classrooms(db: Session, *, exam_id: uuid.UUID | None = None) -> list[Classroom]:
    q = select(Classroom).order_by(Classroom.room_number.asc())
    if exam_id is not None:
        q = q.where(Classroom.exam_id == exam_id)
    return list(db.execute(q).scalars().all())


def _ensure_exam(db: Session, exam_id: uuid.UUID) -> Exam:
    exam = db.get(Exam, exam_id)
    if exam is None:
        raise NotFound("Exam not found", code="EXAM_NOT_FOUND")
    return exam


def _ensure_profile(db: Session, profile_id: uuid.UUID | None, *, what: str) -> None:
    if profile_id is None:
        return
    if db.get(Profile, profile_id) is None:
        raise NotFound(f"{what} not found", code=f"{what.upper().replace(' ', '_')}_NOT_FOUND")


def _request_for(classroom: Classroom) -> ConflictRequest:
    return ConflictRequest(
        exam_id=classroom.exam_id,
        existing_classroom_id=classroom.id,
        room_number=classroom.room_number,
        supervisor_id=classroom.supervisor_id,
        floor_supervisor_id=classroom.floor_supervisor_id,
    )


def _validate_and_commit(db: Session, classroom: Classroom, kind: ConflictKind) -> Classroom:
    try:
        db.flush()
        # Validated against flushed state immediately before commit.
        conflicts = check_conflicts(db, kind, _request_for(classroom))
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not save classroom; nothing was changed.") from exc

    if conflicts:
        db.rollback()
        logger.info("Rejected %s for room %s: %d conflict(s)", kind.value, classroom.room_number, len(conflicts))
        raise ValidationConflict([c.message for c in conflicts], conflicts=conflicts)

    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not save classroom; nothing was changed.") from exc
    db.refresh(classroom)
    return classroom


def _clean_room_number(room_number: str | None) -> str:
    value = normalize_room_number(room_number)
    if not value:
        raise ServiceError("Room number is required.", code="INVALID_ROOM_NUMBER")
    return value


def create_classroom(
    db: Session,
    *,
    exam_id: uuid.UUID,
    room_number: str,
    supervisor_id: uuid.UUID | None = None,
    floor_supervisor_id: uuid.UUID | None = None,
) -> Classroom:
    _ensure_exam(db, exam_id)
    _ensure_profile(db, supervisor_id, what="Supervisor")
    _ensure_profile(db, floor_supervisor_id, what="Floor supervisor")

    classroom = Classroom(
        exam_id=exam_id,
        room_number=_clean_room_number(room_number),
        supervisor_id=supervisor_id,
        floor_supervisor_id=floor_supervisor_id,
    )
    db.add(classroom)
    return _validate_and_commit(db, classroom, ConflictKind.CLASSROOM_CREATE)


def update_classroom(
    db: Session,
    classroom_id: uuid.UUID,
    *,
    room_number: Any = UNSET,
    exam_id: Any = UNSET,
    supervisor_id: Any = UNSET,
    floor_supervisor_id: Any = UNSET,
    kind: ConflictKind = ConflictKind.CLASSROOM_UPDATE,
) -> Classroom:
    classroom = get_classroom(db, classroom_id)

    if exam_id is not UNSET and exam_id is not None:
        _ensure_exam(db, exam_id)
        classroom.exam_id = exam_id
    if room_number is not UNSET and room_number is not None:
        classroom.room_number = _clean_room_number(room_number)
    if supervisor_id is not UNSET:
        _ensure_profile(db, supervisor_id, what="Supervisor")
        classroom.supervisor_id = supervisor_id
    if floor_supervisor_id is not UNSET:
        _ensure_profile(db, floor_supervisor_id, what="Floor supervisor")
        classroom.floor_supervisor_id = floor_supervisor_id

    return _validate_and_commit(db, classroom, kind)


def assign_supervisors(
    db: Session,
    classroom_id: uuid.UUID,
    *,
    supervisor_id: Any = UNSET,
    floor_supervisor_id: Any = UNSET,
) -> Classroom:
    return update_classroom(
        db,
        classroom_id,
        supervisor_id=supervisor_id,
        floor_supervisor_id=floor_supervisor_id,
        kind=ConflictKind.ASSIGN_SUPERVISOR,
    )


def import_classrooms(db: Session, rows: Iterable[dict[str, Any]]) -> list[Classroom]:
    """Create many assignments at once; all rows commit together or none do.

    Each row is checked against committed state and against the rows before it.
    """

    created: list[Classroom] = []
    reasons: list[str] = []
    conflicts: list[ConflictDescription] = []

    try:
        for index, row in enumerate(rows, start=1):
            exam_id = row.get("exam_id")
            if exam_id is None or db.get(Exam, exam_id) is None:
                reasons.append(f"Row {index}: exam not found.")
                continue
            room_number = normalize_room_number(row.get("room_number"))
            if not room_number:
                reasons.append(f"Row {index}: room number is required.")
                continue
            missing = [
                label
                for label, pid in (
                    ("supervisor", row.get("supervisor_id")),
                    ("floor supervisor", row.get("floor_supervisor_id")),
                )
                if pid is not None and db.get(Profile, pid) is None
            ]
            if missing:
                reasons.append(f"Row {index}: {', '.join(missing)} not found.")
                continue

            classroom = Classroom(
                exam_id=exam_id,
                room_number=room_number,
                supervisor_id=row.get("supervisor_id"),
                floor_supervisor_id=row.get("floor_supervisor_id"),
            )
            db.add(classroom)
            db.flush()

            row_conflicts = check_conflicts(db, ConflictKind.IMPORT_ROW, _request_for(classroom))
            if row_conflicts:
                conflicts.extend(row_conflicts)
                reasons.extend(f"Row {index}: {c.message}" for c in row_conflicts)
                # Keep a conflicting row out of later rows' comparisons.
                db.delete(classroom)
                db.flush()
                continue
            created.append(classroom)

        if reasons:
            db.rollback()
            raise ValidationConflict(reasons, conflicts=conflicts, code="IMPORT_REJECTED")
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceFailure("Could not import classrooms; nothing was changed.") from exc

    for classroom in created:
        db.refresh(classroom)
    logger.info("Imported %d classroom assignment(s)", len(created))
    return created
