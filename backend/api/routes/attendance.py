from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_timer_engine
from core.database import get_db
from schemas.attendance import (
    AttendanceOut,
    EnrollRequest,
    FloorSummaryOut,
    RoomStudentOut,
    TransitionOut,
    TransitionRequest,
)
from services import attendance_service
from services.attendance_engine import AttendanceTimerEngine, transition_to_dict


router = APIRouter()


@router.post("/enroll", response_model=AttendanceOut, status_code=201)
def enroll_student(payload: EnrollRequest, db: Session = Depends(get_db)) -> AttendanceOut:
    return attendance_service.enroll_student(db, classroom_id=payload.classroom_id, student_id=payload.student_id)


@router.post("/admit", response_model=TransitionOut)
def admit_student(
    payload: EnrollRequest,
    db: Session = Depends(get_db),
    engine: AttendanceTimerEngine = Depends(get_timer_engine),
) -> TransitionOut:
    result = attendance_service.admit_student(
        db, engine, classroom_id=payload.classroom_id, student_id=payload.student_id
    )
    return transition_to_dict(result)


@router.get("/supervisor/{supervisor_id}", response_model=list[RoomStudentOut])
def supervisor_room(
    supervisor_id: uuid.UUID,
    exam_id: uuid.UUID = Query(...),
    db: Session = Depends(get_db),
) -> list[RoomStudentOut]:
    return attendance_service.room_students(db, exam_id=exam_id, supervisor_id=supervisor_id)


@router.get("/floor-summary/{floor_supervisor_id}", response_model=FloorSummaryOut)
def floor_summary(
    floor_supervisor_id: uuid.UUID,
    exam_id: uuid.UUID | None = Query(default=None),
    db: Session = Depends(get_db),
) -> FloorSummaryOut:
    return attendance_service.floor_summary(db, floor_supervisor_id=floor_supervisor_id, exam_id=exam_id)


@router.get("/{attendance_id}", response_model=AttendanceOut)
def get_attendance(attendance_id: uuid.UUID, db: Session = Depends(get_db)) -> AttendanceOut:
    return attendance_service.get_attendance(db, attendance_id)


@router.post("/{attendance_id}/transition", response_model=TransitionOut)
def transition(
    attendance_id: uuid.UUID,
    payload: TransitionRequest,
    db: Session = Depends(get_db),
    engine: AttendanceTimerEngine = Depends(get_timer_engine),
) -> TransitionOut:
    # Rejections are reported in the body (ok=false, notice) rather than as an HTTP error.
    result = engine.transition(db, attendance_id, payload.action, reason=payload.reason)
    return transition_to_dict(result)
