from __future__ import annotations

import logging
import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from api.deps import get_timer_engine
from core.database import get_db
from schemas.exam import (
    ExamCreate,
    ExamOut,
    ExamReschedule,
    ExamStatusUpdate,
    ExtraTimeRequest,
    RemainingTimeOut,
)
from services import exam_service
from services.attendance_engine import AttendanceTimerEngine
from services.timing import format_countdown


logger = logging.getLogger(__name__)


router = APIRouter()


@router.get("/", response_model=list[ExamOut])
def list_exams(
    status: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> list[ExamOut]:
    return exam_service.list_exams(db, status=status)


@router.post("/", response_model=ExamOut, status_code=201)
def create_exam(payload: ExamCreate, db: Session = Depends(get_db)) -> ExamOut:
    return exam_service.create_exam(
        db,
        course_id=payload.course_id,
        original_start_time=payload.original_start_time,
        original_duration=payload.original_duration,
    )


@router.get("/{exam_id}", response_model=ExamOut)
def get_exam(exam_id: uuid.UUID, db: Session = Depends(get_db)) -> ExamOut:
    return exam_service.get_exam(db, exam_id)


@router.patch("/{exam_id}/status", response_model=ExamOut)
def update_exam_status(
    exam_id: uuid.UUID,
    payload: ExamStatusUpdate,
    db: Session = Depends(get_db),
    engine: AttendanceTimerEngine = Depends(get_timer_engine),
) -> ExamOut:
    return exam_service.update_status(db, engine, exam_id, payload.status)


@router.patch("/{exam_id}/extra-time", response_model=ExamOut)
def add_extra_time(exam_id: uuid.UUID, payload: ExtraTimeRequest, db: Session = Depends(get_db)) -> ExamOut:
    if payload.reason:
        logger.info("Extra time %+d min on exam %s: %s", payload.minutes, exam_id, payload.reason)
    return exam_service.add_extra_time(db, exam_id, payload.minutes)


@router.patch("/{exam_id}/schedule", response_model=ExamOut)
def reschedule_exam(exam_id: uuid.UUID, payload: ExamReschedule, db: Session = Depends(get_db)) -> ExamOut:
    return exam_service.reschedule_exam(
        db,
        exam_id,
        original_start_time=payload.original_start_time,
        original_duration=payload.original_duration,
    )


@router.get("/{exam_id}/students/{student_id}/remaining", response_model=RemainingTimeOut)
def remaining_time(
    exam_id: uuid.UUID,
    student_id: uuid.UUID,
    db: Session = Depends(get_db),
    engine: AttendanceTimerEngine = Depends(get_timer_engine),
) -> RemainingTimeOut:
    seconds = engine.remaining_seconds(db, exam_id, student_id)
    return RemainingTimeOut(
        exam_id=exam_id,
        student_id=student_id,
        remaining_seconds=seconds,
        display=format_countdown(seconds),
    )
