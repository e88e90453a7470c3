from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.database import get_db
from schemas.conflict import ConflictCheckOut, ConflictCheckRequest
from services.conflict_validator import ConflictKind, ConflictRequest, check_conflicts, with_window
from services.timing import ExamWindow


router = APIRouter()


@router.post("/check", response_model=ConflictCheckOut)
def check(payload: ConflictCheckRequest, db: Session = Depends(get_db)) -> ConflictCheckOut:
    try:
        kind = ConflictKind.parse(payload.kind)
    except ValueError:
        raise HTTPException(status_code=400, detail="INVALID_CONFLICT_KIND")

    request = ConflictRequest(
        exam_id=payload.exam_id,
        existing_classroom_id=payload.existing_classroom_id,
        room_number=payload.room_number,
        supervisor_id=payload.supervisor_id,
        floor_supervisor_id=payload.floor_supervisor_id,
        student_id=payload.student_id,
        existing_attendance_id=payload.existing_attendance_id,
        classroom_id=payload.classroom_id,
        attendance_id=payload.attendance_id,
    )
    if (payload.proposed_start_time is None) != (payload.proposed_duration is None):
        raise HTTPException(status_code=400, detail="INCOMPLETE_PROPOSED_WINDOW")
    if payload.proposed_start_time is not None:
        request = with_window(
            request,
            ExamWindow.for_exam(payload.proposed_start_time, payload.proposed_duration, payload.proposed_extra_time),
        )

    conflicts = check_conflicts(db, kind, request)
    return {"conflicts": [c.to_dict() for c in conflicts]}
