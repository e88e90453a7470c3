from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ConflictCheckRequest(BaseModel):
    kind: str = Field(min_length=1)
    exam_id: uuid.UUID | None = None
    existing_classroom_id: uuid.UUID | None = None
    room_number: str | None = None
    supervisor_id: uuid.UUID | None = None
    floor_supervisor_id: uuid.UUID | None = None
    student_id: uuid.UUID | None = None
    existing_attendance_id: uuid.UUID | None = None
    classroom_id: uuid.UUID | None = None
    attendance_id: uuid.UUID | None = None
    # Proposed window for reschedule checks; both or neither.
    proposed_start_time: datetime | None = None
    proposed_duration: int | None = Field(default=None, gt=0)
    proposed_extra_time: int = Field(default=0, ge=0)


class ConflictOut(BaseModel):
    conflict_type: str
    message: str
    room_number: str | None = None
    classroom_id: uuid.UUID | None = None
    exam_id: uuid.UUID | None = None

    class Config:
        from_attributes = True


class ConflictCheckOut(BaseModel):
    conflicts: list[ConflictOut]
