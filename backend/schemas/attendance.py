from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel

from schemas.conflict import ConflictOut


class EnrollRequest(BaseModel):
    classroom_id: uuid.UUID
    student_id: uuid.UUID


class AttendanceOut(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    classroom_id: uuid.UUID
    status: str
    check_in_time: datetime | None = None
    check_out_time: datetime | None = None

    class Config:
        from_attributes = True


class TransitionRequest(BaseModel):
    action: Literal["admit", "break_start", "break_end", "submit"]
    reason: str | None = None


class TransitionOut(BaseModel):
    attendance_id: uuid.UUID
    status: str
    ok: bool
    notice: str | None = None
    anomalous: bool = False
    conflicts: list[ConflictOut] = []


class RoomStudentOut(BaseModel):
    id: uuid.UUID
    student_id: uuid.UUID
    student_number: str | None = None
    name: str
    status: str
    classroom_id: uuid.UUID
    room_number: str
    personal_extension_percent: float
    remaining_seconds: int


class FloorSummaryOut(BaseModel):
    rooms: int
    total_students: int
    absent: int
    present: int
    on_break: int
    submitted: int
