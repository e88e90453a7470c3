from __future__ import annotations

import uuid
from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field


class ExamCreate(BaseModel):
    course_id: uuid.UUID | None = None
    original_start_time: datetime
    original_duration: int = Field(gt=0, description="Base duration in minutes")


class ExamOut(BaseModel):
    id: uuid.UUID
    course_id: uuid.UUID | None = None
    original_start_time: datetime
    original_duration: int
    extra_time: int
    status: str
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ExamStatusUpdate(BaseModel):
    status: Literal["pending", "active", "finished"]


class ExtraTimeRequest(BaseModel):
    minutes: int
    reason: str | None = None


class ExamReschedule(BaseModel):
    original_start_time: datetime | None = None
    original_duration: int | None = Field(default=None, gt=0)


class RemainingTimeOut(BaseModel):
    exam_id: uuid.UUID
    student_id: uuid.UUID
    remaining_seconds: int
    display: str
