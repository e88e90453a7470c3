from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, Field


class ClassroomCreate(BaseModel):
    exam_id: uuid.UUID
    room_number: str = Field(min_length=1)
    supervisor_id: uuid.UUID | None = None
    floor_supervisor_id: uuid.UUID | None = None


class ClassroomUpdate(BaseModel):
    exam_id: uuid.UUID | None = None
    room_number: str | None = None
    supervisor_id: uuid.UUID | None = None
    floor_supervisor_id: uuid.UUID | None = None


class ClassroomAssign(BaseModel):
    supervisor_id: uuid.UUID | None = None
    floor_supervisor_id: uuid.UUID | None = None


class ClassroomImport(BaseModel):
    rows: list[ClassroomCreate] = Field(min_length=1)


class ClassroomOut(BaseModel):
    id: uuid.UUID
    exam_id: uuid.UUID
    room_number: str
    supervisor_id: uuid.UUID | None = None
    floor_supervisor_id: uuid.UUID | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True
