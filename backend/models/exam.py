from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, Integer, Uuid
from sqlalchemy.sql import func

from models.base import Base


EXAM_STATUS = Enum(
    "pending",
    "active",
    "finished",
    name="exam_status",
)


class Exam(Base):
    __tablename__ = "exams"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    course_id = Column(Uuid, nullable=True)
    original_start_time = Column(DateTime(timezone=True), nullable=False)
    original_duration = Column(Integer, nullable=False)
    extra_time = Column(Integer, nullable=False, default=0)
    status = Column(EXAM_STATUS, nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("original_duration > 0", name="ck_exams_original_duration"),
        CheckConstraint("extra_time >= 0", name="ck_exams_extra_time"),
    )
