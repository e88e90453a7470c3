from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, Enum, ForeignKey, UniqueConstraint, Uuid
from sqlalchemy.sql import func

from models.base import Base


ATTENDANCE_STATUS = Enum(
    "absent",
    "present",
    "on_break",
    "submitted",
    name="attendance_status",
)


class Attendance(Base):
    __tablename__ = "attendance"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    student_id = Column(Uuid, ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False, index=True)
    classroom_id = Column(Uuid, ForeignKey("classrooms.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(ATTENDANCE_STATUS, nullable=False, default="absent")
    check_in_time = Column(DateTime(timezone=True), nullable=True)
    check_out_time = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("student_id", "classroom_id", name="uq_attendance_student_classroom"),
    )
