from __future__ import annotations

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Text, Uuid

from models.base import Base


class StudentBreak(Base):
    __tablename__ = "student_breaks"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    attendance_id = Column(Uuid, ForeignKey("attendance.id", ondelete="CASCADE"), nullable=False, index=True)
    exit_time = Column(DateTime(timezone=True), nullable=False)
    # NULL while the student is still out of the room.
    return_time = Column(DateTime(timezone=True), nullable=True)
    reason = Column(Text, nullable=False, default="toilet")
