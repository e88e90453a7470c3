from __future__ import annotations

import uuid

from sqlalchemy import CheckConstraint, Column, DateTime, Enum, Float, Text, Uuid
from sqlalchemy.sql import func

from models.base import Base


PROFILE_ROLE = Enum(
    "student",
    "supervisor",
    "floor_supervisor",
    "lecturer",
    "admin",
    name="profile_role",
)


class Profile(Base):
    __tablename__ = "profiles"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    full_name = Column(Text, nullable=False)
    role = Column(PROFILE_ROLE, nullable=False, default="student")
    student_number = Column(Text, nullable=True, unique=True)
    # Individually granted share of the base duration; only meaningful for students.
    personal_extension_percent = Column(Float, nullable=False, default=0.0)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    __table_args__ = (
        CheckConstraint("personal_extension_percent >= 0", name="ck_profiles_extension_percent"),
    )
