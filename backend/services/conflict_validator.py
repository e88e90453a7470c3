from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from models.attendance import Attendance
from models.classroom import Classroom
from models.exam import Exam
from models.student_break import StudentBreak
from services.timing import ExamWindow


logger = logging.getLogger(__name__)


class ConflictKind(str, Enum):
    CLASSROOM_CREATE = "classroom_create"
    CLASSROOM_UPDATE = "classroom_update"
    ASSIGN_SUPERVISOR = "assign_supervisor"
    IMPORT_ROW = "import_row"
    EXAM_RESCHEDULE = "exam_reschedule"
    STUDENT_ENROLL = "student_enroll"
    BREAK_START = "break_start"

    @classmethod
    def parse(cls, value: str) -> "ConflictKind":
        """Accept both `assign_supervisor` and `assign-supervisor` spellings."""

        key = str(value or "").strip().lower().replace("-", "_")
        return cls(_KIND_ALIASES.get(key, key))


_KIND_ALIASES = {"bulk_import_row": "import_row"}


@dataclass(frozen=True)
class ConflictRequest:
    exam_id: uuid.UUID | None = None
    # The assignment being edited; excluded from its own comparisons.
    existing_classroom_id: uuid.UUID | None = None
    room_number: str | None = None
    supervisor_id: uuid.UUID | None = None
    floor_supervisor_id: uuid.UUID | None = None
    student_id: uuid.UUID | None = None
    existing_attendance_id: uuid.UUID | None = None
    # Break-lock check: the room whose exit pass is requested, and by whom.
    classroom_id: uuid.UUID | None = None
    attendance_id: uuid.UUID | None = None
    # Proposed window (reschedule); falls back to the stored exam window.
    window: ExamWindow | None = None


@dataclass(frozen=True)
class ConflictDescription:
    conflict_type: str
    message: str
    room_number: str | None = None
    classroom_id: uuid.UUID | None = None
    exam_id: uuid.UUID | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflict_type": self.conflict_type,
            "message": self.message,
            "room_number": self.room_number,
            "classroom_id": str(self.classroom_id) if self.classroom_id else None,
            "exam_id": str(self.exam_id) if self.exam_id else None,
        }


@dataclass(frozen=True)
class AssignmentSlot:
    classroom_id: uuid.UUID
    exam_id: uuid.UUID
    room_number: str
    window: ExamWindow


class ScheduleRepository(Protocol):
    def exam_window(self, exam_id: uuid.UUID) -> ExamWindow | None: ...

    def assignments_for_supervisor(
        self, supervisor_id: uuid.UUID, *, exclude_classroom_id: uuid.UUID | None
    ) -> list[AssignmentSlot]: ...

    def assignments_for_floor_supervisor(
        self, floor_supervisor_id: uuid.UUID, *, exclude_classroom_id: uuid.UUID | None
    ) -> list[AssignmentSlot]: ...

    def assignments_for_room(self, room_number: str) -> list[AssignmentSlot]: ...

    def student_bindings(
        self, student_id: uuid.UUID, *, exclude_attendance_id: uuid.UUID | None
    ) -> list[AssignmentSlot]: ...

    def room_has_open_break(self, classroom_id: uuid.UUID, *, exclude_attendance_id: uuid.UUID | None) -> bool: ...


def normalize_room_number(room_number: str | None) -> str:
    return str(room_number or "").strip()


class SqlScheduleRepository:
    """Reads committed (and flushed) scheduling state through a SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    def _slots_query(self):
        return select(
            Classroom.id,
            Classroom.exam_id,
            Classroom.room_number,
            Exam.original_start_time,
            Exam.original_duration,
            Exam.extra_time,
        ).join(Exam, Exam.id == Classroom.exam_id)

    @staticmethod
    def _to_slots(rows) -> list[AssignmentSlot]:
        return [
            AssignmentSlot(
                classroom_id=r.id,
                exam_id=r.exam_id,
                room_number=str(r.room_number),
                window=ExamWindow.for_exam(r.original_start_time, r.original_duration, r.extra_time),
            )
            for r in rows
        ]

    def exam_window(self, exam_id: uuid.UUID) -> ExamWindow | None:
        exam = self.db.get(Exam, exam_id)
        if exam is None:
            return None
        return ExamWindow.for_exam(exam.original_start_time, exam.original_duration, exam.extra_time)

    def assignments_for_supervisor(self, supervisor_id, *, exclude_classroom_id=None) -> list[AssignmentSlot]:
        q = self._slots_query().where(Classroom.supervisor_id == supervisor_id)
        if exclude_classroom_id is not None:
            q = q.where(Classroom.id != exclude_classroom_id)
        return self._to_slots(self.db.execute(q).all())

    def assignments_for_floor_supervisor(self, floor_supervisor_id, *, exclude_classroom_id=None) -> list[AssignmentSlot]:
        q = self._slots_query().where(Classroom.floor_supervisor_id == floor_supervisor_id)
        if exclude_classroom_id is not None:
            q = q.where(Classroom.id != exclude_classroom_id)
        return self._to_slots(self.db.execute(q).all())

    def assignments_for_room(self, room_number: str) -> list[AssignmentSlot]:
        needle = normalize_room_number(room_number).lower()
        q = self._slots_query().where(func.lower(func.trim(Classroom.room_number)) == needle)
        return self._to_slots(self.db.execute(q).all())

    def student_bindings(self, student_id, *, exclude_attendance_id=None) -> list[AssignmentSlot]:
        q = self._slots_query().join(Attendance, Attendance.classroom_id == Classroom.id).where(
            Attendance.student_id == student_id
        )
        if exclude_attendance_id is not None:
            q = q.where(Attendance.id != exclude_attendance_id)
        return self._to_slots(self.db.execute(q).all())

    def room_has_open_break(self, classroom_id, *, exclude_attendance_id=None) -> bool:
        q = (
            select(StudentBreak.id)
            .join(Attendance, Attendance.id == StudentBreak.attendance_id)
            .where(Attendance.classroom_id == classroom_id)
            .where(StudentBreak.return_time.is_(None))
        )
        if exclude_attendance_id is not None:
            q = q.where(Attendance.id != exclude_attendance_id)
        return self.db.execute(q.limit(1)).first() is not None


class ConflictValidator:
    """Read-only decision function over proposed scheduling mutations.

    Every check is independent; the result lists every violation found and is
    empty when the request is clean. Business violations are never raised.
    """

    def __init__(self, repo: ScheduleRepository) -> None:
        self.repo = repo

    def check_conflicts(self, kind: ConflictKind | str, request: ConflictRequest) -> list[ConflictDescription]:
        kind = ConflictKind(kind)
        conflicts: list[ConflictDescription] = []

        window = request.window
        if window is None and request.exam_id is not None:
            window = self.repo.exam_window(request.exam_id)

        # Without a resolvable exam there is nothing to compare windows against;
        # referential existence is checked by the caller.
        if window is not None and window.is_complete:
            if request.supervisor_id is not None:
                conflicts.extend(self._supervisor_conflicts(request, window))
            if request.floor_supervisor_id is not None:
                conflicts.extend(self._floor_supervisor_conflicts(request, window))
            if normalize_room_number(request.room_number):
                conflicts.extend(self._room_conflicts(request, window))
            if request.student_id is not None:
                conflicts.extend(self._student_conflicts(request, window))

        if kind == ConflictKind.BREAK_START and request.classroom_id is not None:
            conflicts.extend(self._break_lock_conflicts(request))

        if conflicts:
            logger.debug("check_conflicts kind=%s found %d conflict(s)", kind.value, len(conflicts))
        return conflicts

    def _window_of(self, slot: AssignmentSlot, request: ConflictRequest, window: ExamWindow) -> ExamWindow:
        # Rooms of the same exam share its (possibly proposed) window.
        if request.exam_id is not None and slot.exam_id == request.exam_id:
            return window
        return slot.window

    def _supervisor_conflicts(self, request: ConflictRequest, window: ExamWindow) -> list[ConflictDescription]:
        out: list[ConflictDescription] = []
        slots = self.repo.assignments_for_supervisor(
            request.supervisor_id, exclude_classroom_id=request.existing_classroom_id
        )
        for slot in slots:
            if window.overlaps(self._window_of(slot, request, window)):
                out.append(
                    ConflictDescription(
                        conflict_type="SUPERVISOR_OVERLAP",
                        message=f"Supervisor is already assigned to room {slot.room_number} during this time window.",
                        room_number=slot.room_number,
                        classroom_id=slot.classroom_id,
                        exam_id=slot.exam_id,
                    )
                )
        return out

    def _floor_supervisor_conflicts(self, request: ConflictRequest, window: ExamWindow) -> list[ConflictDescription]:
        out: list[ConflictDescription] = []
        slots = self.repo.assignments_for_floor_supervisor(
            request.floor_supervisor_id, exclude_classroom_id=request.existing_classroom_id
        )
        for slot in slots:
            # One floor supervisor may cover many rooms of the same exam.
            if slot.exam_id == request.exam_id:
                continue
            if window.overlaps(slot.window):
                out.append(
                    ConflictDescription(
                        conflict_type="FLOOR_SUPERVISOR_OVERLAP",
                        message=(
                            f"Floor supervisor is already assigned to room {slot.room_number} "
                            "in an overlapping exam."
                        ),
                        room_number=slot.room_number,
                        classroom_id=slot.classroom_id,
                        exam_id=slot.exam_id,
                    )
                )
        return out

    def _room_conflicts(self, request: ConflictRequest, window: ExamWindow) -> list[ConflictDescription]:
        out: list[ConflictDescription] = []
        room_number = normalize_room_number(request.room_number)
        for slot in self.repo.assignments_for_room(room_number):
            if slot.exam_id == request.exam_id and slot.classroom_id == request.existing_classroom_id:
                continue
            if window.overlaps(self._window_of(slot, request, window)):
                out.append(
                    ConflictDescription(
                        conflict_type="ROOM_OVERLAP",
                        message=(
                            f"Room {room_number} is already assigned to another exam ({slot.exam_id}) "
                            "during this time window."
                        ),
                        room_number=slot.room_number,
                        classroom_id=slot.classroom_id,
                        exam_id=slot.exam_id,
                    )
                )
        return out

    def _student_conflicts(self, request: ConflictRequest, window: ExamWindow) -> list[ConflictDescription]:
        out: list[ConflictDescription] = []
        slots = self.repo.student_bindings(request.student_id, exclude_attendance_id=request.existing_attendance_id)
        for slot in slots:
            if window.overlaps(self._window_of(slot, request, window)):
                out.append(
                    ConflictDescription(
                        conflict_type="STUDENT_OVERLAP",
                        message=(
                            f"Student {request.student_id} is already registered in room {slot.room_number} "
                            "for an overlapping exam."
                        ),
                        room_number=slot.room_number,
                        classroom_id=slot.classroom_id,
                        exam_id=slot.exam_id,
                    )
                )
        return out

    def _break_lock_conflicts(self, request: ConflictRequest) -> list[ConflictDescription]:
        if not self.repo.room_has_open_break(request.classroom_id, exclude_attendance_id=request.attendance_id):
            return []
        return [
            ConflictDescription(
                conflict_type="BREAK_LOCKED",
                message="Another student from this room is already on a break.",
                classroom_id=request.classroom_id,
            )
        ]


def check_conflicts(db: Session, kind: ConflictKind | str, request: ConflictRequest) -> list[ConflictDescription]:
    return ConflictValidator(SqlScheduleRepository(db)).check_conflicts(kind, request)


def with_window(request: ConflictRequest, window: ExamWindow) -> ConflictRequest:
    return replace(request, window=window)
