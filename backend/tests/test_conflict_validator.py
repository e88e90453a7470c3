import uuid
from datetime import datetime, timedelta, timezone

from conftest import at
from services.conflict_validator import (
    AssignmentSlot,
    ConflictKind,
    ConflictRequest,
    ConflictValidator,
    check_conflicts,
    with_window,
)
from services.timing import ExamWindow


class FakeRepo:
    def __init__(self):
        self.exams: dict[uuid.UUID, ExamWindow] = {}
        self.rooms: list[dict] = []
        self.bindings: list[dict] = []
        self.open_breaks: set[tuple[uuid.UUID, uuid.UUID]] = set()

    def add_exam(self, start: datetime, minutes: int) -> uuid.UUID:
        exam_id = uuid.uuid4()
        self.exams[exam_id] = ExamWindow.for_exam(start, minutes, 0)
        return exam_id

    def add_room(self, exam_id, room_number, *, supervisor_id=None, floor_supervisor_id=None) -> uuid.UUID:
        classroom_id = uuid.uuid4()
        self.rooms.append(
            {
                "id": classroom_id,
                "exam_id": exam_id,
                "room_number": room_number,
                "supervisor_id": supervisor_id,
                "floor_supervisor_id": floor_supervisor_id,
            }
        )
        return classroom_id

    def _slot(self, room) -> AssignmentSlot:
        return AssignmentSlot(
            classroom_id=room["id"],
            exam_id=room["exam_id"],
            room_number=room["room_number"],
            window=self.exams[room["exam_id"]],
        )

    def exam_window(self, exam_id):
        return self.exams.get(exam_id)

    def assignments_for_supervisor(self, supervisor_id, *, exclude_classroom_id=None):
        return [
            self._slot(r)
            for r in self.rooms
            if r["supervisor_id"] == supervisor_id and r["id"] != exclude_classroom_id
        ]

    def assignments_for_floor_supervisor(self, floor_supervisor_id, *, exclude_classroom_id=None):
        return [
            self._slot(r)
            for r in self.rooms
            if r["floor_supervisor_id"] == floor_supervisor_id and r["id"] != exclude_classroom_id
        ]

    def assignments_for_room(self, room_number):
        needle = room_number.strip().lower()
        return [self._slot(r) for r in self.rooms if r["room_number"].strip().lower() == needle]

    def student_bindings(self, student_id, *, exclude_attendance_id=None):
        rooms = {r["id"]: r for r in self.rooms}
        return [
            self._slot(rooms[b["classroom_id"]])
            for b in self.bindings
            if b["student_id"] == student_id and b["id"] != exclude_attendance_id
        ]

    def room_has_open_break(self, classroom_id, *, exclude_attendance_id=None):
        return any(c == classroom_id and a != exclude_attendance_id for c, a in self.open_breaks)


def _validator():
    repo = FakeRepo()
    return repo, ConflictValidator(repo)


def test_supervisor_overlap_cites_the_existing_room():
    repo, validator = _validator()
    supervisor = uuid.uuid4()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(10), 60)
    exam_c = repo.add_exam(at(13), 60)
    repo.add_room(exam_a, "302", supervisor_id=supervisor)

    conflicts = validator.check_conflicts(
        ConflictKind.ASSIGN_SUPERVISOR,
        ConflictRequest(exam_id=exam_b, room_number="401", supervisor_id=supervisor),
    )
    assert [c.conflict_type for c in conflicts] == ["SUPERVISOR_OVERLAP"]
    assert conflicts[0].message == "Supervisor is already assigned to room 302 during this time window."

    assert (
        validator.check_conflicts(
            ConflictKind.ASSIGN_SUPERVISOR,
            ConflictRequest(exam_id=exam_c, room_number="401", supervisor_id=supervisor),
        )
        == []
    )


def test_supervisor_conflict_is_symmetric():
    supervisor = uuid.uuid4()

    repo, validator = _validator()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(10), 60)
    repo.add_room(exam_a, "302", supervisor_id=supervisor)
    forward = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam_b, room_number="401", supervisor_id=supervisor)
    )

    repo, validator = _validator()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(10), 60)
    repo.add_room(exam_b, "401", supervisor_id=supervisor)
    backward = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam_a, room_number="302", supervisor_id=supervisor)
    )

    assert len(forward) == 1
    assert len(backward) == 1


def test_supervisor_may_not_hold_two_rooms_of_the_same_exam():
    repo, validator = _validator()
    supervisor = uuid.uuid4()
    exam = repo.add_exam(at(9), 180)
    repo.add_room(exam, "302", supervisor_id=supervisor)

    conflicts = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam, room_number="303", supervisor_id=supervisor)
    )
    assert [c.conflict_type for c in conflicts] == ["SUPERVISOR_OVERLAP"]


def test_floor_supervisor_may_cover_many_rooms_of_the_same_exam():
    repo, validator = _validator()
    floor = uuid.uuid4()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(11), 60)
    repo.add_room(exam_a, "302", floor_supervisor_id=floor)

    same_exam = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam_a, room_number="303", floor_supervisor_id=floor)
    )
    other_exam = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam_b, room_number="401", floor_supervisor_id=floor)
    )

    assert same_exam == []
    assert [c.conflict_type for c in other_exam] == ["FLOOR_SUPERVISOR_OVERLAP"]


def test_room_overlap_is_case_and_whitespace_insensitive():
    repo, validator = _validator()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(10), 60)
    repo.add_room(exam_a, "Lab A")

    conflicts = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam_b, room_number="  lab a ")
    )
    assert [c.conflict_type for c in conflicts] == ["ROOM_OVERLAP"]
    assert str(exam_a) in conflicts[0].message


def test_editing_an_assignment_ignores_itself():
    repo, validator = _validator()
    supervisor = uuid.uuid4()
    exam = repo.add_exam(at(9), 180)
    classroom_id = repo.add_room(exam, "302", supervisor_id=supervisor)

    conflicts = validator.check_conflicts(
        ConflictKind.CLASSROOM_UPDATE,
        ConflictRequest(
            exam_id=exam, existing_classroom_id=classroom_id, room_number="302", supervisor_id=supervisor
        ),
    )
    assert conflicts == []


def test_back_to_back_exams_do_not_conflict():
    repo, validator = _validator()
    supervisor = uuid.uuid4()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(12), 60)
    repo.add_room(exam_a, "302", supervisor_id=supervisor)

    conflicts = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE, ConflictRequest(exam_id=exam_b, room_number="302", supervisor_id=supervisor)
    )
    assert conflicts == []


def test_every_violation_is_reported():
    repo, validator = _validator()
    supervisor, floor = uuid.uuid4(), uuid.uuid4()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(10), 60)
    repo.add_room(exam_a, "302", supervisor_id=supervisor, floor_supervisor_id=floor)

    conflicts = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE,
        ConflictRequest(exam_id=exam_b, room_number="302", supervisor_id=supervisor, floor_supervisor_id=floor),
    )
    assert sorted(c.conflict_type for c in conflicts) == [
        "FLOOR_SUPERVISOR_OVERLAP",
        "ROOM_OVERLAP",
        "SUPERVISOR_OVERLAP",
    ]


def test_unknown_exam_skips_window_checks():
    repo, validator = _validator()
    supervisor = uuid.uuid4()
    exam = repo.add_exam(at(9), 180)
    repo.add_room(exam, "302", supervisor_id=supervisor)

    conflicts = validator.check_conflicts(
        ConflictKind.CLASSROOM_CREATE,
        ConflictRequest(exam_id=uuid.uuid4(), room_number="302", supervisor_id=supervisor),
    )
    assert conflicts == []


def test_proposed_window_is_used_for_reschedule():
    repo, validator = _validator()
    supervisor = uuid.uuid4()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(13), 60)
    classroom_b = repo.add_room(exam_b, "401", supervisor_id=supervisor)
    repo.add_room(exam_a, "302", supervisor_id=supervisor)

    request = ConflictRequest(
        exam_id=exam_b, existing_classroom_id=classroom_b, room_number="401", supervisor_id=supervisor
    )
    assert validator.check_conflicts(ConflictKind.EXAM_RESCHEDULE, request) == []

    moved = with_window(request, ExamWindow.for_exam(at(11), 60, 0))
    conflicts = validator.check_conflicts(ConflictKind.EXAM_RESCHEDULE, moved)
    assert [c.room_number for c in conflicts] == ["302"]


def test_student_cannot_sit_two_overlapping_exams():
    repo, validator = _validator()
    student = uuid.uuid4()
    exam_a = repo.add_exam(at(9), 180)
    exam_b = repo.add_exam(at(10), 60)
    classroom_a = repo.add_room(exam_a, "302")
    repo.bindings.append({"id": uuid.uuid4(), "student_id": student, "classroom_id": classroom_a})

    conflicts = validator.check_conflicts(
        ConflictKind.STUDENT_ENROLL, ConflictRequest(exam_id=exam_b, student_id=student)
    )
    assert [c.conflict_type for c in conflicts] == ["STUDENT_OVERLAP"]


def test_break_lock_only_applies_to_break_requests():
    repo, validator = _validator()
    exam = repo.add_exam(at(9), 180)
    classroom = repo.add_room(exam, "302")
    first, second = uuid.uuid4(), uuid.uuid4()
    repo.open_breaks.add((classroom, first))

    locked = validator.check_conflicts(
        ConflictKind.BREAK_START, ConflictRequest(classroom_id=classroom, attendance_id=second)
    )
    assert [c.conflict_type for c in locked] == ["BREAK_LOCKED"]
    assert locked[0].message == "Another student from this room is already on a break."

    # The holder of the pass is not blocked by itself.
    assert (
        validator.check_conflicts(ConflictKind.BREAK_START, ConflictRequest(classroom_id=classroom, attendance_id=first))
        == []
    )
    assert (
        validator.check_conflicts(ConflictKind.CLASSROOM_UPDATE, ConflictRequest(classroom_id=classroom)) == []
    )


def test_sql_repository_scenario(db, seed):
    supervisor = seed.profile("Sam Supervisor", role="supervisor")
    exam_a = seed.exam(at(9), 180, status="pending")
    exam_b = seed.exam(at(10), 60, status="pending")
    exam_c = seed.exam(at(13), 60, status="pending")
    seed.classroom(exam_a, "302", supervisor=supervisor)

    conflicts = check_conflicts(
        db,
        ConflictKind.ASSIGN_SUPERVISOR,
        ConflictRequest(exam_id=exam_b.id, room_number="401", supervisor_id=supervisor.id),
    )
    assert [c.room_number for c in conflicts] == ["302"]

    assert (
        check_conflicts(
            db,
            ConflictKind.ASSIGN_SUPERVISOR,
            ConflictRequest(exam_id=exam_c.id, room_number="401", supervisor_id=supervisor.id),
        )
        == []
    )


def test_sql_repository_handles_timezone_offsets(db, seed):
    supervisor = seed.profile("Sam Supervisor", role="supervisor")
    exam_a = seed.exam(at(9), 180, status="pending")
    seed.classroom(exam_a, "302", supervisor=supervisor)

    # 13:30 in UTC+2 is 11:30 UTC, inside exam A.
    plus_two = timezone(timedelta(hours=2))
    window = ExamWindow.for_exam(datetime(2026, 1, 12, 13, 30, tzinfo=plus_two), 30, 0)
    conflicts = check_conflicts(
        db,
        ConflictKind.CLASSROOM_CREATE,
        ConflictRequest(room_number="500", supervisor_id=supervisor.id, window=window),
    )
    assert len(conflicts) == 1


def test_kind_accepts_hyphenated_names():
    assert ConflictKind.parse("assign-supervisor") is ConflictKind.ASSIGN_SUPERVISOR
    assert ConflictKind.parse(" Classroom-Create ") is ConflictKind.CLASSROOM_CREATE
    assert ConflictKind.parse("bulk-import-row") is ConflictKind.IMPORT_ROW
    assert ConflictKind.parse("exam_reschedule") is ConflictKind.EXAM_RESCHEDULE
