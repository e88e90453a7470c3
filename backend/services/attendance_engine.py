from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, aliased

from models.attendance import Attendance
from models.classroom import Classroom
from models.exam import Exam
from models.profile import Profile
from models.student_break import StudentBreak
from services.break_alerts import BreakAlertTracker
from services.conflict_validator import ConflictKind, ConflictRequest, ConflictValidator, SqlScheduleRepository
from services.errors import NotFound, PersistenceFailure, StateConflict, TransitionRejected
from services.events import BreakAlertEvent, EventBus, SubmissionEvent
from services.timing import ensure_utc, remaining_seconds, total_allotted_minutes, utcnow


logger = logging.getLogger(__name__)


IN_EXAM_STATUSES = ("present", "on_break")


class AttendanceAction(str, Enum):
    ADMIT = "admit"
    BREAK_START = "break_start"
    BREAK_END = "break_end"
    SUBMIT = "submit"


@dataclass(frozen=True)
class TransitionResult:
    attendance_id: uuid.UUID
    status: str
    ok: bool
    notice: str | None = None
    # break_end without an open break record
    anomalous: bool = False
    conflicts: tuple = ()


@dataclass
class SweepReport:
    checked: int = 0
    submitted: list[uuid.UUID] = field(default_factory=list)
    alerts: list[uuid.UUID] = field(default_factory=list)
    failures: list[uuid.UUID] = field(default_factory=list)


@dataclass
class FinishReport:
    exam_id: uuid.UUID
    submitted: list[uuid.UUID] = field(default_factory=list)
    breaks_closed: int = 0


@dataclass(frozen=True)
class _Snapshot:
    id: uuid.UUID
    status: str
    student_id: uuid.UUID
    classroom_id: uuid.UUID
    exam_id: uuid.UUID
    exam_status: str
    student_name: str


class AttendanceTimerEngine:
    """Authoritative per-student state keeper for live exams.

    Every transition is a single conditional UPDATE guarded by the record's
    current status, committed as one unit. A writer that loses a race sees a
    rejected no-op; a store failure rolls back and is reported, never retried.
    """

    def __init__(
        self,
        *,
        events: EventBus,
        alerts: BreakAlertTracker | None = None,
        default_break_reason: str = "toilet",
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.events = events
        self.alerts = alerts or BreakAlertTracker(threshold=timedelta(minutes=15))
        self.default_break_reason = default_break_reason
        self.clock = clock

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def transition(
        self,
        db: Session,
        attendance_id: uuid.UUID,
        action: AttendanceAction | str,
        *,
        reason: str | None = None,
        now: datetime | None = None,
    ) -> TransitionResult:
        action = AttendanceAction(action)
        now = ensure_utc(now) if now is not None else self.clock()

        snap = self._snapshot(db, attendance_id)
        handlers = {
            AttendanceAction.ADMIT: self._admit,
            AttendanceAction.BREAK_START: self._start_break,
            AttendanceAction.BREAK_END: self._end_break,
            AttendanceAction.SUBMIT: self._submit,
        }

        try:
            result = handlers[action](db, snap, now, reason)
            db.commit()
        except TransitionRejected as exc:
            db.rollback()
            logger.info(
                "Transition %s rejected for attendance_id=%s (status=%s): %s",
                action.value,
                attendance_id,
                exc.status,
                exc.notice,
            )
            return TransitionResult(
                attendance_id=attendance_id,
                status=exc.status or snap.status,
                ok=False,
                notice=exc.notice,
                conflicts=tuple(exc.conflicts),
            )
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Transition %s failed for attendance_id=%s", action.value, attendance_id, exc_info=exc)
            raise PersistenceFailure(
                f"Could not apply {action.value} for attendance {attendance_id}; nothing was changed."
            ) from exc

        if action in (AttendanceAction.BREAK_END, AttendanceAction.SUBMIT):
            self.alerts.rearm(attendance_id)
        if action == AttendanceAction.SUBMIT:
            self._publish_submission(snap, trigger="operator", now=now)
        return result

    def _snapshot(self, db: Session, attendance_id: uuid.UUID) -> _Snapshot:
        row = db.execute(
            select(
                Attendance.id,
                Attendance.status,
                Attendance.student_id,
                Attendance.classroom_id,
                Classroom.exam_id,
                Exam.status.label("exam_status"),
                Profile.full_name,
            )
            .join(Classroom, Classroom.id == Attendance.classroom_id)
            .join(Exam, Exam.id == Classroom.exam_id)
            .outerjoin(Profile, Profile.id == Attendance.student_id)
            .where(Attendance.id == attendance_id)
        ).first()
        if row is None:
            raise NotFound("Attendance record not found", code="ATTENDANCE_NOT_FOUND")
        return _Snapshot(
            id=row.id,
            status=str(row.status),
            student_id=row.student_id,
            classroom_id=row.classroom_id,
            exam_id=row.exam_id,
            exam_status=str(row.exam_status),
            student_name=str(row.full_name or ""),
        )

    def _current_status(self, db: Session, attendance_id: uuid.UUID) -> str:
        return str(db.execute(select(Attendance.status).where(Attendance.id == attendance_id)).scalar_one())

    @staticmethod
    def _rejection(action: AttendanceAction, status: str) -> TransitionRejected:
        if status == "submitted":
            return TransitionRejected("ALREADY_SUBMITTED", status=status, message="Student has already submitted.")
        if action == AttendanceAction.ADMIT:
            notice = "ALREADY_PRESENT" if status == "present" else "ALREADY_ON_BREAK"
        elif action == AttendanceAction.BREAK_START:
            notice = "ALREADY_ON_BREAK" if status == "on_break" else "NOT_PRESENT"
        elif action == AttendanceAction.BREAK_END:
            notice = "NOT_ON_BREAK"
        else:
            notice = "NOT_PRESENT"
        return TransitionRejected(notice, status=status)

    def _admit(self, db: Session, snap: _Snapshot, now: datetime, _reason: str | None) -> TransitionResult:
        if snap.exam_status == "finished" and snap.status == "absent":
            raise TransitionRejected("EXAM_FINISHED", status=snap.status, message="The exam has already finished.")

        # The exam may finish between the snapshot and this statement.
        open_rooms = select(Classroom.id).join(Exam, Exam.id == Classroom.exam_id).where(Exam.status != "finished")
        res = db.execute(
            update(Attendance)
            .where(
                Attendance.id == snap.id,
                Attendance.status == "absent",
                Attendance.classroom_id.in_(open_rooms),
            )
            .values(status="present", check_in_time=func.coalesce(Attendance.check_in_time, now))
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            status = self._current_status(db, snap.id)
            if status == "absent":
                raise TransitionRejected("EXAM_FINISHED", status=status, message="The exam has already finished.")
            raise self._rejection(AttendanceAction.ADMIT, status)
        return TransitionResult(attendance_id=snap.id, status="present", ok=True)

    def _start_break(self, db: Session, snap: _Snapshot, now: datetime, reason: str | None) -> TransitionResult:
        if snap.status != "present":
            raise self._rejection(AttendanceAction.BREAK_START, snap.status)

        # Serialize exit-pass requests per room (no-op on SQLite, which serializes writers anyway).
        db.execute(select(Classroom.id).where(Classroom.id == snap.classroom_id).with_for_update())

        request = ConflictRequest(classroom_id=snap.classroom_id, attendance_id=snap.id)
        conflicts = ConflictValidator(SqlScheduleRepository(db)).check_conflicts(ConflictKind.BREAK_START, request)
        if conflicts:
            raise TransitionRejected(
                "BREAK_LOCKED",
                status=snap.status,
                message=conflicts[0].message,
                conflicts=conflicts,
            )

        # Re-check the room's exit pass in the same statement that claims it.
        other = aliased(Attendance)
        open_break_in_room = (
            select(StudentBreak.id)
            .join(other, other.id == StudentBreak.attendance_id)
            .where(other.classroom_id == snap.classroom_id)
            .where(StudentBreak.return_time.is_(None))
            .exists()
        )
        res = db.execute(
            update(Attendance)
            .where(Attendance.id == snap.id, Attendance.status == "present", ~open_break_in_room)
            .values(status="on_break")
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            status = self._current_status(db, snap.id)
            if status == "present":
                raise TransitionRejected(
                    "BREAK_LOCKED",
                    status=status,
                    message="Another student from this room is already on a break.",
                )
            raise self._rejection(AttendanceAction.BREAK_START, status)

        db.add(
            StudentBreak(
                attendance_id=snap.id,
                exit_time=now,
                reason=(reason or "").strip() or self.default_break_reason,
            )
        )
        db.flush()
        return TransitionResult(attendance_id=snap.id, status="on_break", ok=True)

    def _end_break(self, db: Session, snap: _Snapshot, now: datetime, _reason: str | None) -> TransitionResult:
        res = db.execute(
            update(Attendance)
            .where(Attendance.id == snap.id, Attendance.status == "on_break")
            .values(status="present")
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise self._rejection(AttendanceAction.BREAK_END, self._current_status(db, snap.id))

        latest = (
            db.execute(
                select(StudentBreak)
                .where(StudentBreak.attendance_id == snap.id, StudentBreak.return_time.is_(None))
                .order_by(StudentBreak.exit_time.desc())
                .limit(1)
            )
            .scalars()
            .first()
        )
        if latest is None:
            logger.warning("break_end for attendance_id=%s found no open break; status reset to present", snap.id)
            return TransitionResult(attendance_id=snap.id, status="present", ok=True, anomalous=True)

        latest.return_time = now
        db.flush()
        return TransitionResult(attendance_id=snap.id, status="present", ok=True)

    def _submit(self, db: Session, snap: _Snapshot, now: datetime, _reason: str | None) -> TransitionResult:
        res = db.execute(
            update(Attendance)
            .where(Attendance.id == snap.id, Attendance.status.in_(IN_EXAM_STATUSES))
            .values(status="submitted", check_out_time=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            raise self._rejection(AttendanceAction.SUBMIT, self._current_status(db, snap.id))
        self._close_open_breaks(db, [snap.id], now)
        return TransitionResult(attendance_id=snap.id, status="submitted", ok=True)

    @staticmethod
    def _close_open_breaks(db: Session, attendance_ids: list[uuid.UUID], now: datetime) -> int:
        if not attendance_ids:
            return 0
        res = db.execute(
            update(StudentBreak)
            .where(StudentBreak.attendance_id.in_(attendance_ids), StudentBreak.return_time.is_(None))
            .values(return_time=now)
            .execution_options(synchronize_session=False)
        )
        return int(res.rowcount or 0)

    def _publish_submission(self, snap: _Snapshot, *, trigger: str, now: datetime) -> None:
        self.events.publish(
            SubmissionEvent(
                attendance_id=snap.id,
                student_id=snap.student_id,
                student_name=snap.student_name,
                classroom_id=snap.classroom_id,
                exam_id=snap.exam_id,
                trigger=trigger,
                occurred_at=now,
            )
        )

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------

    def remaining_seconds(
        self,
        db: Session,
        exam_id: uuid.UUID,
        student_id: uuid.UUID,
        *,
        now: datetime | None = None,
    ) -> int:
        exam = db.get(Exam, exam_id)
        if exam is None:
            raise NotFound("Exam not found", code="EXAM_NOT_FOUND")
        profile = db.get(Profile, student_id)
        if profile is None:
            raise NotFound("Student not found", code="STUDENT_NOT_FOUND")
        if str(exam.status) == "finished":
            return 0

        now = ensure_utc(now) if now is not None else self.clock()
        total = total_allotted_minutes(
            exam.original_duration,
            exam.extra_time,
            profile.personal_extension_percent,
        )
        return remaining_seconds(now, exam.original_start_time, total)

    def run_sweep(self, db: Session, *, now: datetime | None = None) -> SweepReport:
        """One enforcement tick: auto-submit expired students, raise long-break alerts."""

        now = ensure_utc(now) if now is not None else self.clock()
        report = SweepReport()

        rows = db.execute(
            select(
                Attendance.id,
                Attendance.status,
                Attendance.student_id,
                Attendance.classroom_id,
                Classroom.exam_id,
                Exam.original_start_time,
                Exam.original_duration,
                Exam.extra_time,
                Profile.full_name,
                Profile.personal_extension_percent,
            )
            .join(Classroom, Classroom.id == Attendance.classroom_id)
            .join(Exam, Exam.id == Classroom.exam_id)
            .outerjoin(Profile, Profile.id == Attendance.student_id)
            .where(Exam.status == "active")
            .where(Attendance.status.in_(IN_EXAM_STATUSES))
        ).all()
        report.checked = len(rows)

        on_break_ids = [r.id for r in rows if str(r.status) == "on_break"]
        open_breaks: dict[uuid.UUID, Any] = {}
        if on_break_ids:
            for brk in db.execute(
                select(StudentBreak.id, StudentBreak.attendance_id, StudentBreak.exit_time)
                .where(StudentBreak.attendance_id.in_(on_break_ids), StudentBreak.return_time.is_(None))
                .order_by(StudentBreak.exit_time.asc())
            ).all():
                # Ascending order: the most recent open break wins.
                open_breaks[brk.attendance_id] = brk
        # End the read transaction; each submission below commits on its own.
        db.rollback()

        for r in rows:
            total = total_allotted_minutes(r.original_duration, r.extra_time, r.personal_extension_percent or 0)
            left = remaining_seconds(now, r.original_start_time, total)
            snap = _Snapshot(
                id=r.id,
                status=str(r.status),
                student_id=r.student_id,
                classroom_id=r.classroom_id,
                exam_id=r.exam_id,
                exam_status="active",
                student_name=str(r.full_name or ""),
            )

            if left <= 0:
                try:
                    applied = self._auto_submit(db, snap, now)
                except SQLAlchemyError:
                    db.rollback()
                    logger.warning("Auto-submit failed for attendance_id=%s; left for manual handling", r.id, exc_info=True)
                    report.failures.append(r.id)
                    continue
                if applied:
                    report.submitted.append(r.id)
                    self.alerts.rearm(r.id)
                    self._publish_submission(snap, trigger="timer", now=now)
                    logger.info("Auto-submitted attendance_id=%s (%s)", r.id, snap.student_name)
                continue

            if snap.status != "on_break":
                self.alerts.rearm(r.id)
                continue

            brk = open_breaks.get(r.id)
            if brk is None:
                continue
            if self.alerts.should_alert(r.id, brk.id, brk.exit_time, now):
                minutes_out = int((now - ensure_utc(brk.exit_time)).total_seconds() // 60)
                report.alerts.append(r.id)
                self.events.publish(
                    BreakAlertEvent(
                        attendance_id=r.id,
                        break_id=brk.id,
                        student_name=snap.student_name,
                        classroom_id=snap.classroom_id,
                        exam_id=snap.exam_id,
                        minutes_out=minutes_out,
                        occurred_at=now,
                    )
                )
                logger.info("Break alert for attendance_id=%s: out for %d minutes", r.id, minutes_out)

        return report

    def _auto_submit(self, db: Session, snap: _Snapshot, now: datetime) -> bool:
        # Guarded on the exam still being active: a finished exam is a barrier.
        active_rooms = select(Classroom.id).join(Exam, Exam.id == Classroom.exam_id).where(Exam.status == "active")
        res = db.execute(
            update(Attendance)
            .where(
                Attendance.id == snap.id,
                Attendance.status.in_(IN_EXAM_STATUSES),
                Attendance.classroom_id.in_(active_rooms),
            )
            .values(status="submitted", check_out_time=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            return False
        self._close_open_breaks(db, [snap.id], now)
        db.commit()
        return True

    # ------------------------------------------------------------------
    # Exam lifecycle
    # ------------------------------------------------------------------

    def finish_exam(self, db: Session, exam_id: uuid.UUID, *, now: datetime | None = None) -> FinishReport:
        """Mark the exam finished and force-close every open session in it."""

        now = ensure_utc(now) if now is not None else self.clock()
        exam = db.get(Exam, exam_id)
        if exam is None:
            raise NotFound("Exam not found", code="EXAM_NOT_FOUND")

        try:
            res = db.execute(
                update(Exam)
                .where(Exam.id == exam_id, Exam.status == "active")
                .values(status="finished")
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                db.rollback()
                current = db.execute(select(Exam.status).where(Exam.id == exam_id)).scalar_one()
                raise StateConflict(f"Exam is {current}; only an active exam can be finished.", code="EXAM_NOT_ACTIVE")

            rooms = select(Classroom.id).where(Classroom.exam_id == exam_id)
            open_rows = db.execute(
                select(Attendance.id, Attendance.status, Attendance.student_id, Attendance.classroom_id, Profile.full_name)
                .outerjoin(Profile, Profile.id == Attendance.student_id)
                .where(Attendance.classroom_id.in_(rooms))
                .where(Attendance.status.in_(IN_EXAM_STATUSES))
            ).all()
            all_in_exam = [a for (a,) in db.execute(select(Attendance.id).where(Attendance.classroom_id.in_(rooms))).all()]
            closed = self._close_open_breaks(db, all_in_exam, now)

            open_ids = [r.id for r in open_rows]
            if open_ids:
                db.execute(
                    update(Attendance)
                    .where(Attendance.id.in_(open_ids), Attendance.status.in_(IN_EXAM_STATUSES))
                    .values(status="submitted", check_out_time=now)
                    .execution_options(synchronize_session=False)
                )
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Finishing exam_id=%s failed", exam_id, exc_info=exc)
            raise PersistenceFailure(f"Could not finish exam {exam_id}; nothing was changed.") from exc

        db.refresh(exam)
        report = FinishReport(exam_id=exam_id, submitted=open_ids, breaks_closed=closed)
        for r in open_rows:
            self.alerts.rearm(r.id)
            self._publish_submission(
                _Snapshot(
                    id=r.id,
                    status=str(r.status),
                    student_id=r.student_id,
                    classroom_id=r.classroom_id,
                    exam_id=exam_id,
                    exam_status="finished",
                    student_name=str(r.full_name or ""),
                ),
                trigger="exam_finished",
                now=now,
            )
        logger.info("Exam %s finished: %d session(s) closed, %d break(s) closed", exam_id, len(open_ids), closed)
        return report


def transition_to_dict(result: TransitionResult) -> dict[str, Any]:
    return {
        "attendance_id": str(result.attendance_id),
        "status": result.status,
        "ok": result.ok,
        "notice": result.notice,
        "anomalous": result.anomalous,
        "conflicts": [c.to_dict() for c in result.conflicts],
    }
