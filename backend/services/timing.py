"""Exam window arithmetic shared by conflict checks and the attendance timer.

Everything here is pure: callers pass ``now`` explicitly so countdowns and
deadlines can be evaluated without a running clock.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class ExamWindow:
    """Half-open ``[start, end)`` interval during which an exam session is live."""

    start: datetime | None
    end: datetime | None

    @classmethod
    def for_exam(cls, start: datetime | None, duration_minutes: int | None, extra_minutes: int | None) -> "ExamWindow":
        start = ensure_utc(start)
        if start is None:
            return cls(start=None, end=None)
        total = int(duration_minutes or 0) + int(extra_minutes or 0)
        return cls(start=start, end=start + timedelta(minutes=total))

    @property
    def is_complete(self) -> bool:
        return self.start is not None and self.end is not None

    def overlaps(self, other: "ExamWindow") -> bool:
        if not self.is_complete or not other.is_complete:
            return False
        return self.start < other.end and other.start < self.end


def overlaps(a: ExamWindow, b: ExamWindow) -> bool:
    return a.overlaps(b)


def total_allotted_minutes(duration_minutes: int, extra_minutes: int, extension_percent: float = 0) -> float:
    """Base duration + session-wide extra time + the student's personal extension."""

    duration = float(duration_minutes or 0)
    return duration + float(extra_minutes or 0) + duration * (float(extension_percent or 0) / 100.0)


def personal_deadline(
    start: datetime,
    duration_minutes: int,
    extra_minutes: int,
    extension_percent: float = 0,
) -> datetime:
    minutes = total_allotted_minutes(duration_minutes, extra_minutes, extension_percent)
    return ensure_utc(start) + timedelta(minutes=minutes)


def remaining_seconds(now: datetime, start: datetime, total_minutes: float) -> int:
    """Seconds left until ``start + total_minutes``; 0 from the deadline onwards.

    Rounded up so that the countdown only shows 0 once the deadline has passed.
    """

    deadline = ensure_utc(start) + timedelta(minutes=total_minutes)
    left = (deadline - ensure_utc(now)).total_seconds()
    if left <= 0:
        return 0
    return int(math.ceil(left))


def format_countdown(seconds: int) -> str:
    if seconds <= 0:
        return "00:00:00"
    hrs, rem = divmod(int(seconds), 3600)
    mins, secs = divmod(rem, 60)
    return f"{hrs:02d}:{mins:02d}:{secs:02d}"
