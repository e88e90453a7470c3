from __future__ import annotations

import threading
import uuid
from datetime import datetime, timedelta

from services.timing import ensure_utc


class BreakAlertTracker:
    """Remembers which break episode already produced its long-break alert.

    Keyed by attendance id; the entry holds the break id that was alerted and is
    cleared when the student returns, which re-arms the next episode.
    """

    def __init__(self, *, threshold: timedelta = timedelta(minutes=15)) -> None:
        self.threshold = threshold
        self._alerted: dict[uuid.UUID, uuid.UUID] = {}
        self._lock = threading.Lock()

    def is_armed(self, attendance_id: uuid.UUID) -> bool:
        with self._lock:
            return attendance_id not in self._alerted

    def should_alert(self, attendance_id: uuid.UUID, break_id: uuid.UUID, exit_time: datetime, now: datetime) -> bool:
        """True exactly once per break episode, once it has run past the threshold."""

        if ensure_utc(now) - ensure_utc(exit_time) <= self.threshold:
            return False
        with self._lock:
            if self._alerted.get(attendance_id) == break_id:
                return False
            self._alerted[attendance_id] = break_id
            return True

    def rearm(self, attendance_id: uuid.UUID) -> None:
        with self._lock:
            self._alerted.pop(attendance_id, None)

    def clear(self) -> None:
        with self._lock:
            self._alerted.clear()
