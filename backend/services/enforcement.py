from __future__ import annotations

import logging
import threading
from typing import Callable

from sqlalchemy.orm import Session

from services.attendance_engine import AttendanceTimerEngine, SweepReport


logger = logging.getLogger(__name__)


class EnforcementLoop:
    """Runs the attendance sweep on a fixed interval in a daemon thread."""

    def __init__(
        self,
        engine: AttendanceTimerEngine,
        session_factory: Callable[[], Session],
        *,
        interval_seconds: float = 5.0,
    ) -> None:
        self.engine = engine
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> SweepReport:
        db = self.session_factory()
        try:
            return self.engine.run_sweep(db)
        finally:
            db.close()

    def _worker(self) -> None:
        while not self._stop.is_set():
            try:
                report = self.run_once()
                if report.submitted or report.alerts or report.failures:
                    logger.info(
                        "Sweep: checked=%d submitted=%d alerts=%d failures=%d",
                        report.checked,
                        len(report.submitted),
                        len(report.alerts),
                        len(report.failures),
                    )
            except Exception:
                logger.exception("Enforcement sweep failed; next tick in %.1fs", self.interval_seconds)
            self._stop.wait(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._worker, name="attendance-enforcement", daemon=True)
        self._thread.start()
        logger.info("Attendance enforcement started (every %.1fs)", self.interval_seconds)

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("Attendance enforcement stopped")
