from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Callable

from services.timing import utcnow


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmissionEvent:
    attendance_id: uuid.UUID
    student_id: uuid.UUID
    student_name: str
    classroom_id: uuid.UUID
    exam_id: uuid.UUID | None
    # operator | timer | exam_finished
    trigger: str
    occurred_at: datetime = field(default_factory=utcnow)

    kind = "submission"


@dataclass(frozen=True)
class BreakAlertEvent:
    attendance_id: uuid.UUID
    break_id: uuid.UUID
    student_name: str
    classroom_id: uuid.UUID
    exam_id: uuid.UUID | None
    minutes_out: int
    occurred_at: datetime = field(default_factory=utcnow)

    kind = "break_alert"


Event = SubmissionEvent | BreakAlertEvent
Subscriber = Callable[[int, Event], None]


def event_to_dict(seq: int, event: Event) -> dict[str, Any]:
    payload = {k: (str(v) if isinstance(v, uuid.UUID) else v) for k, v in asdict(event).items()}
    payload["occurred_at"] = event.occurred_at.isoformat()
    return {"seq": seq, "kind": event.kind, **payload}


class EventBus:
    """In-process fan-out of submission and break-alert events.

    Keeps a bounded history so polling clients can catch up with ``since``.
    Delivery beyond this process is left to subscribers.
    """

    def __init__(self, *, history_size: int = 500) -> None:
        self._lock = threading.Lock()
        self._history: deque[tuple[int, Event]] = deque(maxlen=history_size)
        self._subscribers: list[Subscriber] = []
        self._seq = 0

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._subscribers:
                    self._subscribers.remove(callback)

        return _unsubscribe

    def publish(self, event: Event) -> int:
        with self._lock:
            self._seq += 1
            seq = self._seq
            self._history.append((seq, event))
            subscribers = list(self._subscribers)

        for callback in subscribers:
            try:
                callback(seq, event)
            except Exception:
                logger.exception("Event subscriber failed for %s #%d", event.kind, seq)
        return seq

    def since(self, seq: int = 0, *, limit: int | None = None) -> list[tuple[int, Event]]:
        with self._lock:
            items = [(s, e) for s, e in self._history if s > seq]
        if limit is not None:
            items = items[:limit]
        return items

    @property
    def last_seq(self) -> int:
        with self._lock:
            return self._seq
