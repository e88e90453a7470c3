from __future__ import annotations

from typing import Any, Sequence


class ServiceError(Exception):
    code: str = "SERVICE_ERROR"
    status_code: int = 400

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationConflict(ServiceError):
    """A scheduling mutation collides with committed resources. Never auto-retried."""

    code = "SCHEDULING_CONFLICT"
    status_code = 409

    def __init__(self, reasons: Sequence[str], *, conflicts: Sequence[Any] = (), code: str | None = None) -> None:
        super().__init__("; ".join(reasons) or "Scheduling conflict", code=code)
        self.reasons = list(reasons)
        self.conflicts = list(conflicts)


class NotFound(ServiceError):
    code = "NOT_FOUND"
    status_code = 404


class TransitionRejected(ServiceError):
    """Out-of-order attendance transition; handled as a benign no-op by the engine."""

    code = "TRANSITION_REJECTED"
    status_code = 200

    def __init__(
        self,
        notice: str,
        *,
        status: str | None = None,
        message: str | None = None,
        conflicts: Sequence[Any] = (),
    ) -> None:
        super().__init__(message or notice, code=notice)
        self.notice = notice
        self.status = status
        self.conflicts = list(conflicts)


class StateConflict(ServiceError):
    """Requested lifecycle change does not apply to the record's current state."""

    code = "INVALID_STATE"
    status_code = 409


class PersistenceFailure(ServiceError):
    """The store failed mid-operation; nothing was applied and the caller may retry by hand."""

    code = "PERSISTENCE_FAILURE"
    status_code = 503
    retryable = True
