from __future__ import annotations

from fastapi import HTTPException, Request

from services.attendance_engine import AttendanceTimerEngine
from services.events import EventBus


def get_timer_engine(request: Request) -> AttendanceTimerEngine:
    engine = getattr(request.app.state, "timer_engine", None)
    if not isinstance(engine, AttendanceTimerEngine):
        raise HTTPException(status_code=503, detail="TIMER_ENGINE_NOT_READY")
    return engine


def get_event_bus(request: Request) -> EventBus:
    bus = getattr(request.app.state, "event_bus", None)
    if not isinstance(bus, EventBus):
        raise HTTPException(status_code=503, detail="EVENT_BUS_NOT_READY")
    return bus
