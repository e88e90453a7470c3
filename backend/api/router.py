from __future__ import annotations

from fastapi import APIRouter

from api.routes import attendance, classrooms, conflicts, events, exams


api_router = APIRouter()
api_router.include_router(exams.router, prefix="/exams", tags=["exams"])
api_router.include_router(classrooms.router, prefix="/classrooms", tags=["classrooms"])
api_router.include_router(attendance.router, prefix="/attendance", tags=["attendance"])
api_router.include_router(conflicts.router, prefix="/conflicts", tags=["conflicts"])
api_router.include_router(events.router, prefix="/events", tags=["events"])
