from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import JSONResponse

from sqlalchemy import text
from sqlalchemy.exc import OperationalError as SAOperationalError

from api.router import api_router
from core.config import settings
from core.database import DatabaseUnavailableError, ENGINE, SessionLocal, init_db, is_transient_db_connectivity_error
from core.logging import setup_logging
from services.attendance_engine import AttendanceTimerEngine
from services.break_alerts import BreakAlertTracker
from services.enforcement import EnforcementLoop
from services.errors import PersistenceFailure, ServiceError, ValidationConflict
from services.events import EventBus


logger = logging.getLogger(__name__)


def _database_unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"code": "DATABASE_UNAVAILABLE", "message": "Database temporarily unavailable. Please retry."},
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_db()

    bus = EventBus(history_size=settings.event_history_size)
    engine = AttendanceTimerEngine(
        events=bus,
        alerts=BreakAlertTracker(threshold=timedelta(minutes=settings.break_alert_threshold_minutes)),
        default_break_reason=settings.default_break_reason,
    )
    loop = EnforcementLoop(engine, SessionLocal, interval_seconds=settings.enforcement_interval_seconds)

    app.state.event_bus = bus
    app.state.timer_engine = engine
    app.state.enforcement = loop

    if settings.enforcement_enabled:
        loop.start()
    else:
        logger.info("Attendance enforcement disabled by configuration")
    try:
        yield
    finally:
        loop.stop()


def create_app() -> FastAPI:
    setup_logging(environment=settings.environment)
    is_production = settings.environment.lower() == "production"
    app = FastAPI(
        title="Exam Monitor API",
        version="0.1.0",
        docs_url=None if is_production else "/docs",
        redoc_url=None if is_production else "/redoc",
        openapi_url=None if is_production else "/openapi.json",
        lifespan=lifespan,
    )

    @app.exception_handler(ServiceError)
    def _service_error(_request, exc: ServiceError):
        content: dict = {"code": exc.code, "message": exc.message}
        if isinstance(exc, ValidationConflict):
            content["reasons"] = exc.reasons
            content["conflicts"] = [c.to_dict() for c in exc.conflicts]
        if isinstance(exc, PersistenceFailure):
            logger.warning("Persistence failure (%s): %s", exc.code, exc.message, exc_info=exc.__cause__)
            content["retryable"] = exc.retryable
        return JSONResponse(status_code=exc.status_code, content=content)

    @app.exception_handler(DatabaseUnavailableError)
    def _db_unavailable(_request, exc: DatabaseUnavailableError):
        logger.warning("Database unavailable (503)", exc_info=exc)
        return _database_unavailable()

    @app.exception_handler(SAOperationalError)
    def _sqlalchemy_operational_error(_request, exc: SAOperationalError):
        if is_transient_db_connectivity_error(exc):
            logger.warning("Database transient connectivity error (503)", exc_info=exc)
            return _database_unavailable()
        logger.error("Database operation failed", exc_info=exc)
        return JSONResponse(status_code=500, content={"code": "DATABASE_ERROR", "message": "Database operation failed."})

    allow_origins = [settings.frontend_origin]
    allow_origin_regex = None
    if not is_production:
        # Dev-friendly: allow the configured origin and any localhost port.
        allow_origins.extend(["http://localhost:5173", "http://127.0.0.1:5173"])
        allow_origin_regex = r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$"

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allow_origins,
        allow_origin_regex=allow_origin_regex,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    def health() -> dict:
        # Always respond; reflect DB availability without crashing.
        db_status = "ok"
        try:
            with ENGINE.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SAOperationalError:
            db_status = "down"

        enforcement = getattr(app.state, "enforcement", None)
        return {
            "app": "ok",
            "database": db_status,
            "enforcement": "running" if enforcement is not None and enforcement.running else "stopped",
        }

    app.include_router(api_router, prefix="/api")
    return app


app = create_app()
