from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path

from core.config import BACKEND_DIR


LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s %(message)s"

# Loggers whose records also go to the live-exam log in production.
LIVE_EXAM_LOGGERS = ("services.attendance_engine", "services.enforcement")


def _rotating(path: Path, level: int, formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(path, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(*, environment: str, logs_dir: Path | None = None) -> None:
    """Configure application logging once per process.

    Development logs everything at DEBUG to the console. Production logs at INFO
    to the console and to ``logs/examonitor.log``; transitions, sweeps and break
    alerts are additionally kept in ``logs/live_exam.log`` so a session can be
    reconstructed after the fact.
    """

    root = logging.getLogger()
    if root.handlers:
        return

    env = (environment or "development").lower().strip()
    production = env == "production"
    level = logging.INFO if production else logging.DEBUG
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    console = logging.StreamHandler()
    console.setLevel(level)
    console.setFormatter(formatter)
    handlers: list[logging.Handler] = [console]

    if production:
        target = Path(logs_dir or Path(BACKEND_DIR) / "logs")
        target.mkdir(parents=True, exist_ok=True)
        handlers.append(_rotating(target / "examonitor.log", level, formatter))

        live = _rotating(target / "live_exam.log", logging.INFO, formatter)
        for name in LIVE_EXAM_LOGGERS:
            logging.getLogger(name).addHandler(live)

    logging.basicConfig(level=level, handlers=handlers)

    logging.getLogger("uvicorn.access").setLevel(logging.INFO if production else logging.WARNING)
    # Statement echo would drown the per-tick sweep output.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
