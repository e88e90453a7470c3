from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic.aliases import AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


BACKEND_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=BACKEND_DIR / ".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default=f"sqlite:///{BACKEND_DIR / 'examonitor.db'}",
        validation_alias=AliasChoices("database_url", "DATABASE_URL"),
    )

    # Runtime
    environment: str = Field(default="development", validation_alias=AliasChoices("environment", "ENVIRONMENT"))
    frontend_origin: str = Field(
        default="http://localhost:5173",
        validation_alias=AliasChoices("frontend_origin", "FRONTEND_ORIGIN"),
    )

    # Live exam enforcement
    enforcement_enabled: bool = Field(
        default=True,
        validation_alias=AliasChoices("enforcement_enabled", "ENFORCEMENT_ENABLED"),
    )
    enforcement_interval_seconds: float = Field(
        default=5.0,
        validation_alias=AliasChoices("enforcement_interval_seconds", "ENFORCEMENT_INTERVAL_SECONDS"),
    )
    break_alert_threshold_minutes: int = Field(
        default=15,
        validation_alias=AliasChoices("break_alert_threshold_minutes", "BREAK_ALERT_THRESHOLD_MINUTES"),
    )
    default_break_reason: str = Field(
        default="toilet",
        validation_alias=AliasChoices("default_break_reason", "DEFAULT_BREAK_REASON"),
    )

    # Number of events kept for polling clients.
    event_history_size: int = Field(
        default=500,
        validation_alias=AliasChoices("event_history_size", "EVENT_HISTORY_SIZE"),
    )

    @field_validator("frontend_origin")
    @classmethod
    def _normalize_frontend_origin(cls, v: str) -> str:
        # Starlette CORS expects the Origin to match exactly (no trailing slash).
        return v.strip().rstrip("/")

    @field_validator("environment")
    @classmethod
    def _normalize_environment(cls, v: str) -> str:
        return (v or "development").strip().lower()

    @field_validator("enforcement_interval_seconds")
    @classmethod
    def _validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("ENFORCEMENT_INTERVAL_SECONDS must be > 0")
        return v

    @field_validator("break_alert_threshold_minutes")
    @classmethod
    def _validate_break_threshold(cls, v: int) -> int:
        if v < 1:
            raise ValueError("BREAK_ALERT_THRESHOLD_MINUTES must be >= 1")
        return v

    @field_validator("default_break_reason")
    @classmethod
    def _normalize_break_reason(cls, v: str) -> str:
        return (v or "toilet").strip().lower() or "toilet"

    @field_validator("event_history_size")
    @classmethod
    def _validate_history_size(cls, v: int) -> int:
        return max(1, int(v))


settings = Settings()
