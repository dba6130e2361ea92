"""Environment-based settings for the live quiz server."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from live_quiz.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from live_quiz.constants.session_constants import (
    AUTO_ADVANCE_SETTLE_SECONDS,
    GUEST_COOKIE_MAX_AGE_SECONDS,
    JOIN_CODE_MAX_ATTEMPTS,
    KICK_GRACE_SECONDS,
    MIN_QUESTION_DISPLAY_SECONDS,
    POLL_INTERVAL_SECONDS,
)


class Settings(BaseSettings):
    """Runtime settings, overridable through ``LIVE_QUIZ_*`` variables."""

    model_config = SettingsConfigDict(env_prefix="LIVE_QUIZ_", env_file=".env", extra="ignore")

    # Server
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    cookie_secure: bool = False

    # Session timing
    poll_interval_seconds: float = Field(default=POLL_INTERVAL_SECONDS, gt=0)
    auto_advance_settle_seconds: float = Field(default=AUTO_ADVANCE_SETTLE_SECONDS, ge=0)
    min_question_display_seconds: float = Field(default=MIN_QUESTION_DISPLAY_SECONDS, ge=0)
    kick_grace_seconds: float = Field(default=KICK_GRACE_SECONDS, ge=0)

    # Identity and codes
    guest_cookie_max_age_seconds: int = Field(default=GUEST_COOKIE_MAX_AGE_SECONDS, gt=0)
    code_max_attempts: int = Field(default=JOIN_CODE_MAX_ATTEMPTS, gt=0)

    # Quiz content loaded into the catalog at startup
    quiz_file: Path | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
