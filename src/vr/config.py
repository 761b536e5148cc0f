"""
Configuration management using pydantic-settings.

Loads configuration from environment variables and .env files.
Validates limits and provides typed access to settings.
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Required for research:
        GEMINI_API_KEY: Google AI Studio key used for grounded research

    Optional:
        MODEL_RESEARCH / MODEL_SYNTHESIS: Gemini model names per step
        DATABASE_PATH: SQLite file for frameworks, tasks, jobs and reports
        QUEUE_DB_PATH: SQLite file for the research job queue
        WORKER_CONCURRENCY: Maximum research jobs running at once
        JOB_TIMEOUT_SECONDS: Default wall-clock limit per research run
        JOB_ATTEMPTS / JOB_BACKOFF_SECONDS: Queue retry policy
        KEEP_*: Queue retention policy
        LOG_LEVEL / LOG_FILE: Logging
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM
    GEMINI_API_KEY: str | None = Field(default=None, description="Google Gemini API key")
    MODEL_RESEARCH: str = Field(
        default="gemini-2.0-flash",
        description="Model for grounded research stages",
    )
    MODEL_SYNTHESIS: str = Field(
        default="gemini-2.0-flash",
        description="Model for structured report synthesis",
    )
    MAX_OUTPUT_TOKENS: int = Field(
        default=8192, ge=256, description="Maximum output tokens per model call"
    )

    # Storage
    DATABASE_PATH: Path = Field(
        default=Path("data/validation.db"),
        description="Validation store database",
    )
    QUEUE_DB_PATH: Path = Field(
        default=Path("data/queue.db"),
        description="Research job queue database",
    )

    # Worker
    WORKER_CONCURRENCY: int = Field(
        default=2, ge=1, le=16, description="Maximum concurrent research jobs"
    )
    WORKER_POLL_INTERVAL: float = Field(
        default=1.0, gt=0.0, description="Seconds between queue polls when idle"
    )
    JOB_TIMEOUT_SECONDS: float = Field(
        default=30 * 60, gt=0.0, description="Default research timeout in seconds"
    )
    JOB_LOCK_SECONDS: float = Field(
        default=35 * 60,
        gt=0.0,
        description="Lease on an active job before it counts as stalled",
    )

    # Queue retry and retention
    JOB_ATTEMPTS: int = Field(default=3, ge=1, le=20, description="Attempts per job")
    JOB_BACKOFF_SECONDS: float = Field(
        default=5.0, ge=0.0, description="Initial exponential backoff delay"
    )
    KEEP_COMPLETED_SECONDS: int = Field(
        default=24 * 60 * 60, ge=0, description="Retention for completed jobs"
    )
    KEEP_COMPLETED_COUNT: int = Field(
        default=100, ge=0, description="Maximum retained completed jobs"
    )
    KEEP_FAILED_SECONDS: int = Field(
        default=7 * 24 * 60 * 60, ge=0, description="Retention for failed jobs"
    )

    # Logging
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    LOG_FILE: Path | None = Field(default=None, description="JSON log file")

    @property
    def gemini_api_key(self) -> str | None:
        """Get Gemini API key (lowercase alias)."""
        return self.GEMINI_API_KEY or None

    @property
    def model_research(self) -> str:
        """Get research model (lowercase alias)."""
        return self.MODEL_RESEARCH

    @property
    def model_synthesis(self) -> str:
        """Get synthesis model (lowercase alias)."""
        return self.MODEL_SYNTHESIS

    @model_validator(mode="after")
    def validate_lock_covers_timeout(self) -> Settings:
        """A job lease shorter than the run timeout would redeliver live jobs."""
        if self.JOB_LOCK_SECONDS < self.JOB_TIMEOUT_SECONDS:
            raise ValueError(
                "JOB_LOCK_SECONDS must be greater than or equal to JOB_TIMEOUT_SECONDS"
            )
        return self

    def ensure_directories(self) -> None:
        """Create parent directories for the database files."""
        self.DATABASE_PATH.parent.mkdir(parents=True, exist_ok=True)
        self.QUEUE_DB_PATH.parent.mkdir(parents=True, exist_ok=True)

    def redacted_display(self) -> dict[str, str | int | float | None]:
        """Return settings with API keys redacted for display."""
        def redact(value: str | None) -> str | None:
            if not value:
                return None
            return f"{value[:8]}...{value[-4:]}" if len(value) > 12 else "***"

        return {
            "GEMINI_API_KEY": redact(self.GEMINI_API_KEY),
            "MODEL_RESEARCH": self.MODEL_RESEARCH,
            "MODEL_SYNTHESIS": self.MODEL_SYNTHESIS,
            "MAX_OUTPUT_TOKENS": self.MAX_OUTPUT_TOKENS,
            "DATABASE_PATH": str(self.DATABASE_PATH),
            "QUEUE_DB_PATH": str(self.QUEUE_DB_PATH),
            "WORKER_CONCURRENCY": self.WORKER_CONCURRENCY,
            "WORKER_POLL_INTERVAL": self.WORKER_POLL_INTERVAL,
            "JOB_TIMEOUT_SECONDS": self.JOB_TIMEOUT_SECONDS,
            "JOB_LOCK_SECONDS": self.JOB_LOCK_SECONDS,
            "JOB_ATTEMPTS": self.JOB_ATTEMPTS,
            "JOB_BACKOFF_SECONDS": self.JOB_BACKOFF_SECONDS,
            "KEEP_COMPLETED_SECONDS": self.KEEP_COMPLETED_SECONDS,
            "KEEP_COMPLETED_COUNT": self.KEEP_COMPLETED_COUNT,
            "KEEP_FAILED_SECONDS": self.KEEP_FAILED_SECONDS,
            "LOG_LEVEL": self.LOG_LEVEL,
            "LOG_FILE": str(self.LOG_FILE) if self.LOG_FILE else None,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings singleton.

    Returns:
        Settings instance loaded from environment.

    Raises:
        ValidationError: If settings are invalid.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache (useful for testing)."""
    get_settings.cache_clear()
