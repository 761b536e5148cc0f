"""
Tests for configuration module.
"""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
from pydantic import ValidationError

from vr.config import Settings, clear_settings_cache, get_settings


class TestSettingsValidation:
    """Tests for Settings validation."""

    def test_settings_loads_from_env(self, mock_env_vars: dict[str, str]) -> None:
        """Test that settings correctly loads from environment variables."""
        settings = get_settings()

        assert settings.GEMINI_API_KEY == "test-fake-gemini-key-1234567890"
        assert settings.DATABASE_PATH == Path(mock_env_vars["DATABASE_PATH"])
        assert settings.QUEUE_DB_PATH == Path(mock_env_vars["QUEUE_DB_PATH"])
        assert settings.LOG_LEVEL == "DEBUG"

    def test_defaults(self) -> None:
        """Test worker and queue defaults."""
        with patch.dict(os.environ, {}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.GEMINI_API_KEY is None
        assert settings.WORKER_CONCURRENCY == 2
        assert settings.JOB_TIMEOUT_SECONDS == 1800
        assert settings.JOB_ATTEMPTS == 3
        assert settings.JOB_BACKOFF_SECONDS == 5.0
        assert settings.KEEP_COMPLETED_SECONDS == 86400
        assert settings.KEEP_COMPLETED_COUNT == 100
        assert settings.KEEP_FAILED_SECONDS == 604800

    def test_lock_must_cover_timeout(self) -> None:
        """Test that a job lock shorter than the timeout is rejected."""
        env_vars = {"JOB_TIMEOUT_SECONDS": "600", "JOB_LOCK_SECONDS": "300"}

        with patch.dict(os.environ, env_vars, clear=True):
            with pytest.raises(ValidationError) as exc_info:
                Settings(_env_file=None)

        assert "JOB_LOCK_SECONDS" in str(exc_info.value)

    def test_concurrency_bounds(self) -> None:
        """Test that worker concurrency must be positive."""
        with patch.dict(os.environ, {"WORKER_CONCURRENCY": "0"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_invalid_log_level(self) -> None:
        """Test that unknown log levels are rejected."""
        with patch.dict(os.environ, {"LOG_LEVEL": "VERBOSE"}, clear=True):
            with pytest.raises(ValidationError):
                Settings(_env_file=None)

    def test_empty_api_key_reads_as_unset(self) -> None:
        """Test the lowercase alias treats an empty key as missing."""
        with patch.dict(os.environ, {"GEMINI_API_KEY": ""}, clear=True):
            settings = Settings(_env_file=None)

        assert settings.gemini_api_key is None


class TestSettingsHelpers:
    """Tests for settings helper methods."""

    def test_redacted_display_hides_key(self, mock_settings: Settings) -> None:
        """Test that the API key is redacted."""
        display = mock_settings.redacted_display()

        assert display["GEMINI_API_KEY"] == "test-fak...7890"
        assert "test-fake-gemini-key-1234567890" not in display.values()
        assert display["WORKER_CONCURRENCY"] == 2

    def test_ensure_directories(self, mock_settings: Settings) -> None:
        """Test that database parent directories are created."""
        mock_settings.ensure_directories()

        assert mock_settings.DATABASE_PATH.parent.is_dir()
        assert mock_settings.QUEUE_DB_PATH.parent.is_dir()

    def test_settings_are_cached(self, mock_env_vars: dict[str, str]) -> None:
        """Test that get_settings returns the cached instance until cleared."""
        first = get_settings()
        assert get_settings() is first

        clear_settings_cache()
        assert get_settings() is not first
