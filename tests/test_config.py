"""Unit tests for EngineSettings and the structlog setup."""

from __future__ import annotations

import pytest
import structlog
from pydantic import ValidationError
from structlog.testing import capture_logs

from replaykit.core.config import EngineSettings
from replaykit.core.logging import configure_logging, get_logger


class TestEngineSettings:
    def test_defaults(self):
        settings = EngineSettings(_env_file=None)
        assert settings.max_foreach_concurrency == 16
        assert settings.max_iterations == 1000
        assert settings.max_wait_ms == 120000
        assert settings.stop_barrier_top_timeout_ms == 5000
        assert settings.stop_barrier_subframe_timeout_ms == 1500
        assert settings.stop_barrier_grace_ms == 150

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("REPLAYKIT_MAX_FOREACH_CONCURRENCY", "4")
        monkeypatch.setenv("REPLAYKIT_LOG_JSON", "true")
        settings = EngineSettings(_env_file=None)
        assert settings.max_foreach_concurrency == 4
        assert settings.log_json is True

    def test_concurrency_must_be_positive(self):
        with pytest.raises(ValidationError):
            EngineSettings(_env_file=None, max_foreach_concurrency=0)


class TestLogging:
    def teardown_method(self):
        structlog.reset_defaults()

    def test_configure_json_renderer(self):
        configure_logging("DEBUG", json_format=True)
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.processors.JSONRenderer)

    def test_configure_console_renderer(self):
        configure_logging("INFO")
        processors = structlog.get_config()["processors"]
        assert isinstance(processors[-1], structlog.dev.ConsoleRenderer)

    def test_get_logger_binds_context(self):
        with capture_logs() as logs:
            get_logger("replaykit.test", component="recorder").warning("ping")
        assert logs[0]["component"] == "recorder"
        assert logs[0]["log_level"] == "warning"
