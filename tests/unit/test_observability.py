"""
Unit tests for logging, tracing and configuration.
"""

import json
import logging

import pytest
import structlog

from jobqueue.config import Settings
from jobqueue.observability.logging import (
    get_logger,
    job_log_context,
    setup_logging,
)
from jobqueue.observability.tracing import create_span


@pytest.fixture
def restore_logging():
    """Undo global logging configuration after the test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()


class TestLogging:
    """Tests for structured logging setup."""

    def test_json_output(self, capsys, restore_logging):
        setup_logging(level="INFO", log_format="json")
        with job_log_context("job-1", "email", attempt=2):
            logging.getLogger("jobqueue.test").info("Executing job")
        logging.getLogger("jobqueue.test").info("Worker idle")

        inside, outside = [json.loads(line) for line in capsys.readouterr().out.strip().splitlines()[-2:]]
        assert inside["event"] == "Executing job"
        assert inside["queue"] == "email"
        assert inside["job_id"] == "job-1"
        assert inside["attempt"] == 2
        assert inside["level"] == "info"
        assert outside["event"] == "Worker idle"
        assert "job_id" not in outside

    def test_structlog_logger(self, capsys, restore_logging):
        setup_logging(level="INFO", log_format="json")

        get_logger("jobqueue.test").info("Worker starting", queue="webhook")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "Worker starting"
        assert record["queue"] == "webhook"

    def test_level_filter(self, capsys, restore_logging):
        setup_logging(level="WARNING", log_format="json")

        logging.getLogger("jobqueue.test").info("hidden")

        assert capsys.readouterr().out == ""


class TestTracing:
    """Tests for span helpers without a configured exporter."""

    def test_create_span(self):
        with create_span("enqueue_job", queue="email", job_id=None) as span:
            assert span is not None


class TestSettings:
    """Tests for configuration loading."""

    def test_queue_url_fallback(self):
        settings = Settings(_env_file=None, queue_redis_url=None, redis_url="redis://cache:6379/0")

        assert settings.redis_url_for_queues == "redis://cache:6379/0"

    def test_queue_url_preferred(self):
        settings = Settings(
            _env_file=None,
            queue_redis_url="redis://queue:6379/0",
            redis_url="redis://cache:6379/0",
        )

        assert settings.redis_url_for_queues == "redis://queue:6379/0"

    def test_disabled(self):
        settings = Settings(_env_file=None, queue_redis_url="redis://queue:6379/0", queue_enabled=False)

        assert settings.redis_url_for_queues is None

    def test_from_environment(self, monkeypatch):
        monkeypatch.setenv("QUEUE_CONCURRENCY", "12")
        monkeypatch.setenv("MISSING_HANDLER_FAIL_FAST", "true")

        settings = Settings(_env_file=None)

        assert settings.queue_concurrency == 12
        assert settings.missing_handler_fail_fast is True
