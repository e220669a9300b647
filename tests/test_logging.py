"""Tests for structured logging configuration."""

import json
import logging
import sys
from unittest.mock import patch

import pytest

from bucketlimit.app.core.logging import (
    JSONFormatter,
    ContextFilter,
    get_logger,
    get_logging_config,
    get_log_context,
    setup_logging,
)


def make_record(msg="Test message", level=logging.INFO, exc_info=None):
    return logging.LogRecord(
        name="test",
        level=level,
        pathname="test.py",
        lineno=1,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )


@pytest.fixture
def restore_logging():
    """Restore logger handlers touched by setup_logging()."""
    root = logging.getLogger()
    package_logger = logging.getLogger("bucketlimit")
    saved = (
        root.handlers[:],
        root.level,
        package_logger.handlers[:],
        package_logger.level,
        package_logger.propagate,
    )
    yield
    root.handlers[:] = saved[0]
    root.setLevel(saved[1])
    package_logger.handlers[:] = saved[2]
    package_logger.setLevel(saved[3])
    package_logger.propagate = saved[4]


class TestJSONFormatter:
    """Test JSON formatter for structured logging."""

    def test_basic_json_format(self):
        """Test basic JSON formatting."""
        data = json.loads(JSONFormatter().format(make_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "test"
        assert data["message"] == "Test message"
        assert "timestamp" in data
        assert data["source"]["file"] == "test.py"
        assert data["source"]["line"] == 1

    def test_json_format_with_context(self):
        """Test limiter context fields are promoted to the top level."""
        record = make_record("Commit conflict")
        record.identifier = "user-1"
        record.attempt = 2
        record.outcome = "conflict"
        record.store = "redis"

        data = json.loads(JSONFormatter().format(record))

        assert data["identifier"] == "user-1"
        assert data["attempt"] == 2
        assert data["outcome"] == "conflict"
        assert data["store"] == "redis"
        assert "extra" not in data

    def test_json_format_with_extra_fields(self):
        """Test non-context fields are nested under extra."""
        record = make_record("Request rate limited")
        record.path = "/v1/chat"

        data = json.loads(JSONFormatter().format(record))

        assert data["extra"]["path"] == "/v1/chat"

    def test_none_context_fields_omitted(self):
        record = make_record()
        ContextFilter().filter(record)

        data = json.loads(JSONFormatter().format(record))

        assert "identifier" not in data
        assert "extra" not in data

    def test_json_format_with_exception(self):
        """Test JSON formatting with exception info."""
        try:
            raise ValueError("Test error")
        except ValueError:
            record = make_record("Error occurred", logging.ERROR, sys.exc_info())

        data = json.loads(JSONFormatter().format(record))

        exception_text = "".join(data["exception"])
        assert "ValueError" in exception_text
        assert "Test error" in exception_text


class TestContextFilter:
    """Test context filter for adding default fields."""

    def test_adds_default_fields(self):
        record = make_record()

        assert ContextFilter().filter(record) is True
        for field in JSONFormatter.CONTEXT_FIELDS:
            assert getattr(record, field) is None

    def test_preserves_existing_values(self):
        record = make_record()
        record.identifier = "user-1"

        ContextFilter().filter(record)

        assert record.identifier == "user-1"


class TestGetLoggingConfig:
    """Test logging configuration generation."""

    def test_default_text_format(self):
        with patch("bucketlimit.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "INFO"
            mock_settings.debug = False

            config = get_logging_config()

        assert "json" not in config["formatters"]
        assert config["handlers"]["console"]["formatter"] == "standard"
        assert config["loggers"]["bucketlimit"]["level"] == "INFO"

    def test_debug_setting_lowers_default_level(self):
        with patch("bucketlimit.app.core.logging.settings") as mock_settings:
            mock_settings.log_format = "text"
            mock_settings.log_level = "WARNING"
            mock_settings.debug = True

            config = get_logging_config()
            explicit = get_logging_config(log_level="ERROR")

        assert config["handlers"]["console"]["level"] == "DEBUG"
        assert config["loggers"]["bucketlimit"]["level"] == "DEBUG"
        assert explicit["handlers"]["console"]["level"] == "ERROR"

    def test_structured_format(self):
        config = get_logging_config(log_level="debug", log_format="structured")

        assert config["handlers"]["console"]["formatter"] == "structured"
        assert config["handlers"]["console"]["level"] == "DEBUG"

    def test_json_format(self):
        config = get_logging_config(log_level="WARNING", log_format="JSON")

        assert config["formatters"]["json"]["()"] == "bucketlimit.app.core.logging.JSONFormatter"
        assert config["handlers"]["console"]["formatter"] == "json"

    def test_context_filter_added(self):
        config = get_logging_config()

        assert "context" in config["filters"]
        assert "context" in config["handlers"]["console"]["filters"]


class TestGetLogger:
    """Test get_logger function."""

    def test_get_logger_default_name(self):
        assert get_logger().name == "bucketlimit"

    def test_get_logger_custom_name(self):
        assert get_logger("bucketlimit.stores").name == "bucketlimit.stores"


class TestGetLogContext:
    """Test get_log_context helper function."""

    def test_basic_context(self):
        context = get_log_context(identifier="user-1", attempt=1, outcome="allowed")
        assert context == {"identifier": "user-1", "attempt": 1, "outcome": "allowed"}

    def test_context_filters_none(self):
        context = get_log_context(identifier="user-1", attempt=None, cost=None)
        assert context == {"identifier": "user-1"}

    def test_context_with_extra(self):
        context = get_log_context(identifier="user-1", cost=3, store="memory")
        assert context["cost"] == 3
        assert context["store"] == "memory"


class TestIntegration:
    """Integration tests for logging system."""

    def test_json_logging_output(self, capsys, restore_logging):
        """Test actual JSON logging output."""
        setup_logging(log_level="INFO", log_format="json")
        logger = get_logger("bucketlimit.integration")

        logger.info(
            "Integration test",
            extra=get_log_context(identifier="user-1", attempt=1, outcome="allowed"),
        )

        data = json.loads(capsys.readouterr().out.strip())

        assert data["level"] == "INFO"
        assert data["logger"] == "bucketlimit.integration"
        assert data["message"] == "Integration test"
        assert data["identifier"] == "user-1"
        assert data["outcome"] == "allowed"

    def test_redis_logger_quieted(self, restore_logging):
        setup_logging(log_level="DEBUG", log_format="text")
        assert logging.getLogger("redis").level == logging.WARNING
