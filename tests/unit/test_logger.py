"""Unit tests for structured logging."""

import logging
from pathlib import Path

import pytest
import structlog

from aaaa_reconciler.observability.logger import (
    LogContext,
    _context_processor,
    bind_record_context,
    clear_all_context,
    configure_logging,
    current_context,
    get_log_level,
)


class TestLoggingConfiguration:
    """Test logging configuration functions."""

    def test_configure_logging_defaults(self):
        """Test configure_logging with default parameters."""
        configure_logging()

        assert logging.getLogger().level == logging.INFO
        assert structlog.get_logger("test") is not None

    @pytest.mark.parametrize("level", ["DEBUG", "INFO", "WARNING", "ERROR"])
    def test_configure_logging_levels(self, level):
        configure_logging(level=level)

        assert logging.getLogger().level == getattr(logging, level)

    def test_httpx_quieted(self):
        """httpx request lines stay hidden below WARNING."""
        configure_logging(level="DEBUG")

        assert logging.getLogger("httpx").level == logging.WARNING

    def test_configure_logging_with_file(self, tmp_path: Path):
        """Test configure_logging writes to a nested log file."""
        log_file = tmp_path / "nested" / "reconcile.log"

        configure_logging(level="INFO", json_logs=True, log_file=log_file)
        structlog.get_logger("test").info("file message", record="web")

        content = log_file.read_text()
        assert "file message" in content
        assert '"record": "web"' in content

    def test_invalid_level_defaults_to_info(self):
        assert get_log_level("LOUD") == logging.INFO
        assert get_log_level("debug") == logging.DEBUG


class TestContextManagement:
    """Test logging context management."""

    def setup_method(self):
        clear_all_context()

    def test_log_context_nesting(self):
        with LogContext(record="web"):
            with LogContext(fqdn="web.example.com"):
                assert current_context() == {"record": "web", "fqdn": "web.example.com"}
            assert current_context() == {"record": "web"}
        assert current_context() == {}

    def test_bind_record_context_skips_missing_values(self):
        with bind_record_context(None, "web.example.com"):
            assert current_context() == {"fqdn": "web.example.com"}

    def test_context_processor_does_not_override_explicit_keys(self):
        with bind_record_context("web", "web.example.com"):
            event = _context_processor(None, "info", {"event": "x", "record": "explicit"})

        assert event["record"] == "explicit"
        assert event["fqdn"] == "web.example.com"

    def test_clear_all_context(self):
        with LogContext(record="web"):
            clear_all_context()
            assert current_context() == {}
