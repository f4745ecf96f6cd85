"""Tests for the logging setup."""

import json
import logging

import structlog

from src.logging_config import CorrelationJsonFormatter, add_correlation_id, configure_logging
from src.utils.context import correlation_scope


class TestLoggingConfig:
    """Test suite for configure_logging and its processors."""

    def setup_method(self):
        """Save the root logger state."""
        self.handlers = list(logging.root.handlers)
        self.level = logging.root.level

    def teardown_method(self):
        logging.root.handlers = self.handlers
        logging.root.setLevel(self.level)
        structlog.reset_defaults()

    def test_json_records_carry_correlation_id(self):
        """Test that JSON output includes service fields and the correlation id."""
        configure_logging("debug", "json")
        formatter = logging.root.handlers[0].formatter
        record = logging.LogRecord("dispatch", logging.INFO, __file__, 1, "assigned", None, None)

        with correlation_scope("corr-log"):
            payload = json.loads(formatter.format(record))

        assert isinstance(formatter, CorrelationJsonFormatter)
        assert logging.root.level == logging.DEBUG
        assert payload["message"] == "assigned"
        assert payload["correlation_id"] == "corr-log"
        assert payload["level"] == "INFO"

    def test_console_format(self):
        """Test that any other format falls back to plain text."""
        configure_logging("warning", "console")

        assert not isinstance(logging.root.handlers[0].formatter, CorrelationJsonFormatter)
        assert logging.getLogger("kombu").level == logging.WARNING

    def test_processor_keeps_explicit_correlation_id(self):
        """Test that an id already on the entry is not overwritten."""
        with correlation_scope("ambient"):
            stamped = add_correlation_id(None, "info", {"event": "x"})
            explicit = add_correlation_id(None, "info", {"event": "x", "correlation_id": "given"})

        assert stamped["correlation_id"] == "ambient"
        assert explicit["correlation_id"] == "given"
