"""Tests for devcheck.common.logging_setup module."""

import json
import logging
import sys

import pytest
from rich.logging import RichHandler

from devcheck.common.config import LoggingSettings
from devcheck.common.logging_setup import JsonFormatter, configure_logging


@pytest.fixture(autouse=True)
def restore_logger():
    """Leave the devcheck logger as we found it."""
    logger = logging.getLogger("devcheck")
    handlers, level, propagate = list(logger.handlers), logger.level, logger.propagate
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    for handler in handlers:
        logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = propagate


def _record(msg="Launched container web-1", exc_info=None, **extra):
    record = logging.LogRecord("devcheck.launcher", logging.INFO, __file__, 10, msg, None, exc_info)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJsonFormatter:
    """Tests for JsonFormatter."""

    def test_basic_fields(self):
        """Test the standard fields."""
        data = json.loads(JsonFormatter().format(_record()))
        assert data["level"] == "info"
        assert data["logger"] == "devcheck.launcher"
        assert data["message"] == "Launched container web-1"
        assert data["timestamp"].endswith("+00:00")

    def test_extra_fields(self):
        """Test that extra attributes are included."""
        data = json.loads(JsonFormatter().format(_record(container_id="abc123")))
        assert data["container_id"] == "abc123"

    def test_exception(self):
        """Test that exception info is serialized."""
        try:
            raise ValueError("bad value")
        except ValueError:
            record = _record(exc_info=sys.exc_info())
        data = json.loads(JsonFormatter().format(record))
        assert data["error.type"] == "ValueError"
        assert data["error.message"] == "bad value"
        assert "Traceback" in data["error.stack_trace"]


class TestConfigureLogging:
    """Tests for configure_logging."""

    def test_console_handler(self):
        """Test the default rich console handler."""
        logger = configure_logging(LoggingSettings(log_level="WARNING"))
        assert logger.level == logging.WARNING
        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0], RichHandler)
        assert logger.propagate is False

    def test_json_handler(self):
        """Test JSON-lines output."""
        logger = configure_logging(LoggingSettings(log_format="json"))
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)

    def test_reconfigure_replaces_handlers(self):
        """Test that a second call does not stack handlers."""
        configure_logging(LoggingSettings())
        logger = configure_logging(LoggingSettings())
        assert len(logger.handlers) == 1

    def test_log_file(self, tmp_path):
        """Test that a log file handler is added and written."""
        log_file = tmp_path / "logs" / "devcheck.log"
        logger = configure_logging(LoggingSettings(log_level="INFO", log_file=log_file))
        assert len(logger.handlers) == 2

        logging.getLogger("devcheck.validator").info("Validation finished")
        for handler in logger.handlers:
            handler.flush()
        assert "Validation finished" in log_file.read_text()
        logger.handlers[1].close()
