"""Tests for logging setup and the JSON formatter."""

import json
import logging
import sys

import pytest

from birthbook.infrastructure.logging_config import StructuredFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root_logger = logging.getLogger()
    handlers, level = list(root_logger.handlers), root_logger.level
    yield root_logger
    root_logger.handlers[:] = handlers
    root_logger.setLevel(level)


def _record(message="Rejected record", **extra):
    record = logging.LogRecord("birthbook.test", logging.WARNING, __file__, 10, message, None, None)
    for name, value in extra.items():
        setattr(record, name, value)
    return record


class TestStructuredFormatter:
    """Test JSON log lines."""

    def test_basic_fields(self):
        data = json.loads(StructuredFormatter().format(_record()))

        assert data["level"] == "WARNING"
        assert data["logger"] == "birthbook.test"
        assert data["message"] == "Rejected record"
        assert "timestamp" in data

    def test_context_fields(self):
        record = _record(position=4, trace_id="P1", error_type="ConstraintViolationError", field="gemela")

        data = json.loads(StructuredFormatter().format(record))

        assert data["position"] == 4
        assert data["trace_id"] == "P1"
        assert data["error_type"] == "ConstraintViolationError"
        assert data["field"] == "gemela"
        assert "source" not in data

    def test_exception(self):
        try:
            raise ValueError("bad value")
        except ValueError:
            record = logging.LogRecord(
                "birthbook.test", logging.ERROR, __file__, 10, "failed", None, exc_info=sys.exc_info()
            )

        data = json.loads(StructuredFormatter().format(record))

        assert "ValueError: bad value" in data["exception"]


class TestSetupLogging:
    """Test root logger configuration."""

    def test_json_handler(self, restore_root_logger):
        setup_logging(use_json=True, log_level="debug")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)

    def test_text_handler_and_unknown_level(self, restore_root_logger):
        setup_logging(log_level="LOUD")

        assert restore_root_logger.level == logging.INFO
        assert not isinstance(restore_root_logger.handlers[0].formatter, StructuredFormatter)
        assert logging.getLogger("duckdb").level == logging.WARNING

    def test_handler_follows_root_level(self, restore_root_logger, capsys):
        setup_logging(log_level="INFO")
        handler = restore_root_logger.handlers[0]

        restore_root_logger.setLevel(logging.DEBUG)
        logging.getLogger("birthbook.test").debug("verbose detail")

        assert handler.level == logging.NOTSET
        assert "verbose detail" in capsys.readouterr().err
