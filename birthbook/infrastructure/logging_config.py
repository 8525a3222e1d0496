"""Structured logging configuration.

JSON formatting for production runs and human-readable formatting for
interactive use. Per-record rejections carry their context (position,
trace id, error type) as ``extra`` fields, which the JSON formatter emits.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any, Dict

# Context keys the importer attaches via ``extra=``
CONTEXT_FIELDS = ("position", "trace_id", "error_type", "field", "source")


class StructuredFormatter(logging.Formatter):
    """Structured JSON formatter for logs."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as a single JSON line."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        for name in CONTEXT_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        return json.dumps(log_data, default=str)


def setup_logging(use_json: bool = False, log_level: str = "INFO") -> None:
    """Setup application logging on the root logger.

    Parameters:
        use_json: Use JSON formatting (for production)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)

    if use_json:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    # Third-party loggers stay quiet unless something is wrong
    logging.getLogger("duckdb").setLevel(logging.WARNING)
