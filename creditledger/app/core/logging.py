import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any


class JSONFormatter(logging.Formatter):
    """
    Formatter that outputs JSON strings after parsing the LogRecord.
    """
    def format(self, record: logging.LogRecord) -> str:
        log_record: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        if hasattr(record, "request_id"):
            log_record["request_id"] = record.request_id # type: ignore

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        # Add extra fields passed via extra={}
        if hasattr(record, "data"):
            log_record["data"] = record.data # type: ignore

        return json.dumps(log_record, default=str)

def setup_logging(level: str | int = "INFO"):
    """
    Configures the root logger to use JSON formatting.
    """
    resolved_level = level if isinstance(level, int) else getattr(logging, str(level).upper(), logging.INFO)

    logger = logging.getLogger()
    logger.setLevel(resolved_level)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter())

    # Remove existing handlers to avoid duplicate lines when called twice
    logger.handlers = []
    logger.addHandler(handler)

    # SQL echo is noisy below WARNING
    for noisy_logger in ["sqlalchemy.engine", "alembic.runtime.migration"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    return logger
