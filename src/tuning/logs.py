"""
Logging setup for tuning.

The runner logs one record per job transition, carrying `job` and
`outcome` (and `error` on failure) as record attributes. The structured
format turns those into one JSON object per line.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import IO, Optional

LOG_FORMATS = ("pretty", "structured")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "pretty",
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Set up logging for a run.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: "pretty" (human-readable) or "structured" (JSON lines)
        stream: Where to write; defaults to stderr

    Returns:
        Configured "tuning" logger
    """
    if log_format not in LOG_FORMATS:
        raise ValueError(f"log_format must be one of {LOG_FORMATS}, got {log_format!r}")

    logger = logging.getLogger("tuning")
    logger.setLevel(getattr(logging, log_level.upper()))
    logger.handlers = []  # Clear existing handlers

    handler = logging.StreamHandler(stream or sys.stderr)
    if log_format == "structured":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))

    logger.addHandler(handler)
    return logger


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        # Add job fields if present
        if hasattr(record, "job"):
            log_data["job"] = record.job
        if hasattr(record, "outcome"):
            log_data["outcome"] = record.outcome
        if hasattr(record, "error"):
            log_data["error"] = record.error

        # Add exception info if present
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)
