import io
import json
import logging
import sys

import pytest

from tuning.logs import StructuredFormatter, setup_logging


def test_pretty_format():
    stream = io.StringIO()
    logger = setup_logging("INFO", "pretty", stream=stream)

    logger.info("job %s: %s", "a", "succeeded")
    logger.debug("hidden")

    assert stream.getvalue() == "INFO: job a: succeeded\n"


def test_structured_format_carries_job_fields():
    stream = io.StringIO()
    logger = setup_logging("DEBUG", "structured", stream=stream)

    logger.error("boom", extra={"job": "a", "outcome": "failed", "error": "exit 1"})

    record = json.loads(stream.getvalue())
    assert record["level"] == "ERROR"
    assert record["logger"] == "tuning"
    assert record["message"] == "boom"
    assert record["job"] == "a"
    assert record["outcome"] == "failed"
    assert record["error"] == "exit 1"
    assert record["timestamp"].endswith("Z")


def test_structured_format_includes_exception():
    formatter = StructuredFormatter()
    try:
        raise ValueError("bad")
    except ValueError:
        record = logging.getLogger("tuning").makeRecord(
            "tuning", logging.ERROR, __file__, 1, "failed", (), exc_info=sys.exc_info()
        )
    data = json.loads(formatter.format(record))
    assert "ValueError: bad" in data["exception"]
    assert "job" not in data


def test_setup_replaces_handlers():
    setup_logging("INFO", "pretty", stream=io.StringIO())
    logger = setup_logging("INFO", "pretty", stream=io.StringIO())
    assert len(logger.handlers) == 1


def test_unknown_format():
    with pytest.raises(ValueError, match="log_format"):
        setup_logging("INFO", "xml")
