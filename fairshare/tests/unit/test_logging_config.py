"""
tests/unit/test_logging_config.py — JSON log formatting.
"""

from __future__ import annotations

import json
import logging

from fairshare.app.logging_config import JSONFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="fairshare.app.services.balance_service",
        level=logging.WARNING,
        pathname=__file__,
        lineno=1,
        msg="Exchange rate unavailable",
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_emits_one_json_object_with_extra_data():
    line = JSONFormatter().format(_record(extra_data={"from": "EUR", "to": "USD"}))

    payload = json.loads(line)
    assert payload["level"] == "WARNING"
    assert payload["logger"] == "fairshare.app.services.balance_service"
    assert payload["message"] == "Exchange rate unavailable"
    assert payload["from"] == "EUR"
    assert payload["timestamp"].endswith("Z")


def test_setup_logging_does_not_stack_handlers():
    logger = setup_logging("debug")
    count = len(logger.handlers)

    setup_logging("INFO")

    assert len(logger.handlers) == count
    assert logger.level == logging.INFO
