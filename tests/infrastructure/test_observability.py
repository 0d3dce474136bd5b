"""Structured Logging: JSON formatter and setup.

Tests:
    - Base fields always present
    - Workflow extras surfaced only when set
    - Exceptions rendered
    - setup_logging replaces its own handler instead of stacking
"""

import json
import logging

from docvault.infrastructure.observability import JSONFormatter, setup_logging


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("docvault.test", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_base_fields():
    payload = json.loads(JSONFormatter().format(_record()))
    assert payload["level"] == "INFO"
    assert payload["logger"] == "docvault.test"
    assert payload["message"] == "hello world"
    assert "timestamp" in payload
    assert "workflow" not in payload


def test_json_formatter_surfaces_extras():
    payload = json.loads(JSONFormatter().format(_record(
        workflow="transfer_funds", correlation_id="c1", error_code="INSUFFICIENT_FUNDS",
        attempt=2, collection="users", document_id="u1", unrelated="x",
    )))
    assert payload["workflow"] == "transfer_funds"
    assert payload["correlation_id"] == "c1"
    assert payload["error_code"] == "INSUFFICIENT_FUNDS"
    assert payload["attempt"] == 2
    assert payload["collection"] == "users"
    assert payload["document_id"] == "u1"
    assert "unrelated" not in payload


def test_json_formatter_includes_exception():
    try:
        raise ValueError("boom")
    except ValueError:
        import sys
        record = _record()
        record.exc_info = sys.exc_info()
    payload = json.loads(JSONFormatter().format(record))
    assert "ValueError: boom" in payload["exception"]


def test_setup_logging_does_not_stack_handlers():
    before = list(logging.root.handlers)
    level = logging.root.level
    try:
        first = setup_logging("DEBUG", "json")
        second = setup_logging("WARNING", "text")
        assert first not in logging.root.handlers
        assert second in logging.root.handlers
        assert logging.root.level == logging.WARNING
        assert not isinstance(second.formatter, JSONFormatter)
    finally:
        for handler in list(logging.root.handlers):
            if handler not in before:
                logging.root.removeHandler(handler)
        logging.root.setLevel(level)
