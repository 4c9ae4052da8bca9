"""Tests for structured logging."""
import json
import logging

from assessment.core.logging_config import JSONFormatter, request_id_context


def _record(msg="hello", level=logging.INFO, **extra):
    record = logging.LogRecord(
        name="assessment.test",
        level=level,
        pathname=__file__,
        lineno=10,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_includes_structured_fields():
    payload = json.loads(
        JSONFormatter().format(_record(attempt_id=5, question_id=9, ignored="x"))
    )

    assert payload["message"] == "hello"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "assessment.test"
    assert payload["attempt_id"] == 5
    assert payload["question_id"] == 9
    assert "ignored" not in payload


def test_json_formatter_includes_request_id():
    token = request_id_context.set("req-123")
    try:
        payload = json.loads(JSONFormatter().format(_record()))
    finally:
        request_id_context.reset(token)

    assert payload["request_id"] == "req-123"


def test_errors_carry_source_location():
    payload = json.loads(JSONFormatter().format(_record(level=logging.ERROR)))
    assert payload["source"].endswith(":10")
