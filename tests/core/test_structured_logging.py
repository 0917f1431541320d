"""JSON log output must stay machine-parseable; the pipeline filters on its keys."""

from __future__ import annotations

import json
import logging
import sys

import pytest

from app.core.logging import _ContainerFormatter, _JsonFormatter


def _record(msg: str = "msg", level: int = logging.INFO, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="app.services.points_ledger",
        level=level,
        pathname="points_ledger.py",
        lineno=7,
        msg=msg,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_produces_valid_json() -> None:
    parsed = json.loads(_JsonFormatter().format(_record("Points awarded")))
    assert parsed["level"] == "INFO"
    assert parsed["logger"] == "app.services.points_ledger"
    assert parsed["message"] == "Points awarded"
    assert "timestamp" in parsed


def test_json_formatter_includes_request_fields() -> None:
    record = _record(request_id="abc-123", method="GET", path="/health", duration_ms=12.5)
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["request_id"] == "abc-123"
    assert parsed["method"] == "GET"
    assert parsed["path"] == "/health"
    assert parsed["duration_ms"] == 12.5


def test_json_formatter_includes_domain_fields() -> None:
    record = _record(user_id="u-42", reason="message_sent", points=2, lesson_id="l1")
    parsed = json.loads(_JsonFormatter().format(record))
    assert parsed["user_id"] == "u-42"
    assert parsed["reason"] == "message_sent"
    assert parsed["points"] == 2
    assert parsed["lesson_id"] == "l1"


def test_json_formatter_skips_unknown_extras() -> None:
    parsed = json.loads(_JsonFormatter().format(_record(password="hunter2")))
    assert "password" not in parsed


def test_json_formatter_includes_exception_info() -> None:
    try:
        raise ValueError("test error")
    except ValueError:
        record = _record("Something failed", level=logging.ERROR)
        record.exc_info = sys.exc_info()
        output = _JsonFormatter().format(record)

    parsed = json.loads(output)
    assert "ValueError: test error" in parsed["exception"]


def test_container_formatter_is_plain_text() -> None:
    output = _ContainerFormatter().format(_record("server started"))
    assert "INFO" in output
    assert "server started" in output
    with pytest.raises(json.JSONDecodeError):
        json.loads(output)
