"""Tests for log formatting and request context propagation."""

from __future__ import annotations

import json
import logging
from typing import Any

from infra.logging_config import (
    JsonFormatter,
    StructuredLogger,
    TextFormatter,
    clear_request_context,
    get_request_context,
    set_request_context,
)


def _record(**extra: Any) -> logging.LogRecord:
    record = logging.LogRecord("ezbox.test", logging.INFO, __file__, 10, "order_created", None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_merges_extras_and_request_context() -> None:
    clear_request_context()
    set_request_context(request_id="req-1", user_id=None, admin_id=3)
    try:
        line = JsonFormatter(extra_fields={"service": "ezbox-api"}).format(
            _record(event="order_created", order_id=7, fields={"order_id": 7})
        )
    finally:
        clear_request_context()

    body = json.loads(line)
    assert body["message"] == "order_created"
    assert body["order_id"] == 7
    assert body["service"] == "ezbox-api"
    assert body["request_id"] == "req-1"
    assert body["admin_id"] == 3
    assert "user_id" not in body
    assert "fields" not in body


def test_text_formatter_appends_key_value_fields() -> None:
    text = TextFormatter().format(_record(fields={"order_id": 7, "total": "120.00"}))
    assert text.endswith("| INFO | ezbox.test | order_created | order_id=7 total=120.00")


def test_request_context_is_cleared() -> None:
    set_request_context(request_id="req-2")
    assert get_request_context()["request_id"] == "req-2"
    clear_request_context()
    assert get_request_context() == {}


def test_structured_logger_passes_event_fields(caplog: Any) -> None:
    caplog.set_level("INFO", logger="ezbox.orders")
    StructuredLogger("ezbox.orders").info("order_created", order_id=9, status="pending")

    record = caplog.records[-1]
    assert record.getMessage() == "order_created"
    assert record.__dict__["order_id"] == 9
    assert record.__dict__["fields"] == {"order_id": 9, "status": "pending"}
