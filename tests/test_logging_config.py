"""
Tests for log formatting and request context stamping.
"""

import json
import logging
import sys

from flask import g

from worktrack.middleware.logging_config import (
    JSONFormatter,
    ReadableFormatter,
    RequestContextFilter,
    build_formatter,
)


def _record(msg="Subtask 7 approved", exc_info=None, **extra):
    record = logging.LogRecord(
        "worktrack.services.lifecycle_service", logging.INFO, __file__, 42, msg, None, exc_info,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    def test_item_and_http_fields(self):
        line = json.loads(JSONFormatter().format(_record(
            item_kind="subtask", item_id=7, request_id="r-1",
            method="POST", path="/api/v1/subtasks/7/transition", status=200,
        )))

        assert line["message"] == "Subtask 7 approved"
        assert line["level"] == "INFO"
        assert line["item_kind"] == "subtask"
        assert line["item_id"] == 7
        assert line["request_id"] == "r-1"
        assert line["http"] == {"method": "POST", "path": "/api/v1/subtasks/7/transition", "status": 200}
        assert "exception" not in line

    def test_plain_record_has_no_http_block(self):
        line = json.loads(JSONFormatter().format(_record()))
        assert "http" not in line
        assert "item_id" not in line

    def test_exception_carries_location(self):
        try:
            raise RuntimeError("cascade failed")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())

        line = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: cascade failed" in line["exception"]
        assert line["where"].endswith(":42")


class TestReadableFormatter:
    def test_tags(self):
        text = ReadableFormatter(color=False).format(_record(
            request_id="abc", item_kind="task", item_id=3, duration_ms=12.4,
        ))
        assert "INFO" in text
        assert "Subtask 7 approved" in text
        assert text.endswith("[req=abc task#3 12ms]")

    def test_no_tags(self):
        text = ReadableFormatter(color=False).format(_record())
        assert text.endswith("Subtask 7 approved")
        assert "\033[" not in text


class TestRequestContextFilter:
    def test_outside_request_untouched(self):
        record = _record()
        assert RequestContextFilter().filter(record) is True
        assert getattr(record, "request_id", None) is None

    def test_stamps_request_id_and_actor(self, app):
        with app.test_request_context("/api/v1/tasks", headers={"X-User-Id": "5"}):
            g.request_id = "r-9"
            record = _record()
            RequestContextFilter().filter(record)

        assert record.request_id == "r-9"
        assert record.actor_id == "5"

    def test_explicit_request_id_wins(self, app):
        with app.test_request_context("/api/v1/tasks"):
            g.request_id = "from-g"
            record = _record(request_id="explicit")
            RequestContextFilter().filter(record)

        assert record.request_id == "explicit"
        assert record.actor_id is None


def test_build_formatter():
    assert isinstance(build_formatter("json"), JSONFormatter)
    assert isinstance(build_formatter("readable"), ReadableFormatter)
