"""Tests for logger naming and the JSON log format."""

from __future__ import annotations

import json
import logging

from taskbots.core.logging import JsonFormatter, _make_formatter, get_logger


class TestGetLogger:
    def test_names_are_namespaced(self):
        assert get_logger("core.daemon").name == "taskbots.core.daemon"
        assert get_logger("taskbots.web").name == "taskbots.web"
        assert get_logger().name == "taskbots"


class TestJsonFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            "taskbots.core.daemon", logging.WARNING, __file__, 1, "Task %s failed", ("t1",), None
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_entry_fields(self):
        entry = json.loads(JsonFormatter().format(self._record()))
        assert entry["level"] == "warning"
        assert entry["component"] == "taskbots.core.daemon"
        assert entry["message"] == "Task t1 failed"
        assert "timestamp" in entry
        assert "data" not in entry

    def test_structured_data(self):
        entry = json.loads(JsonFormatter().format(self._record(data={"taskId": "t1"})))
        assert entry["data"] == {"taskId": "t1"}

    def test_format_selection(self):
        assert isinstance(_make_formatter("JSON"), JsonFormatter)
        assert not isinstance(_make_formatter("text"), JsonFormatter)
