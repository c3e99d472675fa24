"""Tests for the JSON log formatter."""

from __future__ import annotations

import json
import logging
import sys

from taskline.core.logging import JSONFormatter


def _record(**extra) -> logging.LogRecord:
    record = logging.LogRecord("taskline.test", logging.WARNING, __file__, 1, "Step %s failed", ("s1",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_extra_fields_are_lifted():
    line = json.loads(JSONFormatter().format(_record(job_id="j1", step_id="s1")))
    assert line["message"] == "Step s1 failed"
    assert line["level"] == "WARNING"
    assert line["job_id"] == "j1"
    assert line["service.name"] == "taskline"


def test_exception_info_is_captured():
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        record = logging.LogRecord("taskline.test", logging.ERROR, __file__, 1, "oops", None, sys.exc_info())
    line = json.loads(JSONFormatter().format(record))
    assert line["exception.type"] == "RuntimeError"
    assert line["exception.message"] == "boom"
