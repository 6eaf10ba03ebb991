"""Formatters used for API and worker logs."""
import json
import logging
import sys

from core.logging import ContextTextFormatter, JSONFormatter, TEXT_FORMAT


def _record(msg="stage finished", extra_fields=None, exc_info=None):
    record = logging.LogRecord(
        name="services.assessment_pipeline",
        level=logging.INFO,
        pathname=__file__,
        lineno=42,
        msg=msg,
        args=(),
        exc_info=exc_info,
    )
    if extra_fields is not None:
        record.extra_fields = extra_fields
    return record


class TestJSONFormatter:

    def test_merges_run_context(self):
        line = JSONFormatter().format(_record(extra_fields={"run_id": "run-1", "stage": "movement"}))

        data = json.loads(line)
        assert data["message"] == "stage finished"
        assert data["logger"] == "services.assessment_pipeline"
        assert data["level"] == "INFO"
        assert data["run_id"] == "run-1"
        assert data["stage"] == "movement"
        assert data["location"].endswith(":42")

    def test_includes_exception(self):
        try:
            raise RuntimeError("disk full")
        except RuntimeError:
            record = _record(exc_info=sys.exc_info())

        data = json.loads(JSONFormatter().format(record))
        assert "RuntimeError: disk full" in data["exception"]


class TestContextTextFormatter:

    def test_appends_context(self):
        line = ContextTextFormatter(TEXT_FORMAT).format(_record(extra_fields={"run_id": "run-1"}))
        assert line.endswith("stage finished [run_id=run-1]")

    def test_plain_without_context(self):
        line = ContextTextFormatter(TEXT_FORMAT).format(_record())
        assert line.endswith("INFO - stage finished")
