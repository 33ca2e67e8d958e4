"""
Tests for run-scoped structured logging.
"""

import json
import logging
import sys

from autopump.logging_config import JSONFormatter, RunContext, StructuredFormatter, get_run_id, setup_logging


def make_record(message="Claim confirmed"):
    return logging.LogRecord(
        name="autopump.services.fee_claim",
        level=logging.INFO,
        pathname=__file__,
        lineno=10,
        msg=message,
        args=(),
        exc_info=None,
    )


class TestRunContext:

    def test_sets_and_resets_run_id(self):
        assert get_run_id() is None

        with RunContext("abc123") as ctx:
            assert ctx.run_id == "abc123"
            assert get_run_id() == "abc123"

        assert get_run_id() is None

    def test_generates_run_id(self):
        with RunContext() as ctx:
            assert len(ctx.run_id) == 12


class TestFormatters:

    def test_json_includes_run_id(self):
        formatter = JSONFormatter()

        with RunContext("run42"):
            data = json.loads(formatter.format(make_record()))

        assert data["message"] == "Claim confirmed"
        assert data["level"] == "INFO"
        assert data["logger"] == "autopump.services.fee_claim"
        assert data["run_id"] == "run42"

    def test_json_without_run(self):
        data = json.loads(JSONFormatter().format(make_record()))

        assert "run_id" not in data

    def test_json_exception(self):
        try:
            raise ValueError("bad amount")
        except ValueError:
            record = make_record("failed")
            record.exc_info = sys.exc_info()

        data = json.loads(JSONFormatter().format(record))

        assert data["exception"]["type"] == "ValueError"
        assert data["exception"]["message"] == "bad amount"

    def test_structured_console_line(self):
        with RunContext("run7"):
            line = StructuredFormatter(use_color=False).format(make_record())

        assert "[INFO]" in line
        assert "Claim confirmed" in line
        assert "[run_id=run7]" in line


def test_setup_logging_creates_files(tmp_path):
    root = setup_logging(log_dir=tmp_path, level="DEBUG", console_output=False)
    try:
        logging.getLogger("autopump.test").error("boom")
        for handler in root.handlers:
            handler.flush()

        assert (tmp_path / "autopump.log").read_text().count("boom") == 1
        assert (tmp_path / "autopump_errors.log").read_text().count("boom") == 1
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in list(root.handlers):
            handler.close()
            root.removeHandler(handler)
