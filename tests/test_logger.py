"""Tests for the JSON log format."""

from __future__ import annotations

import io
import json

from estimaflow.logger import StructuredLogger


def test_lines_are_json_with_context_and_thread():
    stream = io.StringIO()
    log = StructuredLogger(
        name="estimaflow.tests.json", stream=stream, log_file="", context={"component": "sync_worker"}
    )

    log.warning("Sync row %d failed", 7, extra={"estimation_id": "e-1"})

    line = json.loads(stream.getvalue().strip())
    assert line["level"] == "WARNING"
    assert line["message"] == "Sync row 7 failed"
    assert line["thread"] == "MainThread"
    assert line["extra"] == {"estimation_id": "e-1", "component": "sync_worker"}


def test_tracebacks_are_kept():
    stream = io.StringIO()
    log = StructuredLogger(name="estimaflow.tests.exc", stream=stream, log_file="")
    try:
        raise ValueError("boom")
    except ValueError:
        log.error("Cycle failed", exc_info=True)

    line = json.loads(stream.getvalue().strip())
    assert "ValueError: boom" in line["exception"]
    assert "extra" not in line
