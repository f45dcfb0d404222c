"""Tests for background task utilities."""

from __future__ import annotations

import time

import pytest
import structlog
from structlog.contextvars import bind_contextvars, clear_contextvars, get_contextvars
from structlog.testing import capture_logs

from demo_approval_bot.background import run_async


def _failures(logs):
    return [entry for entry in logs if entry["event"] == "background_task_failed"]


def test_run_async_propagates_structlog_context():
    clear_contextvars()
    bind_contextvars(trace_id="trace-123")
    captured: dict[str, str] = {}

    run_async(lambda: captured.update(get_contextvars())).result(timeout=1)

    assert captured.get("trace_id") == "trace-123"
    clear_contextvars()


def test_run_async_accepts_explicit_trace_id():
    clear_contextvars()
    captured: dict[str, str] = {}

    run_async(lambda: captured.update(get_contextvars()), trace_id="trace-456").result(timeout=1)

    assert captured.get("trace_id") == "trace-456"
    assert "trace_id" not in get_contextvars()


def test_run_async_returns_function_result():
    assert run_async(lambda a, b=0: a + b, 2, b=3).result(timeout=1) == 5


def test_run_async_preserves_trace_id_in_background_logs():
    clear_contextvars()
    with capture_logs(processors=[structlog.contextvars.merge_contextvars]) as logs:
        run_async(lambda: structlog.get_logger().info("background_event"), trace_id="trace-789").result(timeout=1)

    assert logs[0]["event"] == "background_event"
    assert logs[0]["trace_id"] == "trace-789"
    clear_contextvars()


def test_run_async_logs_exceptions_from_tasks():
    clear_contextvars()

    def process_request():
        raise RuntimeError("listener blew up")

    with capture_logs() as logs:
        future = run_async(process_request, trace_id="trace-err")
        with pytest.raises(RuntimeError):
            future.result(timeout=1)
        deadline = time.monotonic() + 1
        while not _failures(logs) and time.monotonic() < deadline:
            time.sleep(0.01)

    failures = _failures(logs)
    assert len(failures) == 1
    assert failures[0]["task"] == "process_request"
    assert failures[0]["trace_id"] == "trace-err"
    assert "listener blew up" in failures[0]["error"]


def test_run_async_does_not_log_successful_tasks():
    with capture_logs() as logs:
        run_async(lambda: None).result(timeout=1)

    assert _failures(logs) == []
