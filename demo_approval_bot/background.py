"""Run Slack request processing off the HTTP request thread."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import structlog
from structlog.contextvars import bind_contextvars, get_contextvars


_executor = ThreadPoolExecutor(max_workers=8, thread_name_prefix="demo-approval")


def _log_failure(future: Future, *, task: str, trace_id: str | None) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        structlog.get_logger().error(
            "background_task_failed",
            task=task,
            trace_id=trace_id,
            error=repr(exc),
        )


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared thread pool and return a Future.

    Slack has already received its 200 by the time the task runs, so an
    exception escaping *func* is logged with the task's trace id rather than
    left on an unread future. The caller's structlog context travels with the
    task and *trace_id* is bound on top of it when given.
    """

    context = copy_context()
    if trace_id is None:
        trace_id = context.run(lambda: get_contextvars().get("trace_id"))
    else:
        context.run(lambda: bind_contextvars(trace_id=trace_id))

    task = getattr(func, "__name__", repr(func))
    future = _executor.submit(context.run, func, *args, **kwargs)
    future.add_done_callback(lambda done: _log_failure(done, task=task, trace_id=trace_id))
    return future
