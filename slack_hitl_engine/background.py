"""Best-effort background work that runs after Slack has been acknowledged."""

from contextvars import copy_context
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable

import structlog
from structlog.contextvars import bind_contextvars, get_contextvars


_executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="hitl-bg")


def run_async(
    func: Callable[..., Any],
    /,
    *args: Any,
    trace_id: str | None = None,
    **kwargs: Any,
) -> Future:
    """Submit *func* to the shared pool, carrying the caller's structlog context.

    Exceptions raised by *func* are logged and kept on the returned future;
    they never reach the request that scheduled the work.
    """

    context = copy_context()

    if trace_id is not None and context.run(lambda: get_contextvars().get("trace_id")) != trace_id:
        context.run(lambda: bind_contextvars(trace_id=trace_id))

    def runner() -> Any:
        try:
            return context.run(func, *args, **kwargs)
        except Exception:
            context.run(
                lambda: structlog.get_logger().exception(
                    "background_task_failed", task=getattr(func, "__name__", repr(func))
                )
            )
            raise

    return _executor.submit(runner)
