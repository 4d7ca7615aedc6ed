from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

# Strong references to handler tasks, otherwise the loop may collect them mid-flight
_background_tasks: set[asyncio.Task] = set()


def _log_task_failure(task: asyncio.Task) -> None:
    _background_tasks.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            f"Error in handler task {task.get_name()}: {exc}",
            exc_info=(type(exc), exc, exc.__traceback__),
        )


def spawn(coro, name: str | None = None) -> asyncio.Task:
    """Run ``coro`` as a background task, logging its failure."""
    task = asyncio.ensure_future(coro)
    if name is not None and isinstance(task, asyncio.Task):
        task.set_name(name)
    _background_tasks.add(task)
    task.add_done_callback(_log_task_failure)
    return task


def notify(handlers: Iterable[Callable[..., Any]], *args: Any, event: str = "event") -> None:
    """Call every handler with ``args``.

    Handlers may be plain callables or coroutine functions. Coroutines are
    scheduled as tasks, so notifying never blocks the caller. Failures are
    logged and never propagate.
    """
    for handler in list(handlers):
        try:
            result = handler(*args)
        except Exception as e:
            logger.error(f"Error in {event} handler: {e}", exc_info=True)
            continue
        if inspect.isawaitable(result):
            spawn(result, name=f"{event}:{getattr(handler, '__name__', 'handler')}")


def register(handlers: list, handler: Callable[..., Any]) -> Callable[..., Any]:
    """Append ``handler`` and return it, for decorator support."""
    handlers.append(handler)
    return handler
