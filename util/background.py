import asyncio
import logging
from typing import Coroutine, Any, Set

logger = logging.getLogger(__name__)

# Strong refs so detached tasks are not garbage-collected mid-flight.
_tasks: Set["asyncio.Task[Any]"] = set()


def _on_done(task: "asyncio.Task[Any]") -> None:
    _tasks.discard(task)
    if task.cancelled():
        logger.warning("background.cancelled name=%s", task.get_name())
        return
    err = task.exception()
    if err is not None:
        logger.error(
            "background.error name=%s err=%s",
            task.get_name(),
            type(err).__name__,
            exc_info=err,
        )


def spawn(coro: Coroutine[Any, Any, Any], name: str) -> "asyncio.Task[Any]":
    """
    Fire-and-forget: schedule `coro` detached from the caller.
    Failures are logged here and never reach the caller.
    """
    task = asyncio.create_task(coro, name=name)
    _tasks.add(task)
    task.add_done_callback(_on_done)
    return task


async def drain(timeout: float = 5.0) -> None:
    """Wait for outstanding detached tasks (shutdown / tests)."""
    pending = list(_tasks)
    if not pending:
        return
    await asyncio.wait(pending, timeout=timeout)
