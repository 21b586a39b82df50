"""
Helpers for the background tasks of the informers.

The informer's own task and the stop-flag checker are started and then left
alone until the very end of the informing, when they are waited for.
Their failures are logged as soon as they happen, not when they are awaited.
"""
import asyncio
import functools
from typing import TYPE_CHECKING, Any, Collection, Coroutine, Set, Tuple

from kinformer._cogs.helpers import typedefs

# A workaround for a difference in tasks at runtime and type-checking time.
# Otherwise, at runtime: TypeError: 'type' object is not subscriptable.
if TYPE_CHECKING:
    Future = asyncio.Future[Any]
    Task = asyncio.Task[Any]
else:
    Future = asyncio.Future
    Task = asyncio.Task


def create_background_task(
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        logger: typedefs.Logger,
) -> Task:
    """
    Start a named task, and log its failure (if any) once it is done.

    The exception stays in the task for whoever awaits it later.
    """
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(functools.partial(_log_outcome, logger=logger))
    return task


def _log_outcome(task: Task, *, logger: typedefs.Logger) -> None:
    capname = task.get_name().capitalize()
    if task.cancelled():
        logger.debug(f"{capname} is cancelled.")
        return
    exc = task.exception()
    if exc is not None:
        logger.error(f"{capname} has failed: {exc}", exc_info=exc)


async def wait(tasks: Collection[Task]) -> Tuple[Set[Task], Set[Task]]:
    """
    Wait for all the tasks to finish, if there are any (`asyncio.wait` fails on none).
    """
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks)
