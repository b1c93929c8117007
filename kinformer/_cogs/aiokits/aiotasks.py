"""
Background tasks of the informers: the reflector and the dispatcher.

Both tasks are started and never awaited until the informer is stopped,
so their failures must be logged when they happen, not when they are noticed.
Only tasks are supported, not generic awaitables: they are also cancelled.
"""
import asyncio
from collections.abc import Collection, Coroutine
from typing import TYPE_CHECKING, Any

from kinformer._cogs.helpers import typedefs

# At runtime, the task class is not subscriptable.
if TYPE_CHECKING:
    Task = asyncio.Task[Any]
else:
    Task = asyncio.Task


async def guard(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> None:
    """
    Run the coroutine and report how it has ended, if it was not expected to.

    A reflector runs until cancelled, so its cancellation is normal (``cancellable``).
    A dispatcher exits when its queue is closed (``finishable``). The errors
    are reported always, and are re-raised for whoever awaits the task.
    """
    title = name[:1].upper() + name[1:]
    try:
        await coro
    except asyncio.CancelledError:
        if logger is not None and not cancellable:
            logger.debug(f"{title} is cancelled.")
        raise
    except Exception as e:
        if logger is not None:
            logger.exception(f"{title} has failed: {e}")
        raise
    else:
        if logger is not None and not finishable:
            logger.warning(f"{title} has finished unexpectedly.")


def create_guarded_task(
        coro: Coroutine[Any, Any, Any],
        name: str,
        *,
        finishable: bool = False,
        cancellable: bool = False,
        logger: typedefs.Logger | None = None,
) -> Task:
    guarded = guard(coro, name, finishable=finishable, cancellable=cancellable, logger=logger)
    return asyncio.create_task(guarded, name=name)


async def wait(
        tasks: Collection[Task],
        *,
        timeout: float | None = None,
) -> tuple[set[Task], set[Task]]:
    """ Same as :func:`asyncio.wait`, but an empty collection is not an error. """
    if not tasks:
        return set(), set()
    return await asyncio.wait(tasks, timeout=timeout)


async def stop(
        tasks: Collection[Task],
        *,
        title: str,
        interval: float | None = None,
        logger: typedefs.Logger | None = None,
) -> tuple[set[Task], set[Task]]:
    """
    Cancel the tasks and wait until they exit, however long it takes.

    With the interval set, the tasks that ignore or delay the cancellation
    are reported every interval, and then once more when they finally exit.
    If the stopping itself is cancelled, the remaining tasks are left as is.
    """
    for task in tasks:
        task.cancel()

    stuck = False
    done: set[Task] = set()
    pending: set[Task] = set(tasks)
    while pending:
        done_now, pending = await wait(pending, timeout=interval)
        done |= done_now
        if pending:
            stuck = True
            if logger is not None:
                logger.debug(f"{title.capitalize()} tasks are not stopped yet: {pending!r}")
        elif stuck and logger is not None:
            logger.debug(f"{title.capitalize()} tasks are stopped eventually.")
    return done, pending
