"""
Invoking the callbacks, including the args/kwargs preparation.

Both sync & async functions are supported, so as their partials.
Also, decorated wrappers and lambdas are recognized.
All of this goes via the same invocation logic and protocol.
"""
import asyncio
import contextvars
import functools
import inspect
from collections.abc import Callable, Coroutine, Mapping
from typing import Any, TypeVar, Union

from kinformer._cogs.configs import configuration

# An internal typing hack shows that the callback can be sync fn with the result,
# or an async fn which returns a coroutine which, in turn, returns the result.
_R = TypeVar('_R')
SyncOrAsync = Union[_R, Coroutine[None, None, _R]]

# A generic sync-or-async callable with no args/kwargs checks (unlike in protocols).
Invokable = Callable[..., SyncOrAsync[object | None]]


async def invoke(
        fn: Invokable,
        *,
        settings: configuration.InformerSettings | None = None,
        kwargs: Mapping[str, Any] | None = None,
        timeout: float | None = None,
) -> Any:
    """
    Invoke a single function, but safely for the main asyncio process.

    The synchronous functions are executed in the executor (threads),
    thus making it non-blocking for the main event loop of the informer.
    See: https://pymotw.com/3/asyncio/executors.html

    If the timeout is set and exceeded, `asyncio.TimeoutError` is raised.
    The async functions are cancelled in that case. The sync functions cannot
    be interrupted: their threads continue, but the result is not awaited.
    """
    kwargs = {} if kwargs is None else kwargs
    if is_async_fn(fn):
        result = await asyncio.wait_for(fn(**kwargs), timeout=timeout)  # type: ignore
    else:

        # Not that we want to use functools, but for executors kwargs, it is officially recommended:
        # https://docs.python.org/3/library/asyncio-eventloop.html#asyncio.loop.run_in_executor
        real_fn = functools.partial(fn, **kwargs)

        # Copy the asyncio context from current thread to the callback's thread.
        context = contextvars.copy_context()
        real_fn = functools.partial(context.run, real_fn)

        loop = asyncio.get_running_loop()
        executor = settings.execution.executor if settings is not None else None
        future = loop.run_in_executor(executor, real_fn)
        result = await asyncio.wait_for(future, timeout=timeout)

    return result


def is_async_fn(
        fn: Invokable | None,
) -> bool:
    if fn is None:
        return False
    elif isinstance(fn, functools.partial):
        return is_async_fn(fn.func)
    elif hasattr(fn, '__wrapped__'):  # @functools.wraps()
        return is_async_fn(fn.__wrapped__)
    else:
        return inspect.iscoroutinefunction(fn)
