import asyncio
import contextvars
import functools
import threading

import pytest

from kinformer._core.actions.invocation import invoke, is_async_fn

STACK_TRACE_MARKER = object()

some_var = contextvars.ContextVar('some_var')


def sync_fn(*args, **kwargs):
    return STACK_TRACE_MARKER


async def async_fn(*args, **kwargs):
    return STACK_TRACE_MARKER


def sync_failing(*args, **kwargs):
    raise ValueError("boo!")


async def async_failing(*args, **kwargs):
    raise ValueError("boo!")


def wrapped(fn):
    @functools.wraps(fn)
    def wrapper(*args, **kwargs):
        return fn(*args, **kwargs)
    return wrapper


@pytest.mark.parametrize('fn, expected', [
    pytest.param(sync_fn, False, id='sync'),
    pytest.param(async_fn, True, id='async'),
    pytest.param(functools.partial(sync_fn, 1), False, id='sync-partial'),
    pytest.param(functools.partial(async_fn, 1), True, id='async-partial'),
    pytest.param(wrapped(sync_fn), False, id='sync-wrapped'),
    pytest.param(wrapped(async_fn), True, id='async-wrapped'),
    pytest.param(lambda: None, False, id='lambda'),
    pytest.param(None, False, id='none'),
])
def test_detection_of_async_functions(fn, expected):
    assert is_async_fn(fn) is expected


@pytest.mark.parametrize('fn', [sync_fn, async_fn], ids=['sync', 'async'])
async def test_results_are_returned(settings, fn):
    result = await invoke(fn, settings=settings, kwargs={'x': 1})
    assert result is STACK_TRACE_MARKER


@pytest.mark.parametrize('fn', [sync_failing, async_failing], ids=['sync', 'async'])
async def test_errors_are_escalated(settings, fn):
    with pytest.raises(ValueError, match=r"boo!"):
        await invoke(fn, settings=settings)


async def test_kwargs_are_passed(settings, mocker):
    fn = mocker.Mock()
    await invoke(fn, settings=settings, kwargs={'body': {'a': 'b'}, 'name': 'name1'})
    assert fn.call_count == 1
    assert fn.call_args.args == ()
    assert fn.call_args.kwargs == {'body': {'a': 'b'}, 'name': 'name1'}


async def test_sync_functions_run_in_the_executor(settings):
    threads = []
    await invoke(lambda: threads.append(threading.current_thread()), settings=settings)
    assert threads[0] is not threading.current_thread()


async def test_sync_functions_run_in_the_default_executor_without_settings():
    threads = []
    await invoke(lambda: threads.append(threading.current_thread()))
    assert threads[0] is not threading.current_thread()


async def test_context_variables_are_passed_to_threads(settings):
    some_var.set('some-value')
    result = await invoke(lambda: some_var.get(), settings=settings)
    assert result == 'some-value'


async def test_async_timeouts(settings, timer):
    cancelled = []

    async def fn():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.append(True)
            raise

    with timer, pytest.raises(asyncio.TimeoutError):
        await invoke(fn, settings=settings, timeout=0.1)

    assert timer.seconds < 1.0
    assert cancelled == [True]


async def test_sync_timeouts(settings, timer):
    release = threading.Event()
    try:
        with timer, pytest.raises(asyncio.TimeoutError):
            await invoke(functools.partial(release.wait, 5.0), settings=settings, timeout=0.1)
    finally:
        release.set()

    assert timer.seconds < 1.0
