import io
import logging
import re
import sys
import time

import pytest
from aresponses import ResponsesMockServer

from kinformer._cogs.clients.auth import APIContext
from kinformer._cogs.configs.configuration import InformerSettings
from kinformer._cogs.structs.credentials import ConnectionInfo
from kinformer._core.actions.loggers import ObjectTextFormatter, configure
from kinformer._kits.fakes import FakeResourceClient


@pytest.fixture()
def settings():
    settings = InformerSettings()
    settings.networking.error_backoffs = []
    settings.watching.reconnect_backoff = 0.01
    settings.watching.backoff_cap = 0.1
    settings.watching.backoff_jitter = 0.0
    settings.queueing.exit_timeout = 1.0
    settings.dispatching.callback_timeout = 1.0
    return settings


@pytest.fixture()
def logger():
    return logging.getLogger('kinformer.tests')


@pytest.fixture(autouse=True)
def _caplog_all_levels(caplog):
    caplog.set_level(0)


@pytest.fixture(autouse=True)
def _restore_global_loggers():
    # The logging configuration is global; the CLI's handlers also refer to the runner's streams.
    root = logging.getLogger()
    aio = logging.getLogger('asyncio')
    level, handlers = root.level, root.handlers[:]
    propagate, aio_handlers = aio.propagate, aio.handlers[:]
    yield
    root.setLevel(level)
    root.handlers[:] = handlers
    aio.propagate = propagate
    aio.handlers[:] = aio_handlers


#
# Mocks for the cluster API: either at the HTTP level or at the level of the resource clients.
# No external calls must be made under any circumstances.
# The unit-tests must be fully isolated from the environment.
#

@pytest.fixture()
def hostname():
    """ A fake hostname to be used in all aiohttp/aresponses tests. """
    return 'fake-host'


@pytest.fixture()
async def aresponses():
    """ A mock server for all requests, regardless of the hostname & port. """
    async with ResponsesMockServer() as server:
        yield server


@pytest.fixture()
async def api_context(aresponses, hostname):
    """ A connection context to the fake host, closed after every test. """
    async with APIContext(ConnectionInfo(server=f'https://{hostname}')) as context:
        yield context


@pytest.fixture()
def resp_mocker(mocker, aresponses):
    """
    Make server-side handlers for `aresponses`, which can be asserted as mocks.

    Unlike the static responses, the handlers show if & how they were called,
    which matters when several responses are registered for the same host::

        handler = resp_mocker(return_value=aiohttp.web.json_response({}))
        aresponses.add(hostname, '/path', 'get', handler)
        ...
        assert handler.call_count == 1
        assert handler.call_args[0][0].data == {...}
    """
    def resp_maker(*args, **kwargs):
        response_factory = mocker.MagicMock(*args, **kwargs)

        async def handle(request):
            # The body is only readable within the handler; keep it for the assertions.
            try:
                request.data = await request.json()
            except ValueError:
                request.data = await request.text()
            return response_factory()

        return mocker.AsyncMock(side_effect=handle)
    return resp_maker


@pytest.fixture()
def fake_client():
    return FakeResourceClient()


#
# Helpers for the timing checks.
#

@pytest.fixture()
def timer():
    return Timer()


class Timer:
    """
    Measure the duration of a code block, sync or async::

        with timer:
            do_something()
        assert timer.seconds < 1.0

    While the block is running, the seconds are those elapsed so far.
    """

    def __init__(self):
        super().__init__()
        self.started = None
        self.finished = None

    @property
    def seconds(self):
        if self.started is None:
            return None
        return (self.finished or time.perf_counter()) - self.started

    def __repr__(self):
        return f'<Timer: {self.seconds}s>'

    def __enter__(self):
        self.started = time.perf_counter()
        self.finished = None
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.finished = time.perf_counter()

    async def __aenter__(self):
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        return self.__exit__(exc_type, exc_val, exc_tb)


#
# Helpers for the logging checks.
#

@pytest.fixture()
def logstream(caplog):
    """ The prefixes are added by the formatters, so we intercept the formatted output. """
    root = logging.getLogger()
    configure(verbose=True)

    # Only keep caplog's handlers, not the stderr ones of the configuration.
    root.handlers[:] = [h for h in root.handlers
                        if not (isinstance(h, logging.StreamHandler) and h.stream is sys.stderr)]

    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(ObjectTextFormatter('prefix %(message)s', prefixed=True))
    root.addHandler(handler)
    with caplog.at_level(logging.DEBUG):
        yield stream


@pytest.fixture()
def assert_logs(caplog):
    """
    Check that the log messages match the patterns in the given order.

    Other messages in between are ignored, unless ``strict`` is set.
    A message matching a later pattern before the expected one fails the check:
    it means the expected message is missing. The prohibited patterns must
    not match any message at all.
    """
    def assert_logs_fn(patterns=(), prohibited=(), strict=False):
        __traceback_hide__ = True
        expected = list(patterns)
        for message in caplog.messages:
            for pattern in prohibited:
                if re.search(pattern, message):
                    raise AssertionError(f"Prohibited log pattern found: {message!r} ~ {pattern!r}")

            matching = [idx for idx, pattern in enumerate(expected) if re.search(pattern, message)]
            if matching and matching[0] == 0:
                del expected[0]
            elif matching:
                raise AssertionError(f"Few patterns were skipped: {expected[:matching[0]]!r}")
            elif strict and expected:
                raise AssertionError(f"Unexpected log message: {message!r}")

        if expected:
            raise AssertionError(f"Few patterns were missed: {expected!r}")

    return assert_logs_fn
