import asyncio

import pytest

from kinformer._cogs.structs.stores import Store
from kinformer._core.reactor.queueing import DeltaQueue


@pytest.fixture()
def store():
    return Store()


@pytest.fixture()
def queue():
    return DeltaQueue()


@pytest.fixture()
def next_events(queue):
    """ Take the next few events from the queue, but do not wait for them forever. """
    async def fn(n, timeout=1.0):
        return [await asyncio.wait_for(queue.get(), timeout=timeout) for _ in range(n)]
    return fn
