"""
The delta queue between the reflector and the dispatcher.

The reflector converts the listings & watch-events into the change events
(with the previous state of the object attached, as known from the store),
and puts them into the queue in the order of their arrival.

The dispatcher takes them out one by one, in the same order, and delivers
every event exactly once to the registered callbacks.

There is no deduplication or compaction of the events: if the object changes
twice before the dispatcher gets to it, both changes are delivered.

The queue can be closed by the informer when it stops: the dispatcher then
gets the remaining events, and ``None`` instead of waiting for the new ones,
and exits; the reflector gets `QueueClosed` if it tries to put anything afterwards.
Whatever is left undelivered can be drained and re-queued into a new queue.
"""
import asyncio
import dataclasses
import enum
import logging
from typing import TYPE_CHECKING

from kinformer._cogs.structs import bodies

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    ADDED = 'ADDED'
    MODIFIED = 'MODIFIED'
    DELETED = 'DELETED'

    def __str__(self) -> str:
        return str(self.value)


@dataclasses.dataclass(frozen=True)
class ChangeEvent:
    """
    A single change of a single object, as seen by the informer.

    For additions & modifications, the object is the new state of the object.
    For deletions, it is the last known state (or the state sent by the server).
    The old state is the state previously known in the store, if any.
    """
    type: EventType
    object: bodies.RawBody
    old: bodies.RawBody | None = None
    resource_version: str | None = None

    @property
    def key(self) -> bodies.ObjectKey:
        return bodies.get_key(self.object)


class QueueClosed(Exception):
    """ Raised when an event is put into a queue that is already closed. """


if TYPE_CHECKING:
    ChangeEventQueue = asyncio.Queue[ChangeEvent]
else:
    ChangeEventQueue = asyncio.Queue


class DeltaQueue:
    """
    A FIFO queue of change events, unbounded or bounded, closeable.

    If bounded (``maxsize > 0``), the producer blocks on `put` while the queue
    is full, so that the reflector does not run too far ahead of the callbacks.
    """

    def __init__(self, maxsize: int = 0) -> None:
        super().__init__()
        self._queue: ChangeEventQueue = asyncio.Queue(maxsize=maxsize)
        self._closed = asyncio.Event()
        self._rejected: list[ChangeEvent] = []

    def __repr__(self) -> str:
        closed = ', closed' if self.closed else ''
        return f'<{self.__class__.__name__}: {self._queue.qsize()} events{closed}>'

    def __len__(self) -> int:
        return self._queue.qsize()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """
        Close the queue: wake up the consumer and reject the new events.

        The events already queued are still given to the consumer; only then
        it gets ``None`` instead of waiting for more. See also `drain`.
        """
        self._closed.set()

    def drain(self) -> list[ChangeEvent]:
        """ Take out all the queued & rejected events at once, without waiting. """
        events: list[ChangeEvent] = []
        while not self._queue.empty():
            events.append(self._queue.get_nowait())
        events.extend(self._rejected)
        self._rejected.clear()
        return events

    async def put(self, *events: ChangeEvent) -> None:
        """
        Put the events into the queue; wait for free space if it is bounded & full.

        If the queue is closed before all the events get in, `QueueClosed` is raised.
        The events that did not get in (also if the putter is cancelled) are kept
        aside, and are returned by `drain` after the queued ones.
        """
        pending = list(events)
        try:
            while pending:
                if self.closed:
                    raise QueueClosed("The delta queue is closed; no new events are accepted.")
                if not self._queue.full():
                    self._queue.put_nowait(pending.pop(0))
                    continue

                # Block while the queue is full, but not forever if it is closed meanwhile.
                putter = asyncio.ensure_future(self._queue.put(pending[0]))
                closer = asyncio.ensure_future(self._closed.wait())
                try:
                    await asyncio.wait([putter, closer], return_when=asyncio.FIRST_COMPLETED)
                finally:
                    if putter.done() and not putter.cancelled():
                        pending.pop(0)
                    putter.cancel()
                    closer.cancel()
        finally:
            self._rejected.extend(pending)

    async def get(self) -> ChangeEvent | None:
        """ Get the next event, or ``None`` if the queue is closed and empty. """
        while True:
            if not self._queue.empty():
                return self._queue.get_nowait()
            if self.closed:
                return None

            getter = asyncio.ensure_future(self._queue.get())
            closer = asyncio.ensure_future(self._closed.wait())
            try:
                await asyncio.wait([getter, closer], return_when=asyncio.FIRST_COMPLETED)
            finally:
                getter.cancel()
                closer.cancel()

            # A cancelled getter leaves the event in the queue for the next cycle.
            if getter.done() and not getter.cancelled():
                return getter.result()
