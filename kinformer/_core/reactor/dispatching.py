"""
Delivery of the change events to the observers' callbacks.

The observers register their callbacks in triples: one for additions,
one for modifications, one for deletions (any of them can be omitted).
The dispatcher takes the events from the delta queue one by one and invokes
the matching callback of every registration, sequentially, in the order
of registration -- so that every observer sees the events in the same order
as they were applied to the store.

The callbacks get the deep copies of the objects, never the stored ones.
The kwargs are::

    on_add(body=..., namespace=..., name=..., logger=...)
    on_update(old=..., new=..., namespace=..., name=..., logger=...)
    on_delete(body=..., namespace=..., name=..., logger=...)

The callbacks should accept ``**kwargs`` for the args they do not use.

A failing or timed out callback does not stop the dispatching: the error is
logged, and the next callback is invoked. There are no retries.
"""
import asyncio
import copy
import dataclasses
import itertools
import logging
import threading
from collections.abc import Iterator
from typing import Any, NewType

from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._core.actions import invocation, loggers
from kinformer._core.reactor import queueing

logger = logging.getLogger(__name__)

RegistrationHandle = NewType('RegistrationHandle', str)


@dataclasses.dataclass(frozen=True)
class Registration:
    handle: RegistrationHandle
    on_add: invocation.Invokable | None = None
    on_update: invocation.Invokable | None = None
    on_delete: invocation.Invokable | None = None


class Registry:
    """
    The registrations of the callbacks, in the order of registration.

    The registry can be modified at any time, even from the callbacks
    (including the synchronous ones in the executor's threads).
    The dispatcher iterates over a snapshot of the registry as of the event's
    dispatching start, so the changes take effect from the next event.
    """

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._counter = itertools.count(1)
        self._registrations: dict[RegistrationHandle, Registration] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._registrations)

    def __iter__(self) -> Iterator[Registration]:
        with self._lock:
            registrations = list(self._registrations.values())
        return iter(registrations)

    def register(
            self,
            *,
            on_add: invocation.Invokable | None = None,
            on_update: invocation.Invokable | None = None,
            on_delete: invocation.Invokable | None = None,
    ) -> RegistrationHandle:
        with self._lock:
            handle = RegistrationHandle(f'registration-{next(self._counter)}')
            self._registrations[handle] = Registration(
                handle=handle,
                on_add=on_add,
                on_update=on_update,
                on_delete=on_delete,
            )
        return handle

    def unregister(self, handle: RegistrationHandle) -> None:
        """ Forget the registration; do nothing if it is unknown or already gone. """
        with self._lock:
            self._registrations.pop(handle, None)


async def dispatch(
        *,
        queue: queueing.DeltaQueue,
        registry: Registry,
        settings: configuration.InformerSettings,
        logger: typedefs.Logger = logger,
) -> None:
    """
    Deliver the events from the queue to the callbacks until it is closed & empty.
    """
    logger.debug("Starting the dispatcher.")
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            await dispatch_event(event=event, registry=registry, settings=settings, logger=logger)
    finally:
        logger.debug("Stopping the dispatcher.")


async def dispatch_event(
        *,
        event: queueing.ChangeEvent,
        registry: Registry,
        settings: configuration.InformerSettings,
        logger: typedefs.Logger | None = None,
) -> None:
    key = event.key
    object_logger = loggers.ObjectLogger(body=event.object, logger=logger)
    timeout = settings.dispatching.callback_timeout
    for registration in registry:
        fn: invocation.Invokable | None
        kwargs: dict[str, Any]
        match event.type:
            case queueing.EventType.ADDED:
                fn = registration.on_add
                kwargs = dict(body=copy.deepcopy(event.object))
            case queueing.EventType.MODIFIED:
                fn = registration.on_update
                kwargs = dict(old=copy.deepcopy(event.old), new=copy.deepcopy(event.object))
            case queueing.EventType.DELETED:
                fn = registration.on_delete
                kwargs = dict(body=copy.deepcopy(event.object))
            case _:
                raise TypeError(f"Unsupported event type: {event.type!r}")

        if fn is None:
            continue

        kwargs.update(namespace=key.namespace, name=key.name, logger=object_logger)
        title = getattr(fn, '__qualname__', None) or repr(fn)
        try:
            await invocation.invoke(fn, settings=settings, kwargs=kwargs, timeout=timeout)
        except asyncio.TimeoutError:
            object_logger.error(f"Callback {title!r} for {event.type} has timed out "
                                f"after {timeout} seconds; skipping it.")
        except Exception as e:
            object_logger.exception(f"Callback {title!r} for {event.type} has failed: {e}")
        else:
            object_logger.debug(f"Callback {title!r} for {event.type} succeeded.")
