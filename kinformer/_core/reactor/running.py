"""
The informer: the reflector, the store, the queue, and the dispatcher together.

The informer watches one resource collection (cluster-wide or in one namespace)
and keeps its local copy in the store. The observers register their callbacks
to be notified of the changes::

    informer = Informer(client=client, resource=references.PODS)
    informer.add_event_handler(on_add=fn1, on_delete=fn2)
    async with informer:
        await informer.wait_for_sync()
        ...

The informer runs two background tasks: the reflector (feeds the store & queue)
and the dispatcher (drains the queue into the callbacks). Both are stopped
when the informer stops: the reflector is cancelled at once, the dispatcher
is given some time to deliver the queued events, and cancelled if overdue.
"""
import asyncio
import logging
from types import TracebackType

from kinformer._cogs.aiokits import aiotasks
from kinformer._cogs.clients import resources
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import references, stores
from kinformer._core.actions import invocation
from kinformer._core.reactor import dispatching, queueing, reflecting

logger = logging.getLogger(__name__)


class Informer:

    def __init__(
            self,
            *,
            client: resources.ResourceClient,
            resource: references.Resource,
            namespace: references.Namespace = None,
            settings: configuration.InformerSettings | None = None,
            logger: typedefs.Logger | None = None,
            since: str | None = None,
    ) -> None:
        super().__init__()
        self.client = client
        self.resource = resource
        self.namespace = namespace
        self.settings = settings if settings is not None else configuration.InformerSettings()
        self.logger: typedefs.Logger = logger if logger is not None else logging.getLogger(__name__)
        self.store = stores.Store()
        self.registry = dispatching.Registry()
        self.synced = asyncio.Event()
        self._since = since  # only for the first start; the restarts re-list.
        self._undelivered: list[queueing.ChangeEvent] = []
        self._queue: queueing.DeltaQueue | None = None
        self._reflector: aiotasks.Task | None = None
        self._dispatcher: aiotasks.Task | None = None

    def __repr__(self) -> str:
        where = f'in {self.namespace!r}' if self.namespace is not None else 'cluster-wide'
        state = 'running' if self.running else 'stopped'
        return f'<{self.__class__.__name__} for {self.resource} {where}: {state}>'

    async def __aenter__(self) -> "Informer":
        await self.start()
        return self

    async def __aexit__(
            self,
            exc_type: type[BaseException] | None,
            exc_val: BaseException | None,
            exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    @property
    def running(self) -> bool:
        return self._reflector is not None or self._dispatcher is not None

    def add_event_handler(
            self,
            *,
            on_add: invocation.Invokable | None = None,
            on_update: invocation.Invokable | None = None,
            on_delete: invocation.Invokable | None = None,
    ) -> dispatching.RegistrationHandle:
        return self.registry.register(on_add=on_add, on_update=on_update, on_delete=on_delete)

    def remove_event_handler(self, handle: dispatching.RegistrationHandle) -> None:
        self.registry.unregister(handle)

    async def start(self) -> None:
        """
        Start the background tasks.

        The events left undelivered by the previous run (if it was stopped
        while the dispatcher was busy) go first, before the new ones.
        """
        if self.running:
            raise RuntimeError(f"{self!r} is already running.")

        where = f'in {self.namespace!r}' if self.namespace is not None else 'cluster-wide'
        self.logger.debug(f"Starting the informer for {self.resource} {where}.")
        since, self._since = self._since, None
        undelivered, self._undelivered = self._undelivered, []
        self.synced.clear()
        self._queue = queueing.DeltaQueue(maxsize=self.settings.queueing.maxsize)
        self._dispatcher = aiotasks.create_guarded_task(
            name=f"dispatcher for {self.resource}",
            finishable=True,
            logger=self.logger,
            coro=dispatching.dispatch(
                queue=self._queue,
                registry=self.registry,
                settings=self.settings,
                logger=self.logger,
            ),
        )

        if undelivered:
            self.logger.debug(f"Re-queueing {len(undelivered)} undelivered events for {self.resource}.")
        await self._queue.put(*undelivered)

        self._reflector = aiotasks.create_guarded_task(
            name=f"reflector for {self.resource}",
            cancellable=True,
            logger=self.logger,
            coro=reflecting.reflect(
                client=self.client,
                resource=self.resource,
                namespace=self.namespace,
                store=self.store,
                queue=self._queue,
                settings=self.settings,
                logger=self.logger,
                synced=self.synced,
                since=since,
            ),
        )

    async def wait_for_sync(self, timeout: float | None = None) -> bool:
        """ Wait until the initial state is in the store; ``False`` on timeout. """
        try:
            await asyncio.wait_for(self.synced.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        else:
            return True

    async def stop(self) -> None:
        """
        Stop the background tasks; the store is not modified afterwards.

        The dispatcher is given the exit timeout to deliver the queued events.
        Those still queued after that are kept for the next start, since their
        changes are already in the store and would not be seen by a re-listing.
        The event being delivered when the dispatcher is cancelled is not
        redelivered: some of the callbacks might have already got it.
        """
        reflector, dispatcher, queue = self._reflector, self._dispatcher, self._queue
        self._reflector = self._dispatcher = self._queue = None

        if reflector is not None:
            await aiotasks.stop([reflector], title="reflector", logger=self.logger)

        if queue is not None:
            queue.close()

        if dispatcher is not None:
            exit_timeout = self.settings.queueing.exit_timeout
            _, pending = await aiotasks.wait([dispatcher], timeout=exit_timeout)
            if pending:
                self.logger.warning(f"The dispatcher for {self.resource} has not finished "
                                    f"in {exit_timeout} seconds; cancelling it.")
                await aiotasks.stop(pending, title="dispatcher", logger=self.logger)

        if queue is not None:
            self._undelivered.extend(queue.drain())
            if self._undelivered:
                self.logger.warning(f"{len(self._undelivered)} events for {self.resource} are "
                                    f"not delivered; they will be delivered on the next start.")

        self.logger.debug(f"The informer for {self.resource} is stopped.")
