"""
The capability of talking to a resource collection, as the informer sees it.

The informer and the demo sequence never talk HTTP directly: they are given
a `ResourceClient` -- anything that can list, create, delete, and watch the
objects. `APIResourceClient` is the real one, over the cluster API with
``aiohttp``; :class:`kinformer.testing.FakeResourceClient` is an in-memory one.

All implementations must raise the errors of :mod:`kinformer._cogs.clients.errors`
for the same situations, so that the callers can react regardless of the client.
"""
import contextlib
import logging
from collections.abc import AsyncGenerator, Sequence
from typing import NamedTuple, Protocol

from kinformer._cogs.clients import auth, creating, deleting, fetching, watching
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, references

logger = logging.getLogger(__name__)


class Snapshot(NamedTuple):
    """ A consistent listing of a collection as of one resource version. """
    items: Sequence[bodies.RawBody]
    resource_version: str | None


class ResourceClient(Protocol):

    async def create(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        ...

    async def delete(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            name: str,
    ) -> None:
        ...

    def watch(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            *,
            since: str | None = None,
    ) -> AsyncGenerator[bodies.RawEvent, None]:
        ...

    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            *,
            label_selector: str | None = None,
    ) -> Snapshot:
        ...


class APIResourceClient:
    """
    A resource client over the real cluster API.

    It does not own the connection context: the context is created and closed
    by the caller, and can be shared by several clients.
    """

    def __init__(
            self,
            context: auth.APIContext,
            *,
            settings: configuration.InformerSettings | None = None,
            logger: typedefs.Logger = logger,
    ) -> None:
        super().__init__()
        self.context = context
        self.settings = settings if settings is not None else configuration.InformerSettings()
        self.logger = logger

    async def create(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        return await creating.create_obj(
            context=self.context,
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            body=body,
            logger=self.logger,
        )

    async def delete(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            name: str,
    ) -> None:
        await deleting.delete_obj(
            context=self.context,
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            name=name,
            logger=self.logger,
        )

    async def watch(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            *,
            since: str | None = None,
    ) -> AsyncGenerator[bodies.RawEvent, None]:
        stream = watching.watch_objs(
            context=self.context,
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            since=since,
            logger=self.logger,
        )
        async with contextlib.aclosing(stream):
            async for raw_event in stream:
                yield raw_event

    # Declared last: the method's name shadows the builtin in the class body's annotations.
    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            *,
            label_selector: str | None = None,
    ) -> Snapshot:
        items, resource_version = await fetching.list_objs(
            context=self.context,
            settings=self.settings,
            resource=resource,
            namespace=namespace,
            label_selector=label_selector,
            logger=self.logger,
        )
        return Snapshot(items=list(items), resource_version=resource_version)
