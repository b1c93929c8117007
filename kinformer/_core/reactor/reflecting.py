"""
The reflector: mirroring of one resource collection into the local store.

The reflector lists the collection, replaces the store's content with the
listing, and then watches the collection from the listing's resource version,
applying every change to the store. Every change of the store is reported
to the delta queue as a change event, in the same order as it was applied.

Whenever the watch-stream ends (normally or due to an error), or the resource
version expires ("410 Gone"), the reflector forgets where it was, sleeps a bit,
and lists the collection again -- to resync the store with the cluster.
The objects that have disappeared in the meantime are reported as deleted,
the objects that have changed are reported as modified, the new ones as added.
The objects unchanged (by their resource version) are not reported at all.

The reflector never stops on its own: only when cancelled by the informer,
or when the delta queue is closed (i.e. nobody listens anymore).
The errors are logged, but never escalated: the observers do not see them,
except as the absence of changes for the duration of the outage.
"""
import asyncio
import contextlib
import logging
import random

from kinformer._cogs.clients import errors, resources
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, references, stores
from kinformer._core.reactor import queueing

logger = logging.getLogger(__name__)

# Beyond this, the exponent only overflows the float; the cap is reached long before.
MAX_BACKOFF_EXPONENT = 64


async def reflect(
        *,
        client: resources.ResourceClient,
        resource: references.Resource,
        namespace: references.Namespace,
        store: stores.Store,
        queue: queueing.DeltaQueue,
        settings: configuration.InformerSettings,
        logger: typedefs.Logger = logger,
        synced: asyncio.Event | None = None,
        since: str | None = None,
        _iterations: int | None = None,  # used in tests/mocks/fixtures
) -> None:
    """
    Mirror the collection into the store until cancelled or the queue is closed.

    If the resume point (``since``) is known, the store is assumed to be in sync
    with the cluster as of that version, and the first listing is skipped:
    the watch-stream starts from that version right away. Once that stream ends
    or expires, the reflector re-lists as usual.
    """
    where = f'in {namespace!r}' if namespace is not None else 'cluster-wide'
    logger.debug(f"Starting the reflector for {resource} {where}.")
    resource_version = since
    failures = 0
    try:
        while _iterations is None or _iterations > 0:  # equivalent to `while True` in non-test mode
            _iterations = None if _iterations is None else _iterations - 1
            try:
                if resource_version is None:
                    resource_version = await relist(
                        client=client,
                        resource=resource,
                        namespace=namespace,
                        store=store,
                        queue=queue,
                        logger=logger,
                    )
                else:
                    logger.debug(f"Resuming the watch of {resource} {where} "
                                 f"from version {resource_version!r}.")

                if synced is not None and not synced.is_set():
                    logger.debug(f"The initial state of {resource} {where} is in the store.")
                    synced.set()

                # Whatever happens to this stream, the next cycle starts with a listing.
                watched_version, resource_version = resource_version, None
                stream = client.watch(resource, namespace, since=watched_version)
                async with contextlib.aclosing(stream):
                    async for raw_event in stream:
                        failures = 0
                        await apply_event(
                            raw_event=raw_event,
                            store=store,
                            queue=queue,
                            logger=logger,
                        )

                logger.debug(f"The watch-stream for {resource} {where} has ended; re-listing.")

            except errors.APIExpiredError:
                logger.debug(f"The resource version of {resource} {where} has expired; re-listing.")
            except queueing.QueueClosed:
                logger.debug(f"The delta queue for {resource} {where} is closed; stopping.")
                return
            except Exception as e:
                failures += 1
                logger.error(f"Reflecting {resource} {where} has failed "
                             f"({failures} time(s) in a row); re-listing: {e!r}")

            await asyncio.sleep(get_backoff(settings=settings, failures=failures))
    finally:
        logger.debug(f"Stopping the reflector for {resource} {where}.")


async def relist(
        *,
        client: resources.ResourceClient,
        resource: references.Resource,
        namespace: references.Namespace,
        store: stores.Store,
        queue: queueing.DeltaQueue,
        logger: typedefs.Logger = logger,
) -> str | None:
    """
    List the collection, replace the store, report the differences.

    Returns the resource version of the listing to watch from.
    """
    snapshot = await client.list(resource, namespace)
    kept, removed = store.replace(snapshot.items)
    logger.debug(f"Listed {len(snapshot.items)} {resource.plural} at version "
                 f"{snapshot.resource_version!r}; {len(removed)} are gone since the last listing.")

    events: list[queueing.ChangeEvent] = []
    for body in snapshot.items:
        old = kept.get(bodies.get_key(body))
        version = bodies.get_version(body)
        if old is None:
            events.append(queueing.ChangeEvent(
                type=queueing.EventType.ADDED, object=body, resource_version=version))
        elif bodies.get_version(old) != version:
            events.append(queueing.ChangeEvent(
                type=queueing.EventType.MODIFIED, object=body, old=old, resource_version=version))

    for body in removed:
        events.append(queueing.ChangeEvent(
            type=queueing.EventType.DELETED, object=body, old=body,
            resource_version=bodies.get_version(body)))

    # All at once: the store already has the changes, so none of them may be lost.
    await queue.put(*events)
    return snapshot.resource_version


async def apply_event(
        *,
        raw_event: bodies.RawEvent,
        store: stores.Store,
        queue: queueing.DeltaQueue,
        logger: typedefs.Logger = logger,
) -> None:
    """
    Apply a single watch-event to the store, and report it if it is a change.

    The additions of the already known objects are treated as modifications,
    and the modifications of the unknown objects as additions -- as it can be
    seen after a resync. If the resource version is the same as known,
    nothing has changed, and nothing is reported (e.g. a repeated event).
    """
    body = raw_event['object']
    version = bodies.get_version(body)
    event: queueing.ChangeEvent
    match raw_event['type']:
        case 'DELETED':
            old = store.remove(bodies.get_key(body))
            event = queueing.ChangeEvent(
                type=queueing.EventType.DELETED, object=body, old=old, resource_version=version)
        case 'ADDED' | 'MODIFIED':
            old = store.upsert(body)
            if old is None:
                event = queueing.ChangeEvent(
                    type=queueing.EventType.ADDED, object=body, resource_version=version)
            elif bodies.get_version(old) != version:
                event = queueing.ChangeEvent(
                    type=queueing.EventType.MODIFIED, object=body, old=old, resource_version=version)
            else:
                return
        case _:
            logger.warning(f"Ignoring an unsupported event type: {raw_event['type']!r}")
            return

    logger.debug(f"Reflected {event.type} of {event.key} at version {version!r}.")
    await queue.put(event)


def get_backoff(
        *,
        settings: configuration.InformerSettings,
        failures: int,
) -> float:
    """
    Calculate the delay before the next listing, with a jitter.

    The delay grows exponentially with every consecutive failure, up to a cap.
    Without failures, it is the initial delay, to prevent the API flooding
    if the watch-streams end or expire too often.
    """
    watching = settings.watching
    exponent = min(failures, MAX_BACKOFF_EXPONENT)
    delay = min(watching.backoff_cap, watching.reconnect_backoff * watching.backoff_factor ** exponent)
    return delay * (1.0 - watching.backoff_jitter * random.random())
