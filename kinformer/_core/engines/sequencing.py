"""
The demo sequence: a few typical cluster operations, observed by an informer.

The sequence goes step by step, each step depends on the previous ones:

1. List all namespaces.
2. Create the namespace (``aerospike`` by default).
3. Create the ``hello-world`` pod in it (with the ``hello-world`` image).
4. List the pods across all namespaces by a label (``k8s-app=kube-dns``).

The cleanup goes in the reverse order:

1. Delete the ``hello-world`` pod.
2. Delete the namespace.

Meanwhile, the informer watches all the pods in the cluster and logs their
additions, modifications, deletions -- including those made by the sequence.

Every failed step aborts the sequence with its own error, with the underlying
API error as its cause. Nothing is retried at the level of the sequence:
the transient errors are retried at the level of the individual API requests.
"""
import asyncio
import logging
import signal
import threading
from typing import Any, NamedTuple

from kinformer._cogs.clients import auth, resources
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, credentials, references
from kinformer._core.intents import piggybacking
from kinformer._core.reactor import running

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE = 'aerospike'
DEFAULT_LABEL = 'k8s-app=kube-dns'
HELLO_WORLD = 'hello-world'


class SequenceError(Exception):
    """ A step of the demo sequence has failed; the cause is chained. """


class NamespaceListingError(SequenceError):
    pass


class NamespaceCreationError(SequenceError):
    pass


class PodCreationError(SequenceError):
    pass


class PodListingError(SequenceError):
    pass


class PodDeletionError(SequenceError):
    pass


class NamespaceDeletionError(SequenceError):
    pass


class SimplePod(NamedTuple):
    """ A minimal identity of a pod for the logs. """
    name: str | None
    namespace: str | None

    @classmethod
    def from_body(cls, body: bodies.RawBody) -> "SimplePod":
        metadata = body.get('metadata', {})
        return cls(name=metadata.get('name'), namespace=metadata.get('namespace'))


def build_namespace(name: str) -> bodies.RawBody:
    return {
        'apiVersion': references.NAMESPACES.api_version,
        'kind': references.NAMESPACES.kind,
        'metadata': {'name': name},
    }


def build_pod(namespace: str, name: str = HELLO_WORLD, image: str = HELLO_WORLD) -> bodies.RawBody:
    return {
        'apiVersion': references.PODS.api_version,
        'kind': references.PODS.kind,
        'metadata': {'name': name, 'namespace': namespace},
        'spec': {'containers': [{'name': name, 'image': image}]},
    }


async def run_sequence(
        *,
        client: resources.ResourceClient,
        logger: typedefs.Logger = logger,
        namespace: str = DEFAULT_NAMESPACE,
        label: str = DEFAULT_LABEL,
) -> list[SimplePod]:
    """
    Run the main steps of the sequence; return the pods found by the label.
    """
    ns = references.NamespaceName(namespace)

    try:
        snapshot = await client.list(references.NAMESPACES)
    except Exception as e:
        raise NamespaceListingError(f"Failed to list namespaces: {e}") from e
    names = [body.get('metadata', {}).get('name') for body in snapshot.items]
    logger.info(f"Cluster namespaces: {names!r}")

    try:
        await client.create(references.NAMESPACES, None, build_namespace(namespace))
    except Exception as e:
        raise NamespaceCreationError(f"Failed to create {namespace!r} namespace: {e}") from e
    logger.info(f"Created a new namespace {namespace!r}.")

    try:
        await client.create(references.PODS, ns, build_pod(namespace))
    except Exception as e:
        raise PodCreationError(f"Failed to create {HELLO_WORLD!r} pod: {e}") from e
    logger.info(f"Created {HELLO_WORLD!r} pod in {namespace!r}.")

    try:
        snapshot = await client.list(references.PODS, None, label_selector=label)
    except Exception as e:
        raise PodListingError(f"Failed to list pods with label {label!r}: {e}") from e
    pods = [SimplePod.from_body(body) for body in snapshot.items]
    logger.info(f"Pods with label {label!r}: {pods!r}")
    return pods


async def cleanup_sequence(
        *,
        client: resources.ResourceClient,
        logger: typedefs.Logger = logger,
        namespace: str = DEFAULT_NAMESPACE,
) -> None:
    """
    Delete what the main sequence has created, in the reverse order.
    """
    ns = references.NamespaceName(namespace)

    try:
        await client.delete(references.PODS, ns, HELLO_WORLD)
    except Exception as e:
        raise PodDeletionError(f"Failed to delete {HELLO_WORLD!r} pod: {e}") from e
    logger.info(f"Deleted {HELLO_WORLD!r} pod from {namespace!r}.")

    try:
        await client.delete(references.NAMESPACES, None, namespace)
    except Exception as e:
        raise NamespaceDeletionError(f"Failed to delete {namespace!r} namespace: {e}") from e
    logger.info(f"Deleted {namespace!r} namespace.")


async def on_pod_add(*, body: bodies.RawBody, logger: typedefs.Logger, **_: Any) -> None:
    logger.info(f"Informer received a pod creation event: {SimplePod.from_body(body)!r}")


async def on_pod_update(
        *,
        old: bodies.RawBody,
        new: bodies.RawBody,
        logger: typedefs.Logger,
        **_: Any,
) -> None:
    logger.info(f"Informer received a pod update event: "
                f"{SimplePod.from_body(old)!r} -> {SimplePod.from_body(new)!r}")


async def on_pod_delete(*, body: bodies.RawBody, logger: typedefs.Logger, **_: Any) -> None:
    logger.info(f"Informer received a pod deletion event: {SimplePod.from_body(body)!r}")


def make_informer(
        *,
        client: resources.ResourceClient,
        settings: configuration.InformerSettings | None = None,
        namespace: references.Namespace = None,
        logger: typedefs.Logger = logger,
) -> running.Informer:
    """ An informer for pods which logs all their changes. """
    informer = running.Informer(
        client=client,
        resource=references.PODS,
        namespace=namespace,
        settings=settings,
        logger=logger,
    )
    informer.add_event_handler(on_add=on_pod_add, on_update=on_pod_update, on_delete=on_pod_delete)
    return informer


async def demo(
        *,
        client: resources.ResourceClient,
        settings: configuration.InformerSettings | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        label: str = DEFAULT_LABEL,
        sync_timeout: float | None = 30.0,
        settle_timeout: float | None = 10.0,
        logger: typedefs.Logger = logger,
) -> list[SimplePod]:
    """
    Run the whole demo: the informer, the sequence, the cleanup.

    Before stopping the informer, it waits (a bit) for the pod's deletion to be
    delivered, so that the whole lifecycle of the pod is seen in the logs.
    """
    pod_key = bodies.ObjectKey(references.NamespaceName(namespace), HELLO_WORLD)
    pod_gone = asyncio.Event()

    async def notice_deletion(*, body: bodies.RawBody, **_: Any) -> None:
        if bodies.get_key(body) == pod_key:
            pod_gone.set()

    informer = make_informer(client=client, settings=settings, logger=logger)
    informer.add_event_handler(on_delete=notice_deletion)
    async with informer:
        if not await informer.wait_for_sync(timeout=sync_timeout):
            logger.warning(f"The pods are not listed in {sync_timeout} seconds; proceeding anyway.")

        pods = await run_sequence(client=client, logger=logger, namespace=namespace, label=label)
        await cleanup_sequence(client=client, logger=logger, namespace=namespace)

        try:
            await asyncio.wait_for(pod_gone.wait(), timeout=settle_timeout)
        except asyncio.TimeoutError:
            logger.warning(f"The deletion of {HELLO_WORLD!r} pod is not seen "
                           f"in {settle_timeout} seconds; stopping anyway.")
    return pods


async def observe(
        *,
        client: resources.ResourceClient,
        stop_flag: asyncio.Event,
        settings: configuration.InformerSettings | None = None,
        namespace: references.Namespace = None,
        logger: typedefs.Logger = logger,
) -> None:
    """ Log the changes of the pods until stopped. """
    async with make_informer(client=client, settings=settings, namespace=namespace, logger=logger):
        await stop_flag.wait()


async def connect(
        *,
        kubeconfig: str | None = None,
        logger: typedefs.Logger = logger,
) -> auth.APIContext:
    """ Read the credentials and open a connection context to the cluster. """
    logger.info("Connecting to the cluster.")
    info: credentials.ConnectionInfo = piggybacking.login_with_kubeconfig(kubeconfig, logger=logger)
    return auth.APIContext(info)


async def execute(
        *,
        client: resources.ResourceClient | None = None,
        kubeconfig: str | None = None,
        settings: configuration.InformerSettings | None = None,
        namespace: str = DEFAULT_NAMESPACE,
        label: str = DEFAULT_LABEL,
        settle_timeout: float | None = 10.0,
) -> list[SimplePod]:
    """
    Connect to the cluster (unless the client is given) and run the demo.
    """
    if client is not None:
        return await demo(client=client, settings=settings, namespace=namespace, label=label,
                          settle_timeout=settle_timeout)

    async with await connect(kubeconfig=kubeconfig) as context:
        api_client = resources.APIResourceClient(context, settings=settings)
        return await demo(client=api_client, settings=settings, namespace=namespace, label=label,
                          settle_timeout=settle_timeout)


async def watch(
        *,
        client: resources.ResourceClient | None = None,
        kubeconfig: str | None = None,
        settings: configuration.InformerSettings | None = None,
        namespace: references.Namespace = None,
        stop_flag: asyncio.Event | None = None,
) -> None:
    """
    Connect to the cluster (unless the client is given) and log the pods' changes.

    Stops when the stop-flag is set, or on SIGINT/SIGTERM if no flag is given.
    """
    if stop_flag is None:
        stop_flag = asyncio.Event()
        install_signal_handlers(stop_flag)

    if client is not None:
        await observe(client=client, settings=settings, namespace=namespace, stop_flag=stop_flag)
        return

    async with await connect(kubeconfig=kubeconfig) as context:
        api_client = resources.APIResourceClient(context, settings=settings)
        await observe(client=api_client, settings=settings, namespace=namespace, stop_flag=stop_flag)


def install_signal_handlers(stop_flag: asyncio.Event) -> None:
    """ On Ctrl+C or pod termination, stop gracefully. """
    if threading.current_thread() is threading.main_thread():
        loop = asyncio.get_running_loop()
        # Handle NotImplementedError when ran on Windows since asyncio only supports Unix signals
        try:
            loop.add_signal_handler(signal.SIGINT, stop_flag.set)
            loop.add_signal_handler(signal.SIGTERM, stop_flag.set)
        except NotImplementedError:
            logger.warning("OS signals are ignored: can't add signal handler in Windows.")
    else:
        logger.warning("OS signals are ignored: running not in the main thread.")
