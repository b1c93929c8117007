"""
The main kinformer module for all the exported functions & classes.
"""
# isort: skip_file

# Unlike all other places, where we import other modules and refer
# the functions via the modules, this is the package's top-level interface,
# as it is seen by the users. So, we export the individual functions.

from kinformer._cogs.clients.auth import (
    APIContext,
)
from kinformer._cogs.clients.errors import (
    APIError,
    APIClientError,
    APIServerError,
    APIUnauthorizedError,
    APIForbiddenError,
    APINotFoundError,
    APIConflictError,
    APIAlreadyExistsError,
    APIExpiredError,
    APIUnavailableError,
)
from kinformer._cogs.clients.resources import (
    ResourceClient,
    APIResourceClient,
    Snapshot,
)
from kinformer._cogs.clients.watching import (
    WatchingError,
)
from kinformer._cogs.configs.configuration import (
    InformerSettings,
)
from kinformer._cogs.helpers.typedefs import (
    Logger,
)
from kinformer._cogs.helpers.versions import (
    version as __version__,
)
from kinformer._cogs.structs.bodies import (
    RawBody,
    RawEvent,
    ObjectKey,
    build_object_reference,
)
from kinformer._cogs.structs.credentials import (
    LoginError,
    ConnectionInfo,
)
from kinformer._cogs.structs.references import (
    Resource,
    NAMESPACES,
    PODS,
)
from kinformer._cogs.structs.stores import (
    Store,
)
from kinformer._core.actions.loggers import (
    configure,
    LogFormat,
    ObjectLogger,
)
from kinformer._core.engines.sequencing import (
    SequenceError,
    NamespaceListingError,
    NamespaceCreationError,
    PodCreationError,
    PodListingError,
    PodDeletionError,
    NamespaceDeletionError,
    SimplePod,
    run_sequence,
    cleanup_sequence,
    demo,
)
from kinformer._core.intents.piggybacking import (
    login_with_kubeconfig,
)
from kinformer._core.reactor.dispatching import (
    Registry,
    RegistrationHandle,
)
from kinformer._core.reactor.queueing import (
    ChangeEvent,
    DeltaQueue,
    EventType,
    QueueClosed,
)
from kinformer._core.reactor.running import (
    Informer,
)

__all__ = [
    'APIContext',
    'APIError', 'APIClientError', 'APIServerError',
    'APIUnauthorizedError', 'APIForbiddenError', 'APINotFoundError',
    'APIConflictError', 'APIAlreadyExistsError', 'APIExpiredError',
    'APIUnavailableError',
    'ResourceClient', 'APIResourceClient', 'Snapshot',
    'WatchingError',
    'InformerSettings',
    'Logger',
    'RawBody', 'RawEvent', 'ObjectKey', 'build_object_reference',
    'LoginError', 'ConnectionInfo', 'login_with_kubeconfig',
    'Resource', 'NAMESPACES', 'PODS',
    'Store',
    'configure', 'LogFormat', 'ObjectLogger',
    'SequenceError',
    'NamespaceListingError', 'NamespaceCreationError', 'PodCreationError',
    'PodListingError', 'PodDeletionError', 'NamespaceDeletionError',
    'SimplePod', 'run_sequence', 'cleanup_sequence', 'demo',
    'Registry', 'RegistrationHandle',
    'ChangeEvent', 'DeltaQueue', 'EventType', 'QueueClosed',
    'Informer',
]
