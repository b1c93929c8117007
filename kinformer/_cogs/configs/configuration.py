"""
All configuration flags, options, settings to fine-tune the informer.

All settings are grouped semantically just for convenience
(instead of a flat mega-object with all the values in it).

Some of the settings are flags, some are scalars, some are optional,
some are not (but all of them have reasonable defaults).
The CLI options override some of them; the rest can be changed
in the code before the informer is started.
"""
import concurrent.futures
import dataclasses
from collections.abc import Iterable


@dataclasses.dataclass
class NetworkingSettings:

    request_timeout: float | None = 5 * 60  # == aiohttp.client.DEFAULT_TIMEOUT
    """
    A timeout for the API requests (not the watch-streams, see `WatchingSettings`).
    """

    connect_timeout: float | None = None
    """
    A timeout for the TCP/SSL connection to the API, if it differs from the total timeout.
    """

    error_backoffs: Iterable[float] = (1, 1, 2, 3, 5)
    """
    Backoff intervals in case of transient errors of the single API requests:
    the connection errors, the timeouts, the HTTP 5xx statuses.

    The last failed attempt is escalated to the caller as an error.
    To disable the retries (e.g. in tests), set it to ``[]`` or ``()``.
    """


@dataclasses.dataclass
class WatchingSettings:

    server_timeout: float | None = None
    """
    The maximum duration of one streaming request. Patched in some tests.
    If ``None``, then obey the server-side timeouts (they seem to be random).
    """

    client_timeout: float | None = None
    """
    An HTTP/HTTPS session timeout to use in watch requests.
    """

    connect_timeout: float | None = None
    """
    An HTTP/HTTPS connection timeout to use in watch requests.
    """

    reconnect_backoff: float = 0.1
    """
    How long should a pause be between the re-listings (to prevent API flooding).

    This is the initial delay: with consecutive errors, it grows exponentially
    by `backoff_factor`, up to `backoff_cap`, and resets to this value again
    as soon as a watch-stream delivers at least one event.
    """

    backoff_factor: float = 2.0
    """
    How fast the reconnection delay grows with every consecutive error.
    """

    backoff_cap: float = 30.0
    """
    The maximum reconnection delay, no matter how many errors have happened.
    """

    backoff_jitter: float = 0.5
    """
    Which share of the reconnection delay is randomised (from 0.0 to 1.0).

    The jitter spreads the reconnections of many clients over time,
    so that they do not hammer a recovering server all at once.
    """


@dataclasses.dataclass
class QueueingSettings:

    maxsize: int = 0
    """
    How many change events can be queued for dispatching.
    If ``0``, the queue is unbounded. Otherwise, the reflector blocks
    when the queue is full until the dispatcher takes the events out.
    """

    exit_timeout: float = 5.0
    """
    How long to wait for the dispatcher to finish its in-flight callbacks
    when the informer is stopping. After that, the dispatcher is cancelled.
    """


@dataclasses.dataclass
class DispatchingSettings:

    callback_timeout: float | None = 60.0
    """
    How long a single callback can run before it is abandoned as failed.
    If ``None``, the callbacks can run forever and block the dispatching.

    Note that the synchronous callbacks cannot be interrupted: they continue
    in their threads, but the dispatcher proceeds with the next callbacks.
    """


@dataclasses.dataclass
class ExecutionSettings:
    """
    Settings for synchronous callbacks execution (e.g. thread-/process-pools).
    """

    executor: concurrent.futures.Executor = dataclasses.field(
        default_factory=concurrent.futures.ThreadPoolExecutor)
    """
    The executor to be used for synchronous callback invocation.
    """


@dataclasses.dataclass
class InformerSettings:
    networking: NetworkingSettings = dataclasses.field(default_factory=NetworkingSettings)
    watching: WatchingSettings = dataclasses.field(default_factory=WatchingSettings)
    queueing: QueueingSettings = dataclasses.field(default_factory=QueueingSettings)
    dispatching: DispatchingSettings = dataclasses.field(default_factory=DispatchingSettings)
    execution: ExecutionSettings = dataclasses.field(default_factory=ExecutionSettings)
