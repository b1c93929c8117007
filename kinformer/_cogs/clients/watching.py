"""
Watching and streaming watch-events.

A watch-stream is a long-living GET request with ``?watch=true``: the server
keeps the connection open and sends the changes of the resource collection
as JSON lines, one event per line, starting after the given resource version.

The stream ends when the server decides so (usually on its own timeout),
when the connection breaks, or when the consumer stops iterating over it.
All of these are considered a normal end of the stream: the caller decides
whether to re-list & re-watch the collection or not.

The in-stream errors are converted to exceptions: the "410 Gone" error
(the resource version is too old) is raised as `APIExpiredError` the same way
as if it were returned as the HTTP status, all other errors as `WatchingError`.
"""
import asyncio
import contextlib
import logging
from collections.abc import AsyncGenerator
from typing import cast

import aiohttp

from kinformer._cogs.clients import api, auth, errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, references

logger = logging.getLogger(__name__)

HTTP_GONE_CODE = 410
KNOWN_EVENT_TYPES = frozenset(['ADDED', 'MODIFIED', 'DELETED'])


class WatchingError(Exception):
    """
    Raised when an unexpected error happens in the watch-stream API.
    """


async def watch_objs(
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        since: str | None = None,
        logger: typedefs.Logger = logger,
) -> AsyncGenerator[bodies.RawEvent, None]:
    """
    Watch objects of a specific resource type.

    The cluster-scoped call is used in two cases:

    * The resource itself is cluster-scoped, and namespacing makes not sense.
    * The namespace is not specified for the namespaced resource.

    Otherwise, the namespace-scoped call is used.
    """
    params: dict[str, str] = {}
    params['watch'] = 'true'
    if since is not None:
        params['resourceVersion'] = since
    if settings.watching.server_timeout is not None:
        params['timeoutSeconds'] = str(settings.watching.server_timeout)

    connect_timeout = (
        settings.watching.connect_timeout if settings.watching.connect_timeout is not None else
        settings.networking.connect_timeout if settings.networking.connect_timeout is not None else
        settings.networking.request_timeout
    )

    # Stream the parsed events from the response until it is closed server-side,
    # or until it is closed client-side by the consumer (e.g. on cancellation).
    stream = api.stream(
        url=resource.get_url(namespace=namespace, params=params),
        context=context,
        settings=settings,
        logger=logger,
        timeout=aiohttp.ClientTimeout(
            total=settings.watching.client_timeout,
            sock_connect=connect_timeout,
        ),
    )
    try:
        async with contextlib.aclosing(stream):
            async for raw_line in stream:
                raw_input = cast(bodies.RawInput, raw_line)
                raw_type = raw_input.get('type')
                raw_object = raw_input.get('object')

                # "410 Gone" is for the "resource version too old" error, we must re-list.
                # The resource versions are lost by the server after a few minutes.
                # It occurs when there is nothing happening for a few minutes. This is normal.
                if raw_type == 'ERROR' and (raw_object or {}).get('code') == HTTP_GONE_CODE:
                    status = cast(errors.RawStatus, raw_object)
                    raise errors.APIExpiredError(status, status=HTTP_GONE_CODE)

                if raw_type == 'ERROR':
                    raise WatchingError(f"Error in the watch-stream: {raw_object}")

                # Ensure that the event is something we understand and can handle.
                if raw_type not in KNOWN_EVENT_TYPES or not isinstance(raw_object, dict):
                    logger.warning(f"Ignoring an unsupported event type: {raw_input!r}")
                    continue

                yield cast(bodies.RawEvent, raw_input)

    except (aiohttp.ClientConnectionError, aiohttp.ClientPayloadError, asyncio.TimeoutError):
        pass
