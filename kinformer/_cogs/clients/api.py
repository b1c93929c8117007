"""
Raw HTTP calls to the cluster's API, with retries of the transient errors.

Only the single requests are retried here, never the sequences of them:
a failed connection, a timeout, or an HTTP 5xx status is retried with the
configured backoffs, and escalated if the last attempt fails too.
Any other error of the API is escalated immediately.
"""
import asyncio
import json
from collections.abc import AsyncGenerator, AsyncIterator, Mapping
from typing import Any

import aiohttp

from kinformer._cogs.clients import auth, errors
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs

TRANSIENT_ERRORS = (aiohttp.ClientConnectionError, asyncio.TimeoutError, errors.APIServerError)


async def request(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> aiohttp.ClientResponse:
    """
    Make a request and return the successful response unparsed.

    The server errors (5xx) are escalated as they are, the connection errors
    and the timeouts as `APIUnavailableError` (with the original as the cause).
    The response must be closed by the caller.
    """
    if '://' not in url:
        url = context.server.rstrip('/') + '/' + url.lstrip('/')
    if timeout is None:
        timeout = aiohttp.ClientTimeout(
            total=settings.networking.request_timeout,
            sock_connect=settings.networking.connect_timeout,
        )

    what = f"{method.upper()} {url}"
    backoffs = list(settings.networking.error_backoffs)
    attempts = len(backoffs) + 1
    for attempt in range(1, attempts + 1):
        idx = f"#{attempt}/{attempts}"
        if attempt > 1:
            logger.debug(f"Request attempt {idx}: {what}")
        try:
            response = await context.session.request(
                method=method,
                url=url,
                json=payload,
                headers=headers,
                timeout=timeout,
            )
            await errors.check_response(response)
        except TRANSIENT_ERRORS as e:
            if attempt < attempts:
                logger.error(f"Request attempt {idx} failed; will retry: {what} -> {e!r}")
                await asyncio.sleep(backoffs[attempt - 1])
            elif isinstance(e, errors.APIServerError):
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise
            else:
                logger.error(f"Request attempt {idx} failed; escalating: {what} -> {e!r}")
                raise errors.APIUnavailableError(f"The API is unavailable: {what}") from e
        else:
            if attempt > 1:
                logger.debug(f"Request attempt {idx} succeeded: {what}")
            return response

    raise RuntimeError("The request is neither returned nor escalated.")  # for type-checkers


async def call(
        method: str,
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        payload: object | None = None,
        headers: Mapping[str, str] | None = None,
        logger: typedefs.Logger,
) -> Any:
    """ Make a request and return the parsed JSON of the response. """
    response = await request(method, url, payload=payload, headers=headers,
                             context=context, settings=settings, logger=logger)
    async with response:
        return await response.json()


async def get(url: str, **kwargs: Any) -> Any:
    return await call('get', url, **kwargs)


async def post(url: str, **kwargs: Any) -> Any:
    return await call('post', url, **kwargs)


async def delete(url: str, **kwargs: Any) -> Any:
    return await call('delete', url, **kwargs)


async def stream(
        url: str,  # relative to the server/api root.
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        timeout: aiohttp.ClientTimeout | None = None,
        logger: typedefs.Logger,
) -> AsyncGenerator[Any, None]:
    """
    Yield the parsed JSON-lines of a long-living response (e.g. a watch-stream).

    The response is closed when the stream ends on either side: exhausted,
    closed by the consumer (``aclose()``), or cancelled.
    """
    response = await request('get', url, timeout=timeout,
                             context=context, settings=settings, logger=logger)
    async with response:
        async for line in iter_jsonlines(response.content):
            yield json.loads(line.decode('utf-8'))


async def iter_jsonlines(
        content: aiohttp.StreamReader,
        chunk_size: int = 1024 * 1024,
) -> AsyncIterator[bytes]:
    """
    Split the content into the non-empty lines, however long they are.

    The aiohttp's own line iteration (``async for line in response.content``)
    fails on the lines above its buffer limit (128 KB), while a single object
    in a watch-stream can take megabytes.
    """
    tail = b''
    async for chunk in content.iter_chunked(chunk_size):
        *lines, tail = (tail + chunk).split(b'\n')
        for line in lines:
            if line:
                yield line
    if tail:
        yield tail
