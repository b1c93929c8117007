"""
Cluster API errors.

The underlying client library (now, ``aiohttp``) can be replaced in the future.
We cannot rely on embedding its exceptions all over the code.
Hence, we have our own hierarchy of exceptions for the API errors.

The original errors of the client library are chained as the causes of our own
specialised errors -- for better explainability of errors in the stack traces.

The errors relevant for the informer and the demo sequence are:

* :class:`APINotFoundError` -- the object or its namespace does not exist.
* :class:`APIAlreadyExistsError` -- the object's identity collides on creation.
* :class:`APIExpiredError` -- the watch's resource version is too old (410 Gone);
  the reflector re-lists the collection, it is never escalated further.
* :class:`APIUnavailableError` -- the API cannot be reached at all (transport
  failures or timeouts, after all retries); transient, the reflector retries.
* :class:`APIServerError` -- the API has failed internally (5xx); transient too.

All other reasons are raised as the base error classes and are indistinguishable
from each other (except via the exception's fields).
"""
import collections.abc
import json
from typing import Collection

import aiohttp
from typing_extensions import Literal, TypedDict


class RawStatusCause(TypedDict):
    field: str
    reason: str
    message: str


class RawStatusDetails(TypedDict):
    name: str
    uid: str
    retryAfterSeconds: int
    kind: str
    group: str
    causes: Collection[RawStatusCause]


# https://kubernetes.io/docs/reference/generated/kubernetes-api/v1.19/#status-v1-meta
class RawStatus(TypedDict, total=False):
    apiVersion: str
    kind: Literal["Status"]
    code: int
    status: Literal["Success", "Failure"]
    reason: str
    message: str
    details: RawStatusDetails


class APIError(Exception):

    def __init__(
            self,
            payload: RawStatus | None,
            *,
            status: int,
    ) -> None:
        message = payload.get('message') if payload else None
        super().__init__(message, payload)
        self._status = status
        self._payload = payload

    @property
    def status(self) -> int:
        return self._status

    @property
    def code(self) -> int | None:
        return self._payload.get('code') if self._payload else None

    @property
    def reason(self) -> str | None:
        return self._payload.get('reason') if self._payload else None

    @property
    def message(self) -> str | None:
        return self._payload.get('message') if self._payload else None

    @property
    def details(self) -> RawStatusDetails | None:
        return self._payload.get('details') if self._payload else None


class APIClientError(APIError):
    pass


class APIServerError(APIError):
    pass


class APIUnauthorizedError(APIClientError):
    pass


class APIForbiddenError(APIClientError):
    pass


class APINotFoundError(APIClientError):
    pass


class APIConflictError(APIClientError):
    pass


class APIAlreadyExistsError(APIConflictError):
    pass


class APIExpiredError(APIClientError):
    pass


class APIUnavailableError(Exception):
    """
    Raised when the API cannot be reached: no response status, no payload.

    The original networking error (or timeout) is chained as the cause.
    """


def make_status(code: int, reason: str, message: str) -> RawStatus:
    """ Build a status payload as the API server would return in case of errors. """
    return RawStatus(apiVersion='v1', kind='Status', status='Failure',
                     code=code, reason=reason, message=message)


def get_error_class(status: int, payload: RawStatus | None) -> type[APIError]:
    reason = payload.get('reason') if payload else None
    return (
        APIUnauthorizedError if status == 401 else
        APIForbiddenError if status == 403 else
        APINotFoundError if status == 404 else
        APIAlreadyExistsError if status == 409 and reason == 'AlreadyExists' else
        APIConflictError if status == 409 else
        APIExpiredError if status == 410 else
        APIClientError if 400 <= status < 500 else
        APIServerError if 500 <= status < 600 else
        APIError
    )


async def check_response(
        response: aiohttp.ClientResponse,
) -> None:
    """
    Check for specialised API errors, and raise with extended information.
    """
    if response.status >= 400:

        # Read the response's body before it is closed by raise_for_status().
        payload: RawStatus | None
        try:
            payload = await response.json()
        except (json.JSONDecodeError, aiohttp.ContentTypeError, aiohttp.ClientConnectionError):
            payload = None

        # Better be safe: who knows which sensitive information can be dumped unless kind==Status.
        if not isinstance(payload, collections.abc.Mapping) or payload.get('kind') != 'Status':
            payload = None

        cls = get_error_class(response.status, payload)

        # Raise the specific error while keeping the original error in scope.
        # This call also closes the response's body, so it cannot be read afterwards.
        try:
            response.raise_for_status()
        except aiohttp.ClientResponseError as e:
            raise cls(payload, status=response.status) from e

