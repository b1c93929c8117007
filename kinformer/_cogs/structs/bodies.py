"""
All the structures coming from/to the cluster API.

Everything marked "raw" is a plain unwrapped unprocessed data as JSON-decoded
from the API, usually as retrieved in watching or fetching API calls.
"Input" is a parsed JSON line as is, while "event" is an "input" without errors.
All non-used payload falls into `Any`, and is not type-checked.

The objects are never wrapped into classes: they are passed around as dicts,
and only the identifying fields are extracted where needed.
"""
from collections.abc import Mapping
from typing import Any, NamedTuple

from typing_extensions import Literal, TypedDict

from kinformer._cogs.structs import references

Labels = Mapping[str, str]


class RawMeta(TypedDict, total=False):
    uid: str
    name: str
    namespace: str
    labels: Labels
    annotations: Mapping[str, str]
    resourceVersion: str
    creationTimestamp: str


class RawBody(TypedDict, total=False):
    apiVersion: str
    kind: str
    metadata: RawMeta
    spec: Mapping[str, Any]
    status: Mapping[str, Any]


class RawError(TypedDict, total=False):
    apiVersion: str
    kind: Literal['Status']
    code: int
    status: str
    reason: str
    message: str


class RawInput(TypedDict, total=True):
    type: str
    object: RawBody | RawError


class RawEvent(TypedDict, total=True):
    type: Literal['ADDED', 'MODIFIED', 'DELETED']
    object: RawBody


class ObjectKey(NamedTuple):
    """ The identity of an object within one resource collection. """
    namespace: references.Namespace
    name: str

    def __str__(self) -> str:
        return f'{self.namespace}/{self.name}' if self.namespace else self.name


def get_key(body: RawBody) -> ObjectKey:
    namespace = body.get('metadata', {}).get('namespace') or None
    name = body.get('metadata', {}).get('name')
    if not name:
        raise ValueError(f"The object has no name and cannot be identified: {body!r}")
    return ObjectKey(references.NamespaceName(namespace) if namespace else None, name)


def get_version(body: RawBody | None) -> str | None:
    if body is None:
        return None
    return body.get('metadata', {}).get('resourceVersion')


def get_labels(body: RawBody) -> Labels:
    return body.get('metadata', {}).get('labels') or {}


def build_object_reference(body: RawBody) -> dict[str, str | None]:
    """
    Construct an object reference for the logs (not for the API).
    """
    return dict(
        apiVersion=body.get('apiVersion'),
        kind=body.get('kind'),
        name=body.get('metadata', {}).get('name'),
        uid=body.get('metadata', {}).get('uid'),
        namespace=body.get('metadata', {}).get('namespace'),
    )
