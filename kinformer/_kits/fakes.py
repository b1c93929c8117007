"""
An in-memory cluster API for tests and demos without a real cluster.

The fake client keeps the objects of every resource in memory, versions every
change with a global counter (as the real API server does), and keeps the
history of changes to serve the watch-streams from any recent version.

The tests can also simulate the misbehaviour of the cluster:

* `fail` -- inject an error into the next call(s) of an operation.
* `expire` -- compact the history, so that the watches from the old versions
  and the currently open watches fail with "410 Gone".
* `close_watches` -- end all currently open watch-streams normally.
* `modify` -- change an object "server-side" to get a modification event.

The client follows the namespace semantics of the real API: the namespaced
objects can only be created in the existing namespaces, and the deletion
of a namespace deletes all the objects in it.
"""
import asyncio
import copy
import uuid
from collections.abc import AsyncGenerator, Iterable, Mapping

from kinformer._cogs.clients import errors, resources
from kinformer._cogs.structs import bodies, references

DEFAULT_NAMESPACES = ('default', 'kube-system')


class FakeResourceClient:

    def __init__(
            self,
            *,
            namespaces: Iterable[str] = DEFAULT_NAMESPACES,
    ) -> None:
        super().__init__()
        self._version = 0
        self._objects: dict[references.Resource, dict[bodies.ObjectKey, bodies.RawBody]] = {}
        self._history: dict[references.Resource, list[tuple[int, bodies.RawEvent]]] = {}
        self._compacted: dict[references.Resource, int] = {}
        self._failures: dict[str, list[BaseException]] = {}
        self._generation = 0  # increased to close all open watch-streams
        self._expiry = 0  # increased to expire all open watch-streams
        self._changed = asyncio.Condition()
        for namespace in namespaces:
            self.seed(references.NAMESPACES, {'metadata': {'name': namespace}})

    @property
    def resource_version(self) -> str:
        return str(self._version)

    def seed(self, resource: references.Resource, *objs: bodies.RawBody) -> None:
        """
        Put the objects into the cluster before the test starts watching it.

        No checks are made (e.g. of namespace existence), the open watch-streams
        are not notified, but the changes are in the history as additions.
        """
        for obj in objs:
            self._commit(resource, 'ADDED', self._prepare(resource, obj))

    def fail(self, operation: str, exc: BaseException, *, times: int = 1) -> None:
        """
        Raise an error in the next call(s) of the operation.

        The operations are: ``list``, ``create``, ``delete``, ``watch``.
        """
        self._failures.setdefault(operation, []).extend([exc] * times)

    async def modify(self, resource: references.Resource, body: bodies.RawBody) -> bodies.RawBody:
        """ Replace the object as if it was changed by someone else, server-side. """
        key = bodies.get_key(body)
        if key not in self._objects.get(resource, {}):
            raise self._not_found(resource, key.name)
        old = self._objects[resource][key]
        new = copy.deepcopy(body)
        new.setdefault('metadata', {})['uid'] = old.get('metadata', {}).get('uid', '')
        self._commit(resource, 'MODIFIED', new)
        await self._notify()
        return copy.deepcopy(new)

    async def expire(self, resource: references.Resource) -> None:
        """ Forget the history of the resource; make the open watch-streams fail. """
        self._compacted[resource] = self._version
        self._history[resource] = []
        self._expiry += 1
        await self._notify()

    async def close_watches(self) -> None:
        """ End all open watch-streams normally, as on the server-side timeout. """
        self._generation += 1
        await self._notify()

    async def create(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            body: bodies.RawBody,
    ) -> bodies.RawBody:
        self._check_failures('create')
        body_namespace = body.get('metadata', {}).get('namespace')
        if resource.namespaced and None not in (namespace, body_namespace) and body_namespace != namespace:
            raise errors.APIClientError(
                errors.make_status(400, 'BadRequest', "The namespace of the provided object "
                                   "does not match the namespace sent on the request."), status=400)
        obj = self._prepare(resource, body, namespace=namespace)
        key = bodies.get_key(obj)
        if resource.namespaced and key.namespace is None:
            raise errors.APIClientError(
                errors.make_status(400, 'BadRequest', "The namespace is required."), status=400)
        namespace_key = bodies.ObjectKey(None, key.namespace)
        if resource.namespaced and namespace_key not in self._objects.get(references.NAMESPACES, {}):
            raise self._not_found(references.NAMESPACES, str(key.namespace))
        if key in self._objects.get(resource, {}):
            status = errors.make_status(409, 'AlreadyExists',
                                        f'{resource.plural} "{key.name}" already exists')
            raise errors.APIAlreadyExistsError(status, status=409)
        self._commit(resource, 'ADDED', obj)
        await self._notify()
        return copy.deepcopy(obj)

    async def delete(
            self,
            resource: references.Resource,
            namespace: references.Namespace,
            name: str,
    ) -> None:
        self._check_failures('delete')
        key = bodies.ObjectKey(namespace if resource.namespaced else None, name)
        if key not in self._objects.get(resource, {}):
            raise self._not_found(resource, name)

        # The namespace's content goes first, as the real namespace controller does.
        if resource == references.NAMESPACES:
            for other, objs in self._objects.items():
                for obj in [obj for obj_key, obj in objs.items() if obj_key.namespace == name]:
                    self._commit(other, 'DELETED', copy.deepcopy(obj))

        self._commit(resource, 'DELETED', copy.deepcopy(self._objects[resource][key]))
        await self._notify()

    async def watch(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            *,
            since: str | None = None,
    ) -> AsyncGenerator[bodies.RawEvent, None]:
        self._check_failures('watch')
        generation = self._generation
        expiry = self._expiry
        seen = int(since) if since else self._version
        if seen < self._compacted.get(resource, 0):
            raise self._expired(resource)

        while True:
            latest = self._version
            for version, raw_event in list(self._history.get(resource, [])):
                if version > seen:
                    seen = version
                    if namespace is None or bodies.get_key(raw_event['object']).namespace == namespace:
                        yield copy.deepcopy(raw_event)
            seen = max(seen, latest)

            async with self._changed:
                await self._changed.wait_for(
                    lambda: (self._generation != generation or
                             self._expiry != expiry or
                             self._version > seen))

            if self._generation != generation:
                return
            if self._expiry != expiry:
                raise self._expired(resource)

    def _prepare(
            self,
            resource: references.Resource,
            body: bodies.RawBody,
            *,
            namespace: references.Namespace = None,
    ) -> bodies.RawBody:
        obj = copy.deepcopy(body)
        meta = obj.setdefault('metadata', {})
        if resource.namespaced and namespace is not None:
            meta.setdefault('namespace', namespace)
        if not resource.namespaced:
            meta.pop('namespace', None)
        meta.setdefault('uid', str(uuid.uuid4()))
        obj.setdefault('apiVersion', resource.api_version)
        if resource.kind is not None:
            obj.setdefault('kind', resource.kind)
        return obj

    def _commit(self, resource: references.Resource, type: str, obj: bodies.RawBody) -> None:
        self._version += 1
        obj.setdefault('metadata', {})['resourceVersion'] = str(self._version)
        key = bodies.get_key(obj)
        objs = self._objects.setdefault(resource, {})
        if type == 'DELETED':
            objs.pop(key, None)
        else:
            objs[key] = copy.deepcopy(obj)
        raw_event = bodies.RawEvent(type=type, object=copy.deepcopy(obj))  # type: ignore
        self._history.setdefault(resource, []).append((self._version, raw_event))

    async def _notify(self) -> None:
        async with self._changed:
            self._changed.notify_all()

    def _check_failures(self, operation: str) -> None:
        failures = self._failures.get(operation)
        if failures:
            raise failures.pop(0)

    @staticmethod
    def _not_found(resource: references.Resource, name: str) -> errors.APINotFoundError:
        status = errors.make_status(404, 'NotFound', f'{resource.plural} "{name}" not found')
        return errors.APINotFoundError(status, status=404)

    @staticmethod
    def _expired(resource: references.Resource) -> errors.APIExpiredError:
        status = errors.make_status(410, 'Expired', f'too old resource version for {resource.plural}')
        return errors.APIExpiredError(status, status=410)

    # Declared last: the method's name shadows the builtin in the class body's annotations.
    async def list(
            self,
            resource: references.Resource,
            namespace: references.Namespace = None,
            *,
            label_selector: str | None = None,
    ) -> resources.Snapshot:
        self._check_failures('list')
        items = [
            copy.deepcopy(obj) for key, obj in self._objects.get(resource, {}).items()
            if (namespace is None or key.namespace == namespace)
            and match_labels(label_selector, bodies.get_labels(obj))
        ]
        return resources.Snapshot(items=items, resource_version=self.resource_version)


def match_labels(selector: str | None, labels: Mapping[str, str]) -> bool:
    """
    Check the labels against an equality-based label selector.

    Supported are: ``key=value``, ``key==value``, ``key!=value``, ``key``, ``!key``,
    comma-separated for a conjunction. The set-based selectors are not supported.
    """
    for term in (selector or '').split(','):
        term = term.strip()
        if not term:
            continue
        elif '!=' in term:
            key, value = (part.strip() for part in term.split('!=', 1))
            if labels.get(key) == value:
                return False
        elif '==' in term or '=' in term:
            key, value = (part.strip() for part in term.replace('==', '=').split('=', 1))
            if labels.get(key) != value:
                return False
        elif term.startswith('!'):
            if term[1:].strip() in labels:
                return False
        elif term not in labels:
            return False
    return True
