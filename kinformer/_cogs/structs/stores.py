"""
The local cache of the last-known objects of one resource collection.

The store is mutated only by the reflector (a single writer), but can be read
from anywhere: from the asyncio tasks, and from the threads of the executor
where the synchronous callbacks run. For this reason, it is guarded by a
threading lock rather than by an asyncio lock, and never awaits inside.

The values are stored as deep copies of the bodies given, and the readers
always get deep copies too: nobody can modify the cached state in place.

The lock is exclusive, also for the readers: the readers do not run
in parallel even with each other. But they hold it only to take the references
to the stored values, and make the deep copies after releasing it. The stored
values are never modified, only replaced, so the copies are consistent.
"""
import copy
import threading
from collections.abc import Collection, Iterable

from kinformer._cogs.structs import bodies


class Store:

    def __init__(self) -> None:
        super().__init__()
        self._lock = threading.Lock()
        self._items: dict[bodies.ObjectKey, bodies.RawBody] = {}

    def __repr__(self) -> str:
        return f'<{self.__class__.__name__}: {len(self)} objects>'

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._items

    def keys(self) -> Collection[bodies.ObjectKey]:
        with self._lock:
            return list(self._items)

    def get(self, key: bodies.ObjectKey) -> bodies.RawBody | None:
        with self._lock:
            body = self._items.get(key)
        return copy.deepcopy(body) if body is not None else None

    def upsert(self, body: bodies.RawBody) -> bodies.RawBody | None:
        """ Store the object's new state; return the previous state, if known. """
        key = bodies.get_key(body)
        value = copy.deepcopy(body)
        with self._lock:
            old = self._items.get(key)
            self._items[key] = value
        return old

    def remove(self, key: bodies.ObjectKey) -> bodies.RawBody | None:
        """ Forget the object; return its last-known state, if it was known. """
        with self._lock:
            return self._items.pop(key, None)

    def replace(
            self,
            items: Iterable[bodies.RawBody],
    ) -> tuple[dict[bodies.ObjectKey, bodies.RawBody], list[bodies.RawBody]]:
        """
        Replace the whole content at once, as with a fresh listing.

        Returns the previous states of the objects that remain (by their keys),
        and the last-known states of the objects that are now gone.
        The order of the objects is the order of the new listing.
        """
        values = {bodies.get_key(body): copy.deepcopy(body) for body in items}
        with self._lock:
            previous = self._items
            self._items = values
        kept = {key: body for key, body in previous.items() if key in values}
        removed = [body for key, body in previous.items() if key not in values]
        return kept, removed

    # Declared last: the method's name shadows the builtin in the class body's annotations.
    def list(self) -> list[bodies.RawBody]:
        """ All the objects in the order of their first appearance. """
        with self._lock:
            items = list(self._items.values())
        return copy.deepcopy(items)
