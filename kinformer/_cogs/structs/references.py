"""
References to the resource collections and the namespaces in the cluster API.
"""
import dataclasses
import urllib.parse
from collections.abc import Mapping
from typing import NewType, Optional

# A name of an existing namespace (or presumably existing).
NamespaceName = NewType('NamespaceName', str)

# A namespace to list/watch/create in; `None` is for the whole cluster or for cluster-scoped objects.
Namespace = Optional[NamespaceName]


@dataclasses.dataclass(frozen=True)
class Resource:
    """
    A resource collection, e.g. the core pods: ``Resource('', 'v1', 'pods')``.

    Only the group, the version, and the plural name identify the collection:
    the kind and the scope are the hints for building the bodies and URLs,
    so they are not compared or hashed.
    """
    group: str  # e.g. "" for the core API, "apps", etc.
    version: str  # e.g. "v1", "v1beta1", etc.
    plural: str  # e.g. "pods", "namespaces", as used in the URLs.
    kind: str | None = dataclasses.field(default=None, compare=False)
    namespaced: bool | None = dataclasses.field(default=None, compare=False)

    def __repr__(self) -> str:
        return '.'.join(part for part in [self.plural, self.version, self.group] if part)

    @property
    def api_version(self) -> str:
        return f'{self.group}/{self.version}' if self.group else self.version

    def get_url(
            self,
            *,
            server: str | None = None,
            namespace: Namespace = None,
            name: str | None = None,
            params: Mapping[str, str] | None = None,
    ) -> str:
        """
        Build a URL of the collection, or of an object in it (if named).

        A namespace narrows the collection of the namespaced resources,
        and is mandatory for their individual objects. The cluster-scoped
        resources have no namespaces in their URLs at all.
        """
        if namespace is not None and not self.namespaced:
            raise ValueError("Specific namespaces are not supported for cluster-scoped resources.")
        if namespace is None and name is not None and self.namespaced:
            raise ValueError("Specific namespaces are required for specific namespaced resources.")

        path = ['/apis', self.group] if self.group else ['/api']
        path += [self.version]
        path += ['namespaces', namespace] if namespace is not None else []
        path += [self.plural]
        path += [name] if name is not None else []

        url = '/'.join(path)
        if params:
            url += '?' + urllib.parse.urlencode(params, encoding='utf-8')
        return url if server is None else server.rstrip('/') + url


# The only resources used by the demo sequence and the default watcher.
NAMESPACES = Resource('', 'v1', 'namespaces', kind='Namespace', namespaced=False)
PODS = Resource('', 'v1', 'pods', kind='Pod', namespaced=True)
