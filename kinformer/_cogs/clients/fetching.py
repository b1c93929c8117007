from collections.abc import Collection

from kinformer._cogs.clients import api, auth
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, references


async def list_objs(
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        label_selector: str | None = None,
        logger: typedefs.Logger,
) -> tuple[Collection[bodies.RawBody], str | None]:
    """
    List the objects of specific resource type.

    The cluster-scoped call is used in two cases:

    * The resource itself is cluster-scoped, and namespacing makes not sense.
    * The namespace is not specified for the namespaced resource.

    Otherwise, the namespace-scoped call is used.

    The items of the listing have no ``kind`` & ``apiVersion`` in the API,
    so they are restored from the listing's own ``kind`` & ``apiVersion``.
    """
    params: dict[str, str] = {}
    if label_selector:
        params['labelSelector'] = label_selector

    rsp = await api.get(
        url=resource.get_url(namespace=namespace, params=params),
        context=context,
        settings=settings,
        logger=logger,
    )

    items: list[bodies.RawBody] = []
    resource_version = rsp.get('metadata', {}).get('resourceVersion', None)
    for item in rsp.get('items', None) or []:
        if 'kind' in rsp:
            item.setdefault('kind', rsp['kind'][:-4] if rsp['kind'][-4:] == 'List' else rsp['kind'])
        if 'apiVersion' in rsp:
            item.setdefault('apiVersion', rsp['apiVersion'])
        items.append(item)

    return items, resource_version
