from typing import Any

from kinformer._cogs.clients import api, auth
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import references


async def delete_obj(
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        resource: references.Resource,
        namespace: references.Namespace,
        name: str,
        logger: typedefs.Logger,
) -> Any:
    """
    Delete a resource by its name.

    The API returns either the object being deleted (if it has finalizers
    or is terminated gracefully) or a ``Status`` of the deletion; either is
    returned as is. A missing object is escalated as `APINotFoundError`.
    """
    return await api.delete(
        url=resource.get_url(namespace=namespace if resource.namespaced else None, name=name),
        headers={'Content-Type': 'application/json'},
        context=context,
        settings=settings,
        logger=logger,
    )
