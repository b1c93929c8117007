from typing import cast

from kinformer._cogs.clients import api, auth
from kinformer._cogs.configs import configuration
from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import bodies, references


async def create_obj(
        *,
        context: auth.APIContext,
        settings: configuration.InformerSettings,
        resource: references.Resource,
        namespace: references.Namespace = None,
        name: str | None = None,
        body: bodies.RawBody | None = None,
        logger: typedefs.Logger,
) -> bodies.RawBody:
    """
    Create a resource and return its body as stored by the server.
    """
    body = body if body is not None else {}
    if namespace is not None:
        body.setdefault('metadata', {}).setdefault('namespace', namespace)
    if name is not None:
        body.setdefault('metadata', {}).setdefault('name', name)
    if resource.kind is not None:
        body.setdefault('kind', resource.kind)
    body.setdefault('apiVersion', resource.api_version)

    namespace = cast(references.Namespace, body.get('metadata', {}).get('namespace'))
    created_body: bodies.RawBody = await api.post(
        url=resource.get_url(namespace=namespace if resource.namespaced else None),
        headers={'Content-Type': 'application/json'},
        payload=body,
        context=context,
        settings=settings,
        logger=logger,
    )
    return created_body
