"""
Rudimentary reading of the kubeconfig files for the connection info.

Kinformer is not a client library, and avoids bringing too much logic
for proper authentication, especially all the complex auth-providers.
Only the static credentials of the kubeconfig's current context are used:
the certificates, the tokens, the usernames & passwords.

.. seealso::
    :mod:`kinformer._cogs.structs.credentials` and :mod:`kinformer._cogs.clients.auth`.
"""
import logging
import os
from typing import Any

import yaml

from kinformer._cogs.helpers import typedefs
from kinformer._cogs.structs import credentials

logger = logging.getLogger(__name__)

DEFAULT_KUBECONFIG = '~/.kube/config'


def get_kubeconfig_paths(path: str | None = None) -> list[str]:
    """
    Find the kubeconfig files to read: explicitly given, or from the environment.

    As per https://kubernetes.io/docs/concepts/configuration/organize-cluster-access-kubeconfig/
    """
    kubeconfig = path or os.environ.get('KUBECONFIG')
    if not kubeconfig and os.path.exists(os.path.expanduser(DEFAULT_KUBECONFIG)):
        kubeconfig = DEFAULT_KUBECONFIG
    if not kubeconfig:
        return []

    paths = [path.strip() for path in kubeconfig.split(os.pathsep)]
    return [os.path.expanduser(path) for path in paths if path]


def login_with_kubeconfig(
        path: str | None = None,
        *,
        logger: typedefs.Logger = logger,
) -> credentials.ConnectionInfo:
    """
    A minimalistic login handler that can get raw data from a kubeconfig file.

    Authentication capabilities are limited to keep the code short & simple.
    No parsing or sophisticated multi-step token retrieval is performed.
    """
    paths = get_kubeconfig_paths(path)
    if not paths:
        raise credentials.LoginError("No kubeconfig is found: neither given, "
                                     "nor in $KUBECONFIG, nor in ~/.kube/config.")

    # As prescribed: if the file is absent or non-deserialisable, then fail. The first value wins.
    current_context: str | None = None
    contexts: dict[Any, Any] = {}
    clusters: dict[Any, Any] = {}
    users: dict[Any, Any] = {}
    for path in paths:
        try:
            with open(path, encoding='utf-8') as f:
                config = yaml.safe_load(f.read()) or {}
        except (OSError, yaml.YAMLError) as e:
            raise credentials.LoginError(f"Cannot read the kubeconfig {path!r}: {e}") from e

        # The relative file references are relative to the kubeconfig which refers to them.
        basedir = os.path.dirname(os.path.abspath(path))

        if current_context is None:
            current_context = config.get('current-context')
        for item in config.get('contexts', None) or []:
            if item['name'] not in contexts:
                contexts[item['name']] = item.get('context') or {}
        for item in config.get('clusters', None) or []:
            if item['name'] not in clusters:
                clusters[item['name']] = resolve_paths(item.get('cluster') or {}, basedir)
        for item in config.get('users', None) or []:
            if item['name'] not in users:
                users[item['name']] = resolve_paths(item.get('user') or {}, basedir)

    # Once fully parsed, use the current context only.
    if current_context is None:
        raise credentials.LoginError('Current context is not set in kubeconfigs.')
    try:
        context = contexts[current_context]
        cluster = clusters[context['cluster']]
        user = users.get(context.get('user'), {})
    except KeyError as e:
        raise credentials.LoginError(f"Kubeconfig's context is incomplete: {e}") from e

    logger.debug(f"Connecting via kubeconfig context {current_context!r}.")

    # Unlike the full-featured clients, we do not make a fake API request to refresh the token.
    provider_token = user.get('auth-provider', {}).get('config', {}).get('access-token')

    # Map the retrieved fields into the credentials object.
    return credentials.ConnectionInfo(
        server=cluster.get('server'),
        ca_path=cluster.get('certificate-authority'),
        ca_data=cluster.get('certificate-authority-data'),
        insecure=cluster.get('insecure-skip-tls-verify'),
        certificate_path=user.get('client-certificate'),
        certificate_data=user.get('client-certificate-data'),
        private_key_path=user.get('client-key'),
        private_key_data=user.get('client-key-data'),
        username=user.get('username'),
        password=user.get('password'),
        token=user.get('token') or provider_token,
        default_namespace=context.get('namespace'),
    )


def resolve_paths(section: dict[str, Any], basedir: str) -> dict[str, Any]:
    resolved = dict(section)
    for key in ['certificate-authority', 'client-certificate', 'client-key']:
        if resolved.get(key):
            resolved[key] = os.path.join(basedir, os.path.expanduser(resolved[key]))
    return resolved
