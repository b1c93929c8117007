"""
Connection-related structures.

Only the information passed to the HTTP protocol and TCP/SSL connection
is kept, i.e. everything usable in a generic HTTP client, and nothing more:

* TCP server host & port.
* SSL verification/ignorance flag.
* SSL certificate authority.
* SSL client certificate and its private key.
* HTTP ``Authorization: Basic username:password``.
* HTTP ``Authorization: Bearer token`` (or other schemes: Bearer, Digest, etc).
* URL's default namespace for the cases when this is implied.

There is no re-authentication: the credentials are read once at startup.

.. seealso::
    :mod:`kinformer._core.intents.piggybacking` and :mod:`kinformer._cogs.clients.auth`.
"""
import dataclasses


class LoginError(Exception):
    """ Raised when the connection info cannot be retrieved. """


@dataclasses.dataclass(frozen=True)
class ConnectionInfo:
    """
    A single endpoint with specific credentials and connection flags to use.
    """
    server: str  # e.g. "https://localhost:443"
    ca_path: str | None = None
    ca_data: str | bytes | None = None
    insecure: bool | None = None
    username: str | None = None
    password: str | None = None
    scheme: str | None = None  # RFC-7235/5.1: e.g. Bearer, Basic, Digest, etc.
    token: str | None = None
    certificate_path: str | None = None
    certificate_data: str | bytes | None = None
    private_key_path: str | None = None
    private_key_data: str | bytes | None = None
    default_namespace: str | None = None
