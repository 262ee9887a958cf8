"""
Transport to the forwarding server.

The forward engine only needs a connection that can open listeners on the
remote side and accept the connections arriving on them. ``SSHTransport``
provides that on top of asyncssh.
"""

from devcontainer_portforward.transport.base import (
    RemoteListener,
    StreamPair,
    Transport,
)
from devcontainer_portforward.transport.ssh import (
    SSHRemoteListener,
    SSHTransport,
    connect_transport,
    generate_client_key,
    load_host_key,
    store_public_key,
)

__all__ = [
    "RemoteListener",
    "SSHRemoteListener",
    "SSHTransport",
    "StreamPair",
    "Transport",
    "connect_transport",
    "generate_client_key",
    "load_host_key",
    "store_public_key",
]
