"""
Bound listener enumeration.

Lists every local TCP socket in LISTEN state, across IPv4 and IPv6.
"""

import psutil

from devcontainer_portforward.exceptions import ListenQueryError
from devcontainer_portforward.models.listen import Endpoint, ListenSnapshot


def list_bound_endpoints() -> ListenSnapshot:
    """
    Query the kernel for listening TCP sockets.

    This call blocks; run it with ``asyncio.to_thread`` from async code.

    Returns:
        Deduplicated set of bound endpoints.

    Raises:
        ListenQueryError: If the socket table cannot be read.
    """
    try:
        connections = psutil.net_connections(kind="tcp")
    except (psutil.Error, OSError) as e:
        raise ListenQueryError(f"Cannot list listening sockets: {e}") from e

    endpoints = set()
    for conn in connections:
        if conn.status != psutil.CONN_LISTEN or not conn.laddr:
            continue
        endpoints.add(Endpoint(ip=conn.laddr.ip, port=conn.laddr.port))

    return frozenset(endpoints)
