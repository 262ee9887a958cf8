"""
Listening socket discovery.

Turns periodic snapshots of the locally bound TCP listeners into a stream
of added/removed events.
"""

from devcontainer_portforward.listens.differ import diff_listens
from devcontainer_portforward.listens.query import list_bound_endpoints
from devcontainer_portforward.listens.watcher import ListenWatcher, watch_listens

__all__ = [
    "ListenWatcher",
    "diff_listens",
    "list_bound_endpoints",
    "watch_listens",
]
