"""
devcontainer-portforward client agent.

Watches the TCP ports bound inside the container and exposes each of them
on the remote side of a single SSH connection, for as long as the local
listener exists.
"""

__version__ = "0.1.0"
