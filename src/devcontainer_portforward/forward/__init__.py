"""
Forward engine.

A ForwardSession exposes one local port through a remote listener; the
ForwardRegistry starts and stops sessions as listen events arrive.
"""

from devcontainer_portforward.forward.registry import (
    ForwardHandle,
    ForwardRegistry,
    run_agent,
)
from devcontainer_portforward.forward.relay import RelayStats, relay
from devcontainer_portforward.forward.session import ForwardSession, run_session

__all__ = [
    "ForwardHandle",
    "ForwardRegistry",
    "ForwardSession",
    "RelayStats",
    "relay",
    "run_agent",
    "run_session",
]
