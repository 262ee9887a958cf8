"""Data types shared by the listen watcher and the forward registry."""

from devcontainer_portforward.models.enums import (
    ListenEventKind,
    LogLevel,
    SessionState,
)
from devcontainer_portforward.models.listen import (
    Endpoint,
    ListenEvent,
    ListenSnapshot,
)

__all__ = [
    "Endpoint",
    "ListenEvent",
    "ListenEventKind",
    "ListenSnapshot",
    "LogLevel",
    "SessionState",
]
