"""
Listen endpoint and event types.

An Endpoint is one locally bound listening socket. A snapshot is the set of
every endpoint bound at one poll instant; events are the difference between
two consecutive snapshots.
"""

from dataclasses import dataclass

from devcontainer_portforward.models.enums import ListenEventKind


@dataclass(frozen=True, order=True)
class Endpoint:
    """IP address and port of a bound listening socket."""

    ip: str
    port: int

    def __str__(self) -> str:
        if ":" in self.ip:
            return f"[{self.ip}]:{self.port}"
        return f"{self.ip}:{self.port}"


# Every endpoint bound at one poll instant
ListenSnapshot = frozenset[Endpoint]


@dataclass(frozen=True)
class ListenEvent:
    """A single added/removed change of the listen snapshot."""

    kind: ListenEventKind
    endpoint: Endpoint

    @classmethod
    def added(cls, endpoint: Endpoint) -> "ListenEvent":
        return cls(ListenEventKind.ADDED, endpoint)

    @classmethod
    def removed(cls, endpoint: Endpoint) -> "ListenEvent":
        return cls(ListenEventKind.REMOVED, endpoint)

    @property
    def port(self) -> int:
        return self.endpoint.port

    def __str__(self) -> str:
        return f"{self.kind.value} {self.endpoint}"
