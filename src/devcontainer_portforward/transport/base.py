"""Interfaces between the forward engine and the transport."""

import asyncio
from dataclasses import dataclass
from typing import Any, Protocol


@dataclass
class StreamPair:
    """
    Reader/writer pair of one byte stream.

    Works for asyncio streams as well as asyncssh channel streams, which
    share the same reader/writer interface.
    """

    reader: Any
    writer: Any

    def peer(self) -> Any:
        """Remote address of the stream, if the transport knows it."""
        try:
            return self.writer.get_extra_info("peername")
        except (AttributeError, OSError):
            return None

    def close(self) -> None:
        """Close the stream in both directions. Safe to call twice."""
        try:
            self.writer.close()
        except (OSError, RuntimeError):
            pass

    async def wait_closed(self, timeout: float = 1.0) -> None:
        """Close the stream and wait (bounded) for the close to finish."""
        self.close()
        try:
            await asyncio.wait_for(self.writer.wait_closed(), timeout=timeout)
        except (OSError, asyncio.TimeoutError):
            pass


class RemoteListener(Protocol):
    """A listener bound to one port on the remote side of the transport."""

    port: int

    async def accept(self) -> StreamPair:
        """
        Wait for the next inbound connection.

        Raises:
            ListenerClosedError: If the listener was closed.
            TransportError: If the transport failed.
        """
        ...

    def close(self) -> None:
        """Stop listening. Pending and later ``accept`` calls fail."""
        ...

    async def wait_closed(self) -> None: ...


class Transport(Protocol):
    """Authenticated multiplexed connection to the forwarding server."""

    async def open_remote_listener(self, port: int) -> RemoteListener:
        """
        Ask the server to listen on ``port`` on our behalf.

        Raises:
            TransportError: If the server refused or the connection failed.
        """
        ...

    async def wait_lost(self) -> None:
        """
        Wait until the connection goes away.

        Raises:
            TransportError: Once the connection is gone.
        """
        ...
