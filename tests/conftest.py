"""
Shared test fixtures for the port forward test suite.

Provides in-memory transports and helpers that build connected asyncio
stream pairs, so forward sessions can be exercised without an SSH server.
"""

import asyncio
import socket

import pytest
import pytest_asyncio
from loguru import logger

from devcontainer_portforward.exceptions import ListenerClosedError, TransportError
from devcontainer_portforward.transport.base import StreamPair


# ---------------------------------------------------------------------------
# Streams
# ---------------------------------------------------------------------------


async def make_stream_pair() -> tuple[StreamPair, StreamPair]:
    """Two ends of a connected socket, each wrapped as asyncio streams."""
    left_sock, right_sock = socket.socketpair()
    left_reader, left_writer = await asyncio.open_connection(sock=left_sock)
    right_reader, right_writer = await asyncio.open_connection(sock=right_sock)
    return StreamPair(left_reader, left_writer), StreamPair(right_reader, right_writer)


async def read_all(stream: StreamPair, timeout: float = 2.0) -> bytes:
    """Read until EOF."""
    return await asyncio.wait_for(stream.reader.read(), timeout=timeout)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Yield to the loop until predicate() is true."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not reached in time")
        await asyncio.sleep(0.01)


def free_port() -> int:
    """A port with nothing listening on it (at the time of the call)."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]


# ---------------------------------------------------------------------------
# Local echo service
# ---------------------------------------------------------------------------


async def _echo(reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
    try:
        while data := await reader.read(65536):
            writer.write(data)
            await writer.drain()
    except OSError:
        pass
    finally:
        writer.close()


async def start_echo_server(port: int = 0) -> asyncio.AbstractServer:
    return await asyncio.start_server(_echo, "127.0.0.1", port)


@pytest_asyncio.fixture
async def echo_server():
    """Echo server on 127.0.0.1; yields its port."""
    server = await start_echo_server()
    yield server.sockets[0].getsockname()[1]
    server.close()
    await server.wait_closed()


# ---------------------------------------------------------------------------
# In-memory transport
# ---------------------------------------------------------------------------


class FakeListener:
    """Remote listener fed by the test through push()/fail()."""

    def __init__(self, port: int):
        self.port = port
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()

    def push(self, stream: StreamPair) -> None:
        if self.closed:
            stream.close()
            return
        self._queue.put_nowait(stream)

    def fail(self, exc: BaseException) -> None:
        self._queue.put_nowait(exc)

    async def accept(self) -> StreamPair:
        if self.closed:
            raise ListenerClosedError(self.port)
        item = await self._queue.get()
        if isinstance(item, BaseException):
            raise item
        return item

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if isinstance(item, StreamPair):
                item.close()
        self._queue.put_nowait(ListenerClosedError(self.port))

    async def wait_closed(self) -> None:
        pass


class FakeTransport:
    """Transport that opens FakeListeners, or fails for chosen ports."""

    def __init__(self, fail_ports=()):
        self.fail_ports = set(fail_ports)
        self.listeners: dict[int, FakeListener] = {}
        self.opened: list[int] = []
        self.lost = asyncio.Event()

    async def open_remote_listener(self, port: int) -> FakeListener:
        self.opened.append(port)
        if port in self.fail_ports:
            raise TransportError(f"Cannot open remote listener on {port}")
        listener = FakeListener(port)
        self.listeners[port] = listener
        return listener

    async def wait_lost(self) -> None:
        await self.lost.wait()
        raise TransportError("connection lost")


@pytest.fixture
def transport():
    return FakeTransport()


# ---------------------------------------------------------------------------
# Scripted endpoint query
# ---------------------------------------------------------------------------


class ScriptedQuery:
    """Returns the given snapshots in order, then repeats the last one."""

    def __init__(self, *snapshots, error_at: int | None = None, error=None):
        self.snapshots = [frozenset(s) for s in snapshots]
        self.error_at = error_at
        self.error = error
        self.calls = 0

    def __call__(self):
        index = self.calls
        self.calls += 1
        if self.error_at is not None and index >= self.error_at:
            raise self.error
        return self.snapshots[min(index, len(self.snapshots) - 1)]


# ---------------------------------------------------------------------------
# Log capture
# ---------------------------------------------------------------------------


@pytest.fixture
def log_messages():
    """Messages logged through loguru while the test runs."""
    messages: list[str] = []
    handler_id = logger.add(
        lambda message: messages.append(message.record["message"]), level="DEBUG"
    )
    yield messages
    logger.remove(handler_id)
