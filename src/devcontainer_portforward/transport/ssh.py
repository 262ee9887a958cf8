"""
SSH transport over the server's unix socket.

Provides:
- Ephemeral client keypair generation and publication to the server
- Host key pinning from the key file published by the server
- SSHTransport: remote TCP listeners with an accept() interface
"""

from __future__ import annotations

import asyncio
import contextlib
import os
import secrets
import socket
from collections.abc import AsyncIterator, Callable

import asyncssh

from devcontainer_portforward.config import config
from devcontainer_portforward.exceptions import (
    KeyStoreError,
    ListenerClosedError,
    RemoteListenError,
    TransportError,
)
from devcontainer_portforward.transport.base import StreamPair
from devcontainer_portforward.utils.logger import get_logger

logger = get_logger(__name__)


# =============================================================================
# Keys
# =============================================================================


def generate_client_key() -> tuple[bytes, asyncssh.SSHKey]:
    """
    Generate an ephemeral ed25519 client keypair.

    Returns:
        (public key as an authorized_keys line, private key)
    """
    key = asyncssh.generate_private_key("ssh-ed25519")
    return key.export_public_key("openssh"), key


def load_host_key(hostkey_path: str) -> asyncssh.SSHKey:
    """
    Read the server's public host key.

    Raises:
        TransportError: If the file is missing or not a valid public key.
    """
    try:
        return asyncssh.read_public_key(hostkey_path)
    except (OSError, asyncssh.KeyImportError) as e:
        raise TransportError(f"Cannot read host key '{hostkey_path}': {e}") from e


def store_public_key(
    directory: str,
    public_key: bytes,
    attempts: int | None = None,
) -> str:
    """
    Publish a public key to the server's authorized keys directory.

    The key is written to a new file with a random name. A name that
    already exists is never overwritten; another name is tried instead.

    Args:
        directory: Directory the server reads authorized keys from.
        public_key: Key in authorized_keys format.
        attempts: Names to try before giving up (default from config).

    Returns:
        Path of the written key file.

    Raises:
        KeyStoreError: If no free name was found or the write failed.
    """
    attempts = attempts or config.KEY_STORE_ATTEMPTS

    for _ in range(attempts):
        path = os.path.join(directory, f"{secrets.token_hex(4)}.pub")
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
        except FileExistsError:
            continue
        except OSError as e:
            raise KeyStoreError(f"Cannot create '{path}': {e}") from e

        try:
            with os.fdopen(fd, "wb") as f:
                f.write(public_key)
        except OSError as e:
            raise KeyStoreError(f"Cannot write '{path}': {e}") from e
        return path

    raise KeyStoreError(
        f"No free key file name in '{directory}' after {attempts} attempts"
    )


# =============================================================================
# Remote Listener
# =============================================================================


class SSHRemoteListener:
    """
    Remote TCP listener with a pull-style accept().

    asyncssh pushes each forwarded connection to a handler; the handler
    queues it here until the forward session accepts it.
    """

    def __init__(self, port: int, on_close: Callable | None = None):
        self.port = port
        self._on_close = on_close
        self._queue: asyncio.Queue[StreamPair | None] = asyncio.Queue()
        self._listener: asyncssh.SSHListener | None = None
        self._closed = False
        self._error: BaseException | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    def attach(self, listener: asyncssh.SSHListener) -> None:
        self._listener = listener

    def handler_factory(self, orig_host: str, orig_port: int):
        """Called by asyncssh for each connection arriving on the listener."""
        return self._enqueue

    def _enqueue(self, reader: asyncssh.SSHReader, writer: asyncssh.SSHWriter) -> None:
        stream = StreamPair(reader, writer)
        if self._closed:
            stream.close()
            return
        self._queue.put_nowait(stream)

    async def accept(self) -> StreamPair:
        """
        Wait for the next forwarded connection.

        Raises:
            ListenerClosedError: If the listener was closed.
            TransportError: If the SSH connection was lost.
        """
        if self._closed:
            self._raise_closed()

        stream = await self._queue.get()
        if stream is None:
            # Wake any other waiter too
            self._queue.put_nowait(None)
            self._raise_closed()
        return stream

    def _raise_closed(self):
        if self._error is not None:
            raise TransportError(f"SSH connection lost: {self._error}")
        raise ListenerClosedError(self.port)

    def abort(self, exc: BaseException | None) -> None:
        """Close because the underlying connection went away."""
        self._error = exc or ConnectionResetError("connection closed")
        self.close()

    def close(self) -> None:
        """Stop listening and drop connections that were never accepted."""
        if self._closed:
            return
        self._closed = True

        if self._listener is not None:
            self._listener.close()

        while not self._queue.empty():
            stream = self._queue.get_nowait()
            if stream is not None:
                stream.close()
        self._queue.put_nowait(None)

        if self._on_close is not None:
            self._on_close(self)

    async def wait_closed(self) -> None:
        if self._listener is not None:
            await self._listener.wait_closed()


# =============================================================================
# Transport
# =============================================================================


class _ForwardClient(asyncssh.SSHClient):
    """Reports loss of the SSH connection to the owning transport."""

    def __init__(self, transport: "SSHTransport"):
        self._transport = transport

    def connection_lost(self, exc: Exception | None) -> None:
        self._transport._on_connection_lost(exc)


class SSHTransport:
    """
    SSH client connection used by every forward session.

    asyncssh multiplexes all remote listeners and their channels over the
    one connection, so sessions may use it concurrently.
    """

    def __init__(self, socket_path: str, user: str | None = None):
        """
        Initialize the transport. Call ``connect`` before use.

        Args:
            socket_path: Unix socket the SSH server listens on.
            user: SSH username (default from config).
        """
        self.socket_path = socket_path
        self.user = user or config.SSH_USER
        self._conn: asyncssh.SSHClientConnection | None = None
        self._listeners: set[SSHRemoteListener] = set()
        self._lost = asyncio.Event()
        self._lost_exc: Exception | None = None

    @property
    def connected(self) -> bool:
        return self._conn is not None

    async def connect(
        self,
        client_key: asyncssh.SSHKey,
        host_key: asyncssh.SSHKey,
    ) -> None:
        """
        Open the unix socket and run the SSH handshake.

        Args:
            client_key: Private key to authenticate with.
            host_key: The only server host key accepted.

        Raises:
            TransportError: If the socket or the handshake failed.
        """
        logger.info(f"Dial server via {self.socket_path}...")

        # asyncssh.connect has no unix path parameter; hand it a connected socket
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.setblocking(False)
        try:
            loop = asyncio.get_running_loop()
            await loop.sock_connect(sock, self.socket_path)
            self._conn = await asyncssh.connect(
                sock=sock,
                username=self.user,
                client_keys=[client_key],
                known_hosts=([host_key], [], []),
                client_factory=lambda: _ForwardClient(self),
            )
        except asyncio.CancelledError:
            sock.close()
            raise
        except (OSError, asyncssh.Error) as e:
            sock.close()
            raise TransportError(
                f"Cannot connect to SSH server at {self.socket_path}: {e}"
            ) from e

        logger.info(f"Connected to SSH server at {self.socket_path}")

    async def open_remote_listener(self, port: int) -> SSHRemoteListener:
        """
        Ask the server to listen on ``port`` and forward connections to us.

        Raises:
            RemoteListenError: If the server refused the listener.
            TransportError: If the connection is not usable.
        """
        if self._conn is None:
            raise TransportError("SSH transport is not connected")

        listener = SSHRemoteListener(port, on_close=self._listeners.discard)
        try:
            ssh_listener = await self._conn.start_server(
                listener.handler_factory,
                config.REMOTE_LISTEN_HOST,
                port,
                encoding=None,
            )
        except asyncssh.ChannelListenError as e:
            raise RemoteListenError(port, str(e)) from e
        except (OSError, asyncssh.Error) as e:
            raise TransportError(f"Cannot open remote listener on {port}: {e}") from e

        listener.attach(ssh_listener)
        self._listeners.add(listener)
        return listener

    def _on_connection_lost(self, exc: Exception | None) -> None:
        if exc is not None:
            logger.error(f"SSH connection lost: {exc}")
        else:
            logger.info("SSH connection closed")
        for listener in list(self._listeners):
            listener.abort(exc)
        self._lost_exc = exc
        self._lost.set()

    async def wait_lost(self) -> None:
        """
        Wait until the SSH connection goes away.

        Raises:
            TransportError: Always, once the connection is gone.
        """
        await self._lost.wait()
        if self._lost_exc is not None:
            raise TransportError(f"SSH connection lost: {self._lost_exc}")
        raise TransportError("SSH connection closed")

    async def close(self) -> None:
        """Close every remote listener and the SSH connection."""
        for listener in list(self._listeners):
            listener.close()
        if self._conn is not None:
            self._conn.close()
            await self._conn.wait_closed()
            self._conn = None

    async def __aenter__(self) -> "SSHTransport":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()


@contextlib.asynccontextmanager
async def connect_transport(
    socket_path: str,
    hostkey_path: str,
    authorized_keys_dir: str,
    user: str | None = None,
) -> AsyncIterator[SSHTransport]:
    """
    Authenticate to the server and yield a connected transport.

    A fresh client key is published to ``authorized_keys_dir`` for the
    handshake and removed again when the context exits.

    Raises:
        TransportError: If the host key or the connection failed.
        KeyStoreError: If the public key could not be published.
    """
    public_key, private_key = generate_client_key()
    host_key = load_host_key(hostkey_path)

    public_key_path = store_public_key(authorized_keys_dir, public_key)
    logger.debug(f"Published client key at {public_key_path}")

    try:
        transport = SSHTransport(socket_path, user=user)
        await transport.connect(private_key, host_key)
        async with transport:
            yield transport
    finally:
        with contextlib.suppress(OSError):
            os.remove(public_key_path)
