"""
Forward session for a single port.

Owns one remote listener for as long as the local port is bound, and
relays each connection accepted on it to the local service.
"""

import asyncio
import itertools

from devcontainer_portforward.config import config
from devcontainer_portforward.forward.relay import relay
from devcontainer_portforward.models.enums import SessionState
from devcontainer_portforward.transport.base import StreamPair, Transport
from devcontainer_portforward.utils.logger import get_logger

logger = get_logger(__name__)


class ForwardSession:
    """
    Exposes one local port through a remote listener.

    Any number of connections on the port are relayed concurrently. The
    session ends when its task is cancelled or when accepting fails; in
    both cases every in-flight relay is stopped and awaited first.
    """

    def __init__(
        self,
        transport: Transport,
        port: int,
        dial_host: str | None = None,
        dial_timeout: float | None = None,
    ):
        """
        Initialize the session.

        Args:
            transport: Connection used to open the remote listener.
            port: Port to listen on remotely and to dial locally.
            dial_host: Local address to dial (default from config).
            dial_timeout: Seconds allowed for the local connect.
        """
        self.transport = transport
        self.port = port
        self.dial_host = dial_host or config.LOCAL_DIAL_HOST
        self.dial_timeout = dial_timeout or config.LOCAL_DIAL_TIMEOUT_SECONDS
        self.state = SessionState.STARTING

        # In-flight connection task -> its inbound stream
        self._connections: dict[asyncio.Task, StreamPair] = {}
        self._conn_ids = itertools.count(1)

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    async def run(self) -> None:
        """
        Open the remote listener and serve it until cancelled.

        Raises:
            TransportError: If the listener cannot be opened, or accepting
                            failed (raised after draining).
            asyncio.CancelledError: When the session is stopped.
        """
        logger.info(f"Begin forward: {self.port}")

        try:
            listener = await self.transport.open_remote_listener(self.port)
        except BaseException:
            self.state = SessionState.STOPPED
            logger.info(f"Done forward: {self.port}")
            raise

        self.state = SessionState.LISTENING
        logger.debug(f"Remote listener open for port {self.port}")

        try:
            while True:
                inbound = await listener.accept()
                conn_id = next(self._conn_ids)
                task = asyncio.create_task(self._handle_connection(conn_id, inbound))
                self._connections[task] = inbound
                task.add_done_callback(self._forget_connection)
        finally:
            self.state = SessionState.DRAINING
            listener.close()
            try:
                await self._drain()
            finally:
                self.state = SessionState.STOPPED
                logger.info(f"Done forward: {self.port}")

    def _forget_connection(self, task: asyncio.Task) -> None:
        self._connections.pop(task, None)

    async def _drain(self) -> None:
        """Stop every in-flight connection and wait for it."""
        if not self._connections:
            return

        logger.debug(
            f"Port {self.port}: draining {len(self._connections)} connection(s)"
        )
        pending = dict(self._connections)
        for task in pending:
            task.cancel()
        try:
            await asyncio.gather(*pending, return_exceptions=True)
        finally:
            # Tasks cancelled before their first step never closed their stream
            for inbound in pending.values():
                inbound.close()

    async def _handle_connection(self, conn_id: int, inbound: StreamPair) -> None:
        """Dial the local service and relay one accepted connection."""
        log_prefix = f"[Port {self.port} #{conn_id}]"
        logger.debug(f"{log_prefix} Accepted connection from {inbound.peer()}")

        try:
            try:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(self.dial_host, self.port),
                    timeout=self.dial_timeout,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    f"{log_prefix} Timeout connecting to {self.dial_host}:{self.port}"
                )
                return
            except OSError as e:
                logger.warning(
                    f"{log_prefix} Cannot connect to {self.dial_host}:{self.port}: {e}"
                )
                return

            stats = await relay(inbound, StreamPair(reader, writer))
            logger.debug(
                f"{log_prefix} Connection closed "
                f"(in={stats.a_to_b} bytes, out={stats.b_to_a} bytes)"
            )

        finally:
            await inbound.wait_closed()


async def run_session(
    transport: Transport,
    port: int,
    dial_host: str | None = None,
    dial_timeout: float | None = None,
) -> None:
    """Run a forward session for ``port`` until it is cancelled or fails."""
    session = ForwardSession(
        transport, port, dial_host=dial_host, dial_timeout=dial_timeout
    )
    await session.run()
