"""
Forward registry.

Maps each bound port to its running forward session, starting sessions on
"added" events and stopping them on "removed" events. Events are delivered
sequentially by the listen watcher, so the mapping needs no locking.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import partial
from typing import Any

from devcontainer_portforward.forward.session import ForwardSession
from devcontainer_portforward.listens.query import list_bound_endpoints
from devcontainer_portforward.listens.watcher import QueryFn, watch_listens
from devcontainer_portforward.models.enums import ListenEventKind
from devcontainer_portforward.models.listen import ListenEvent
from devcontainer_portforward.transport.base import Transport
from devcontainer_portforward.utils.logger import format_traceback, get_logger

logger = get_logger(__name__)

# (transport, port) -> object with an async run()
SessionFactory = Callable[[Transport, int], Any]


@dataclass
class ForwardHandle:
    """Running forward session for one port."""

    port: int
    task: asyncio.Task
    session: Any = field(default=None, repr=False)

    def cancel(self) -> None:
        """Stop the session. Does not wait for it to drain."""
        self.task.cancel()

    def done(self) -> bool:
        return self.task.done()


class ForwardRegistry:
    """
    Starts and stops forward sessions from listen events.

    At most one session runs per port. Every session started by the
    registry is stopped and awaited before ``run`` returns.
    """

    def __init__(
        self,
        transport: Transport,
        session_factory: SessionFactory = ForwardSession,
    ):
        """
        Initialize the registry.

        Args:
            transport: Shared connection handed to every session.
            session_factory: Builds the session for a port.
        """
        self.transport = transport
        self.session_factory = session_factory
        self._forwards: dict[int, ForwardHandle] = {}
        # Every started session task that has not finished yet
        self._tasks: set[asyncio.Task] = set()

    @property
    def ports(self) -> list[int]:
        return sorted(self._forwards)

    def __len__(self) -> int:
        return len(self._forwards)

    def __contains__(self, port: int) -> bool:
        return port in self._forwards

    def get(self, port: int) -> ForwardHandle | None:
        return self._forwards.get(port)

    def handle_event(self, event: ListenEvent) -> None:
        """Apply one listen event. Never blocks."""
        logger.info(f"{event.kind.value} {event.endpoint}")

        match event.kind:
            case ListenEventKind.ADDED:
                self._start_forward(event.port)
            case ListenEventKind.REMOVED:
                self._stop_forward(event.port)

    def _start_forward(self, port: int) -> None:
        if port in self._forwards:
            logger.info(f"Duplicate port {port}")
            return

        session = self.session_factory(self.transport, port)
        task = asyncio.create_task(session.run(), name=f"forward-{port}")
        handle = ForwardHandle(port=port, task=task, session=session)
        self._forwards[port] = handle
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_session_done, handle))

    def _stop_forward(self, port: int) -> None:
        handle = self._forwards.pop(port, None)
        if handle is None:
            logger.debug(f"Port {port} has no forward, ignoring removal")
            return
        handle.cancel()

    def _on_session_done(self, handle: ForwardHandle, task: asyncio.Task) -> None:
        """Drop a finished session's entry and log how it ended."""
        self._tasks.discard(task)
        if self._forwards.get(handle.port) is handle:
            del self._forwards[handle.port]

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Forward for port {handle.port} failed: {exc}")
            logger.debug(format_traceback(exc))

    async def shutdown(self) -> None:
        """
        Cancel every registered session and wait until all sessions stopped.

        Sessions already removed are draining from their first cancel and
        are only awaited here.
        """
        for handle in self._forwards.values():
            handle.cancel()
        self._forwards.clear()

        pending = list(self._tasks)
        if pending:
            logger.debug(f"Waiting for {len(pending)} forward(s) to stop")
            await asyncio.gather(*pending, return_exceptions=True)

    async def run(
        self,
        poll_interval: float | None = None,
        query: QueryFn = list_bound_endpoints,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """
        Watch listens and forward them until stopped.

        Returns when ``stop_event`` is set. Cancellation, listen query
        failures and loss of the transport propagate, in every case after
        all sessions have stopped.

        Raises:
            ListenQueryError: If bound listeners could not be enumerated.
            TransportError: If the transport connection went away.
        """
        watching = asyncio.create_task(
            watch_listens(
                self.handle_event,
                poll_interval=poll_interval,
                query=query,
                stop_event=stop_event,
            )
        )
        lost = asyncio.create_task(self.transport.wait_lost())
        try:
            await asyncio.wait([watching, lost], return_when=asyncio.FIRST_COMPLETED)
        finally:
            watching.cancel()
            lost.cancel()
            await asyncio.gather(watching, lost, return_exceptions=True)
            await self.shutdown()

        if watching.cancelled():
            logger.error("Transport lost, every forward stopped")
            lost.result()
        watching.result()


async def run_agent(
    transport: Transport,
    poll_interval: float | None = None,
    query: QueryFn = list_bound_endpoints,
    stop_event: asyncio.Event | None = None,
) -> None:
    """Forward every locally bound port over ``transport`` until stopped."""
    registry = ForwardRegistry(transport)
    await registry.run(poll_interval=poll_interval, query=query, stop_event=stop_event)
