"""
Listen watcher.

Polls the bound listener table on a fixed interval and reports every change
to a callback, all additions of a cycle before its removals.
"""

import asyncio
from collections.abc import Callable

from devcontainer_portforward.config import config
from devcontainer_portforward.listens.differ import diff_listens
from devcontainer_portforward.listens.query import list_bound_endpoints
from devcontainer_portforward.models.listen import ListenEvent, ListenSnapshot
from devcontainer_portforward.utils.logger import get_logger

logger = get_logger(__name__)

# Callback invoked once per event, on the watcher task
EventCallback = Callable[[ListenEvent], None]
# Blocking endpoint query, run in a worker thread
QueryFn = Callable[[], ListenSnapshot]


class ListenWatcher:
    """
    Remembers the last listen snapshot and emits events for each new one.

    The callback is called synchronously and never concurrently with itself,
    so it may mutate state without locking.
    """

    def __init__(
        self,
        on_event: EventCallback,
        query: QueryFn = list_bound_endpoints,
        poll_interval: float | None = None,
    ):
        """
        Initialize the watcher.

        Args:
            on_event: Called once per added/removed endpoint.
            query: Returns the endpoints bound right now.
            poll_interval: Seconds between polls (default from config).
        """
        self.on_event = on_event
        self.query = query
        self.poll_interval = (
            config.POLL_INTERVAL_SECONDS if poll_interval is None else poll_interval
        )
        self.snapshot: ListenSnapshot = frozenset()

    async def poll_once(self) -> list[ListenEvent]:
        """
        Run one poll cycle.

        Returns:
            The events emitted during this cycle, in delivery order.

        Raises:
            ListenQueryError: If the endpoint query failed.
        """
        current = frozenset(await asyncio.to_thread(self.query))
        added, removed = diff_listens(self.snapshot, current)
        self.snapshot = current

        events = [ListenEvent.added(ep) for ep in added]
        events.extend(ListenEvent.removed(ep) for ep in removed)
        for event in events:
            self.on_event(event)
        return events

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        """
        Poll until stopped.

        Returns normally once ``stop_event`` is set. Task cancellation is
        propagated as usual.

        Raises:
            ListenQueryError: If the endpoint query failed. Not retried.
        """
        stop_event = stop_event or asyncio.Event()
        logger.debug(f"Watching listens every {self.poll_interval}s")

        while not stop_event.is_set():
            poll = asyncio.create_task(self.poll_once())
            stopped = asyncio.create_task(stop_event.wait())
            try:
                await asyncio.wait([poll, stopped], return_when=asyncio.FIRST_COMPLETED)
            finally:
                stopped.cancel()
                if not poll.done():
                    # Abandon a query still running in its worker thread
                    poll.cancel()
                    await asyncio.gather(poll, return_exceptions=True)

            if poll.cancelled():
                break
            poll.result()

            try:
                await asyncio.wait_for(stop_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                continue

        logger.debug("Listen watcher stopped")


async def watch_listens(
    on_event: EventCallback,
    poll_interval: float | None = None,
    query: QueryFn = list_bound_endpoints,
    stop_event: asyncio.Event | None = None,
) -> None:
    """
    Watch bound listeners forever, reporting changes to ``on_event``.

    Args:
        on_event: Called once per added/removed endpoint.
        poll_interval: Seconds between polls (default from config).
        query: Returns the endpoints bound right now.
        stop_event: When set, the watcher returns after the current cycle.
    """
    watcher = ListenWatcher(on_event, query=query, poll_interval=poll_interval)
    await watcher.run(stop_event)
