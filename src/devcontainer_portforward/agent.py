"""
Agent entry point.

Connects to the server and forwards every locally bound port until the
process is asked to stop.
"""

import asyncio
import contextlib
from collections.abc import Coroutine
from typing import Any

from devcontainer_portforward.config import config
from devcontainer_portforward.forward.registry import ForwardRegistry
from devcontainer_portforward.readiness import ServerPaths, wait_server_ready
from devcontainer_portforward.transport.ssh import connect_transport
from devcontainer_portforward.utils.logger import get_logger

logger = get_logger(__name__)


async def _unless_stopped(
    coro: Coroutine[Any, Any, Any], stop_event: asyncio.Event
) -> asyncio.Task | None:
    """
    Run ``coro`` until it finishes or ``stop_event`` is set.

    Returns:
        The finished task, or None if the stop came first and the task was
        cancelled.
    """
    task = asyncio.create_task(coro)
    stopped = asyncio.create_task(stop_event.wait())
    try:
        await asyncio.wait([task, stopped], return_when=asyncio.FIRST_COMPLETED)
    finally:
        stopped.cancel()
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    if task.cancelled():
        return None
    return task


async def run(paths: ServerPaths, stop_event: asyncio.Event | None = None) -> None:
    """
    Connect to the server and run the forward registry.

    Setting ``stop_event`` while connecting abandons the handshake.

    Raises:
        TransportError: If the SSH connection could not be established or
                        was lost.
        KeyStoreError: If the client key could not be published.
        ListenQueryError: If bound listeners could not be enumerated.
    """
    stop_event = stop_event or asyncio.Event()

    async with contextlib.AsyncExitStack() as stack:
        connecting = await _unless_stopped(
            stack.enter_async_context(
                connect_transport(
                    paths.socket_path,
                    paths.hostkey_path,
                    paths.authorized_keys_dir,
                    user=config.SSH_USER,
                )
            ),
            stop_event,
        )
        if connecting is None:
            logger.info("Stopped while connecting to the server.")
            return

        transport = connecting.result()
        logger.info("Forward is ready.")
        registry = ForwardRegistry(transport)
        await registry.run(
            poll_interval=config.POLL_INTERVAL_SECONDS, stop_event=stop_event
        )


async def main_async(stop_event: asyncio.Event | None = None) -> None:
    """Wait for the server, then forward until ``stop_event`` is set."""
    stop_event = stop_event or asyncio.Event()

    ready = await _unless_stopped(wait_server_ready(), stop_event)
    if ready is None:
        logger.info("Stopped before the server became ready.")
        return

    await run(ready.result(), stop_event=stop_event)
