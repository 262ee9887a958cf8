"""
Wait for the server side to start.

The server publishes its host key and SSH socket in the shared data
directory; the client also needs a directory to publish its own key in.
"""

import asyncio
import os
from dataclasses import dataclass, replace

from devcontainer_portforward.config import config
from devcontainer_portforward.exceptions import ServerNotReadyError
from devcontainer_portforward.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ServerPaths:
    """Files shared with the server, once they all exist."""

    socket_path: str
    hostkey_path: str
    authorized_keys_dir: str


def _exists_all(*paths: str) -> bool:
    return all(os.path.exists(p) for p in paths)


async def wait_server_ready(
    datadir: str | None = None,
    poll_interval: float | None = None,
) -> ServerPaths:
    """
    Block until the server's host key and socket exist.

    Args:
        datadir: Shared data directory (default from config).
        poll_interval: Seconds between checks (default from config).

    Returns:
        Paths needed to connect to the server.

    Raises:
        ServerNotReadyError: If the server path exists but is not a directory.
    """
    cfg = config if datadir is None else replace(config, DATADIR=datadir)
    poll_interval = poll_interval or cfg.READY_POLL_INTERVAL_SECONDS

    server_dir = cfg.get_server_dir()
    hostkey_path = cfg.get_hostkey_path()
    socket_path = cfg.get_socket_path()

    while True:
        if os.path.exists(server_dir) and not os.path.isdir(server_dir):
            raise ServerNotReadyError(f"'{server_dir}' is not a directory")

        if _exists_all(hostkey_path, socket_path):
            return ServerPaths(
                socket_path=socket_path,
                hostkey_path=hostkey_path,
                authorized_keys_dir=cfg.get_authorized_keys_dir(),
            )

        logger.info("Wait for the server side to start...")
        await asyncio.sleep(poll_interval)
