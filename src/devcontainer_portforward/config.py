"""
Agent configuration.

A global Config instance that can be modified at runtime.
"""

import os
from dataclasses import dataclass

from devcontainer_portforward.models.enums import LogLevel


@dataclass
class AgentConfig:
    """Port forward client agent configuration."""

    # Path Configuration
    DATADIR: str = "/run/devcontainer-portforward"  # Volume shared with the server

    # SSH Configuration
    SSH_USER: str = "user"
    REMOTE_LISTEN_HOST: str = "0.0.0.0"  # Bind address requested on the server
    KEY_STORE_ATTEMPTS: int = 100  # Name collisions tolerated when publishing the key

    # Forward Configuration
    LOCAL_DIAL_HOST: str = "127.0.0.1"
    LOCAL_DIAL_TIMEOUT_SECONDS: float = 10.0
    RELAY_CHUNK_SIZE: int = 65536

    # Timing Configuration
    POLL_INTERVAL_SECONDS: float = 1.0
    READY_POLL_INTERVAL_SECONDS: float = 1.0

    # Logging Configuration
    LOG_LEVEL: LogLevel = LogLevel.INFO

    def get_server_dir(self) -> str:
        """Get the directory the server publishes its socket and host key in."""
        return os.path.join(self.DATADIR, "server")

    def get_hostkey_path(self) -> str:
        """Get the path of the server's public host key."""
        return os.path.join(self.get_server_dir(), "rsa_hostkey.pub")

    def get_socket_path(self) -> str:
        """Get the path of the server's SSH unix socket."""
        return os.path.join(self.get_server_dir(), "ssh.sock")

    def get_authorized_keys_dir(self) -> str:
        """Get the directory the client publishes its public keys in."""
        return os.path.join(self.DATADIR, "client")


# Global config instance
config = AgentConfig()
