"""Port forward agent exception classes."""


class PortForwardError(Exception):
    """Base exception for the port forward agent."""

    pass


class ListenQueryError(PortForwardError):
    """Listening sockets could not be enumerated."""

    pass


class TransportError(PortForwardError):
    """SSH connection or remote listener failure."""

    pass


class ListenerClosedError(TransportError):
    """Accept was called on a closed remote listener."""

    def __init__(self, port: int):
        self.port = port
        super().__init__(f"Remote listener for port {port} is closed")


class RemoteListenError(TransportError):
    """The server refused to open a remote listener."""

    def __init__(self, port: int, message: str):
        self.port = port
        super().__init__(f"Cannot listen on remote port {port}: {message}")


class ServerNotReadyError(PortForwardError):
    """Waiting for the server side was aborted."""

    pass


class KeyStoreError(PortForwardError):
    """The client public key could not be published to the server."""

    pass
