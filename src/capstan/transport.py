import http.client
import logging
import os
import socket
import urllib.parse

from .const import DEFAULT_SOCKET_PATH, DEFAULT_TIMEOUT

logger = logging.getLogger(__name__)


def discover_socket_path(explicit: str | None = None) -> str:
    """
    Find the engine socket.
    Checks the explicit path, then CAPSTAN_ENGINE_SOCKET, then a
    unix:// DOCKER_HOST, and finally falls back to the default Docker socket.
    """
    if explicit:
        return explicit

    env_sock = os.environ.get("CAPSTAN_ENGINE_SOCKET")
    if env_sock:
        return env_sock

    env_host = os.environ.get("DOCKER_HOST", "")
    if env_host.startswith("unix://"):
        return urllib.parse.urlparse(env_host).path

    return DEFAULT_SOCKET_PATH


class UnixHttpConnection(http.client.HTTPConnection):
    """
    Custom HTTP Connection that connects to a Unix Socket
    instead of a TCP host:port.
    """

    def __init__(self, socket_path: str, timeout: float = DEFAULT_TIMEOUT) -> None:
        super().__init__("localhost", timeout=timeout)
        self.socket_path = socket_path

    def connect(self) -> None:
        if not hasattr(socket, "AF_UNIX"):
            raise NotImplementedError("Unix sockets not supported on this platform")

        logger.debug("Connecting to socket path: %s", self.socket_path)
        self.sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        self.sock.settimeout(self.timeout)
        self.sock.connect(self.socket_path)
