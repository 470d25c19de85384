import socket
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Generator

import pytest

from capstan.config import HarnessConfig
from capstan.reference import ImageReference


@pytest.fixture
def fast_config() -> HarnessConfig:
    """Config with no settle delay and short polls, so unit tests stay quick."""
    return HarnessConfig(
        registry="ghcr.io/aedot",
        default_tag="rolling",
        socket_path="/nonexistent/engine.sock",
        startup_timeout=0.3,
        http_host="127.0.0.1",
        poll_interval=0.05,
        settle_delay=0.0,
        show_progress=False,
    )


@pytest.fixture
def busybox_ref() -> ImageReference:
    return ImageReference("ghcr.io", "aedot/busybox", "rolling")


class _SlowStartHandler(BaseHTTPRequestHandler):
    """Answers 503 until the server's ready_at time, then 200."""

    def do_GET(self) -> None:  # noqa: N802
        ready = time.monotonic() >= self.server.ready_at  # type: ignore[attr-defined]
        self.send_response(200 if ready else 503)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def log_message(self, format: str, *args: object) -> None:
        pass


@pytest.fixture
def slow_start_server() -> Generator[ThreadingHTTPServer, None, None]:
    """HTTP server that returns 503 for 3 seconds, then 200."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), _SlowStartHandler)
    server.ready_at = time.monotonic() + 3.0  # type: ignore[attr-defined]
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()


@pytest.fixture
def closed_port() -> int:
    """A local port with nothing listening on it."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        return sock.getsockname()[1]
