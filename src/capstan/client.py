import http.client
import json
import logging
import socket
from contextlib import contextmanager
from typing import Any, Generator, Iterator

from .const import DEFAULT_TIMEOUT
from .exceptions import EngineError, EngineUnavailable
from .transport import UnixHttpConnection, discover_socket_path

logger = logging.getLogger(__name__)


@contextmanager
def reading_response(what: str) -> Iterator[None]:
    """Map socket failures while reading a response body to EngineError."""
    try:
        yield
    except (socket.timeout, OSError, http.client.HTTPException) as e:
        raise EngineError(f"Reading {what} failed: {e}") from e


class EngineClient:
    """
    A minimal client for the Docker/Podman Engine API.

    One client is the runtime session shared by a test process. It is
    opened explicitly at harness startup and closed at shutdown:

        with EngineClient() as client:
            lifecycle = LifecycleManager(client, config)

    Every request opens its own socket connection, so a client may be
    shared between threads.
    """

    def __init__(
        self, socket_path: str | None = None, timeout: float = DEFAULT_TIMEOUT
    ) -> None:
        self.socket_path = discover_socket_path(socket_path)
        self.timeout = timeout
        self.closed = False

    def __enter__(self) -> "EngineClient":
        return self.open()

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def open(self) -> "EngineClient":
        """Verify the engine answers before any container work starts."""
        self.ping()
        logger.debug("Engine session opened on %s", self.socket_path)
        return self

    def close(self) -> None:
        self.closed = True
        logger.debug("Engine session on %s closed", self.socket_path)

    def ping(self) -> bool:
        """
        Check the engine is reachable.
        API: GET /_ping
        """
        return str(self._request("GET", "/_ping")).strip() == "OK"

    def version(self) -> dict[str, Any]:
        """
        Engine version information.
        API: GET /version
        """
        return self._request("GET", "/version")  # type: ignore[no-any-return]

    def _connect(
        self,
        method: str,
        endpoint: str,
        body: Any | None,
        headers: dict[str, str],
        timeout: float | None,
    ) -> tuple[UnixHttpConnection, http.client.HTTPResponse]:
        if self.closed:
            raise EngineUnavailable("Engine session is closed")

        conn = UnixHttpConnection(self.socket_path, timeout=timeout or self.timeout)
        try:
            logger.debug("%s %s", method, endpoint)
            conn.request(method, endpoint, body=body, headers=headers)
            return conn, conn.getresponse()
        except (FileNotFoundError, ConnectionRefusedError, PermissionError) as e:
            conn.close()
            raise EngineUnavailable(
                f"Cannot reach container engine at {self.socket_path}: {e}"
            ) from e
        except (socket.timeout, OSError, http.client.HTTPException) as e:
            conn.close()
            raise EngineError(f"{method} {endpoint} failed: {e}") from e

    def _request(
        self,
        method: str,
        endpoint: str,
        body: Any | None = None,
        headers: dict[str, str] | None = None,
        stream: bool = False,
        timeout: float | None = None,
    ) -> Any:
        """
        Helper to send HTTP requests to the socket.
        With stream=True the open response is returned and the caller closes it.
        """
        headers = headers or {}

        if isinstance(body, dict):
            payload: Any = json.dumps(body)
            headers["Content-Type"] = "application/json"
            headers["Content-Length"] = str(len(payload))
        else:
            payload = body

        if not stream:
            headers["Connection"] = "close"

        conn, response = self._connect(method, endpoint, payload, headers, timeout)

        if stream:
            if response.status >= 400:
                try:
                    with reading_response(f"{method} {endpoint}"):
                        data = response.read().decode("utf-8", errors="ignore")
                finally:
                    conn.close()
                raise EngineError(
                    f"Docker API Error ({response.status}): {data}", response.status
                )
            return response

        try:
            with reading_response(f"{method} {endpoint}"):
                data = response.read().decode("utf-8", errors="ignore")
        finally:
            conn.close()

        if response.status < 400:
            if not data:
                return None
            try:
                return json.loads(data)
            except json.JSONDecodeError:
                return data

        raise EngineError(
            f"Docker API Error ({response.status}): {data}", response.status
        )

    def _stream_json_response(
        self, response: http.client.HTTPResponse
    ) -> Generator[dict[str, Any], None, None]:
        """
        Helper to stream JSON objects from an Engine API response.
        Yields decoded JSON objects.
        """
        try:
            while True:
                with reading_response("stream"):
                    line = response.readline()
                if not line:
                    break

                line_str = line.decode("utf-8").strip()
                if not line_str:
                    continue

                try:
                    obj = json.loads(line_str)
                except json.JSONDecodeError:
                    logger.warning("Failed to decode JSON from stream: %s", line_str)
                    continue

                if "error" in obj:
                    raise EngineError(f"Stream Error: {obj['error']}")
                yield obj
        finally:
            response.close()
