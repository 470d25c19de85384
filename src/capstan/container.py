import logging
import shlex
import time
import urllib.parse
from dataclasses import dataclass
from typing import Any, List

from .client import EngineClient, reading_response
from .const import (
    EXEC_SETTLE_TIMEOUT,
    STREAM_HEADER_SIZE,
    STREAM_STDERR,
    STREAM_STDOUT,
)
from .exceptions import EngineError
from .image import Image
from .resource import EngineResource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExecResult:
    """Outcome of a command run inside a container."""

    exit_code: int
    output: str


class Container(EngineResource):
    """A container."""

    @classmethod
    def run(
        cls,
        client: "EngineClient",
        image: str,
        command: str | List[str] | None = None,
        name: str | None = None,
        entrypoint: List[str] | None = None,
        environment: dict[str, str] | None = None,
        ports: dict[int | str, int | None] | None = None,
        show_progress: bool = False,
        pull_timeout: float | None = None,
    ) -> "Container":
        """
        Create and start a container, pulling the image if the engine lacks it.
        Equivalent to: docker run -d

        Args:
            image: Full image reference
            command: Command (or arguments to the entrypoint)
            name: Optional name for the container
            entrypoint: Replacement entrypoint
            environment: Dictionary of environment variables
            ports: {container_port: host_port}; a None host port lets the
                engine pick a free one
        """
        logger.info("Creating container for image '%s'...", image)

        payload = cls._build_container_config(
            image, command, entrypoint, environment, ports
        )

        endpoint = "/containers/create"
        if name:
            endpoint += "?" + urllib.parse.urlencode({"name": name})

        try:
            create_res = client._request("POST", endpoint, body=payload)
        except EngineError as e:
            if e.status != 404:
                raise
            logger.info("Image '%s' not found, pulling...", image)
            Image.pull(client, image, show_progress=show_progress, timeout=pull_timeout)
            logger.info("Image pulled successfully. Retrying container creation...")
            create_res = client._request("POST", endpoint, body=payload)

        container = cls(client, {"Id": create_res["Id"], "Image": image})

        try:
            container.start()
            container.reload()
        except BaseException as e:
            logger.error(
                "Failed to start container %s: %s. Cleaning up...",
                container.resource_id[:12],
                e,
            )
            try:
                container.remove(force=True)
            except (EngineError, OSError) as cleanup_error:
                logger.warning(
                    "Failed to remove container %s: %s",
                    container.resource_id[:12],
                    cleanup_error,
                )
            raise

        return container

    @classmethod
    def _build_container_config(
        cls,
        image: str,
        command: str | List[str] | None,
        entrypoint: List[str] | None,
        environment: dict[str, str] | None,
        ports: dict[int | str, int | None] | None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "Image": image,
            "Tty": False,
            "AttachStdout": False,
            "AttachStderr": False,
        }

        if command:
            payload["Cmd"] = (
                shlex.split(command) if isinstance(command, str) else list(command)
            )

        if entrypoint:
            payload["Entrypoint"] = list(entrypoint)

        if environment:
            payload["Env"] = [f"{key}={value}" for key, value in environment.items()]

        if ports:
            exposed_ports, port_bindings = cls._configure_ports(ports)
            payload["ExposedPorts"] = exposed_ports
            payload["HostConfig"] = {"PortBindings": port_bindings}

        return payload

    @classmethod
    def _configure_ports(
        cls, ports: dict[int | str, int | None]
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Format ports for ExposedPorts and PortBindings."""
        exposed_ports: dict[str, Any] = {}
        port_bindings: dict[str, Any] = {}
        for container_port, host_port in ports.items():
            key = _port_key(container_port)
            exposed_ports[key] = {}
            port_bindings[key] = [
                {"HostIp": "", "HostPort": "" if host_port is None else str(host_port)}
            ]
        return exposed_ports, port_bindings

    def reload(self) -> None:
        """Refresh this object's data from the engine."""
        self.attrs = self.client._request("GET", f"/containers/{self.resource_id}/json")

    @property
    def status(self) -> str:
        state = self.attrs.get("State")
        if isinstance(state, dict):
            return state.get("Status", "")
        return ""

    @property
    def exit_code(self) -> int | None:
        state = self.attrs.get("State")
        if isinstance(state, dict) and self.status in ("exited", "dead"):
            return state.get("ExitCode")
        return None

    def host_port(self, container_port: int | str) -> int | None:
        """Host port bound to a published container port, if any."""
        ports = self.attrs.get("NetworkSettings", {}).get("Ports") or {}
        for binding in ports.get(_port_key(container_port)) or []:
            host_port = binding.get("HostPort")
            if host_port:
                return int(host_port)
        return None

    def start(self) -> None:
        logger.info("Starting container %s...", self.resource_id[:12])
        self.client._request("POST", f"/containers/{self.resource_id}/start")

    def remove(self, force: bool = False, remove_volumes: bool = False) -> None:
        logger.info("Removing container %s...", self.resource_id[:12])
        params = {}
        if force:
            params["force"] = "true"
        if remove_volumes:
            params["v"] = "true"

        query = urllib.parse.urlencode(params)
        self.client._request("DELETE", f"/containers/{self.resource_id}?{query}")

    def logs(self, encoding: str = "utf-8", errors: str = "replace") -> str:
        """
        Fetch all stdout and stderr written since the container started.
        Equivalent to: docker logs
        """
        query = urllib.parse.urlencode({"stdout": "true", "stderr": "true"})
        response = self.client._request(
            "GET", f"/containers/{self.resource_id}/logs?{query}", stream=True
        )
        with reading_response(f"logs of {self.resource_id[:12]}"):
            try:
                return read_multiplexed(response, encoding=encoding, errors=errors)
            finally:
                response.close()

    def exec(
        self,
        command: str | List[str],
        encoding: str = "utf-8",
        errors: str = "replace",
    ) -> ExecResult:
        """
        Execute a command in the running container and wait for it to finish.
        Equivalent to: docker exec
        """
        payload: dict[str, Any] = {
            "AttachStdin": False,
            "AttachStdout": True,
            "AttachStderr": True,
            "Tty": False,
            "Cmd": command if isinstance(command, list) else shlex.split(command),
        }
        res: dict[str, Any] = self.client._request(
            "POST", f"/containers/{self.resource_id}/exec", body=payload
        )
        exec_id: str = res["Id"]

        response = self.client._request(
            "POST",
            f"/exec/{exec_id}/start",
            body={"Detach": False, "Tty": False},
            stream=True,
        )
        with reading_response(f"exec {exec_id[:12]} output"):
            try:
                output = read_multiplexed(response, encoding=encoding, errors=errors)
            finally:
                response.close()

        # The stream can close a moment before the engine records the exit code.
        deadline = time.monotonic() + EXEC_SETTLE_TIMEOUT
        while True:
            inspect: dict[str, Any] = self.client._request(
                "GET", f"/exec/{exec_id}/json"
            )
            if not inspect.get("Running") or time.monotonic() >= deadline:
                break
            time.sleep(0.05)

        exit_code = inspect.get("ExitCode")
        if exit_code is None:
            raise EngineError(f"Exec {exec_id[:12]} finished without an exit code")
        return ExecResult(exit_code=int(exit_code), output=output)

    def __repr__(self) -> str:
        return f"<Container: {self.resource_id[:12]}>"


def _port_key(port: int | str) -> str:
    port = str(port)
    return port if "/" in port else f"{port}/tcp"


def read_multiplexed(
    response: Any, encoding: str = "utf-8", errors: str = "replace"
) -> str:
    """
    Reads an engine multiplexed stream (Tty=False) and combines stdout/stderr.
    Header format: [STREAM_TYPE (1 byte), 0, 0, 0, SIZE (4 bytes big endian)]
    """
    chunks = []
    while True:
        header = response.read(STREAM_HEADER_SIZE)
        if not header or len(header) < STREAM_HEADER_SIZE:
            break

        stream_type = header[0]
        payload_size = int.from_bytes(header[4:8], "big")

        payload = response.read(payload_size)
        if stream_type in (STREAM_STDOUT, STREAM_STDERR):
            chunks.append(payload)

    return b"".join(chunks).decode(encoding, errors=errors)
