"""
Container lifecycle management.

The LifecycleManager is the only caller into the engine client. It turns
engine errors into the harness error taxonomy and guarantees that
terminate() never raises.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Protocol

from .config import HarnessConfig, get_config
from .container import Container, ExecResult
from .exceptions import (
    EngineError,
    EngineUnavailable,
    ExecFailure,
    LogRetrievalFailure,
    StartFailure,
)

if TYPE_CHECKING:
    from .client import EngineClient
    from .reference import ImageReference

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuntimeConfig:
    """Optional settings for starting a container."""

    environment: dict[str, str] = field(default_factory=dict)
    # container port -> host port; None lets the engine allocate one
    ports: dict[int, int | None] = field(default_factory=dict)
    command: list[str] | None = None
    entrypoint: list[str] | None = None
    name: str | None = None

    def with_ports(self, ports: list[int]) -> "RuntimeConfig":
        """Copy of this config that also publishes the given container ports."""
        merged = dict(self.ports)
        for port in ports:
            merged.setdefault(port, None)
        return replace(self, ports=merged)


@dataclass
class ContainerHandle:
    """A started container owned by one contract run."""

    reference: "ImageReference"
    container: Container
    alive: bool = True

    @property
    def id(self) -> str:
        return self.container.resource_id

    def __repr__(self) -> str:
        state = "alive" if self.alive else "terminated"
        return f"<ContainerHandle {self.id[:12]} {self.reference} {state}>"


class Lifecycle(Protocol):
    """What readiness checks and the contract runner need from a lifecycle."""

    config: HarnessConfig

    def start(
        self, ref: "ImageReference", runtime: RuntimeConfig | None = None
    ) -> ContainerHandle: ...

    def logs(self, handle: ContainerHandle) -> str: ...

    def exec(self, handle: ContainerHandle, argv: list[str]) -> ExecResult: ...

    def host_port(self, handle: ContainerHandle, container_port: int) -> int: ...

    def terminate(self, handle: ContainerHandle) -> None: ...


class LifecycleManager:
    """Starts, inspects and tears down containers through an engine session."""

    def __init__(
        self, client: "EngineClient", config: HarnessConfig | None = None
    ) -> None:
        self.client = client
        self.config = config or get_config()

    def start(
        self, ref: "ImageReference", runtime: RuntimeConfig | None = None
    ) -> ContainerHandle:
        """
        Bring up a container and wait until the engine reports it running.

        Raises:
            StartFailure: If the container cannot be created, started, or
                does not reach the running state within startup_timeout.
        """
        runtime = runtime or RuntimeConfig()
        try:
            container = Container.run(
                self.client,
                str(ref),
                command=runtime.command,
                name=runtime.name,
                entrypoint=runtime.entrypoint,
                environment=runtime.environment,
                ports=dict(runtime.ports),
                show_progress=self.config.show_progress,
                pull_timeout=self.config.pull_timeout,
            )
        except EngineError as e:
            raise StartFailure(f"Could not start {ref}: {e}") from e

        handle = ContainerHandle(reference=ref, container=container)
        try:
            self._wait_until_running(handle)
        except BaseException:
            self.terminate(handle)
            raise
        logger.info("Container %s for %s is running", handle.id[:12], ref)
        return handle

    def _wait_until_running(self, handle: ContainerHandle) -> None:
        deadline = time.monotonic() + self.config.startup_timeout
        container = handle.container
        while True:
            try:
                container.reload()
            except EngineError as e:
                raise StartFailure(
                    f"Could not inspect container for {handle.reference}: {e}"
                ) from e

            if container.status == "running":
                return

            if container.status in ("exited", "dead"):
                raise StartFailure(
                    f"Container for {handle.reference} stopped during startup "
                    f"(exit code {container.exit_code})\n"
                    f"--- Logs ---\n{self._logs_for_diagnostic(container)}"
                )

            if time.monotonic() >= deadline:
                raise StartFailure(
                    f"Container for {handle.reference} not running after "
                    f"{self.config.startup_timeout:g}s (status: {container.status})"
                )
            time.sleep(self.config.poll_interval)

    @staticmethod
    def _logs_for_diagnostic(container: Container) -> str:
        try:
            return container.logs()
        except EngineError as e:
            return f"[ERROR FETCHING LOGS: {e}]"

    def logs(self, handle: ContainerHandle) -> str:
        if not handle.alive:
            raise LogRetrievalFailure(f"{handle!r} is no longer valid")
        try:
            return handle.container.logs()
        except EngineUnavailable:
            raise
        except EngineError as e:
            raise LogRetrievalFailure(
                f"Could not fetch logs of {handle.id[:12]}: {e}"
            ) from e

    def exec(self, handle: ContainerHandle, argv: list[str]) -> ExecResult:
        if not handle.alive:
            raise ExecFailure(f"{handle!r} is no longer valid")
        logger.debug("Exec in %s: %s", handle.id[:12], argv)
        try:
            return handle.container.exec(list(argv))
        except EngineUnavailable:
            raise
        except EngineError as e:
            raise ExecFailure(
                f"Could not run {argv!r} in {handle.id[:12]}: {e}"
            ) from e

    def host_port(self, handle: ContainerHandle, container_port: int) -> int:
        """
        Host port the engine bound for a published container port.

        Raises:
            ExecFailure: If the port was not published.
        """
        port = handle.container.host_port(container_port)
        if port is None:
            try:
                handle.container.reload()
            except EngineError as e:
                raise ExecFailure(f"Could not inspect {handle.id[:12]}: {e}") from e
            port = handle.container.host_port(container_port)
        if port is None:
            raise ExecFailure(
                f"Port {container_port} is not published for {handle.id[:12]}"
            )
        return port

    def terminate(self, handle: ContainerHandle) -> None:
        """Force-remove the container. Safe to call more than once; never raises."""
        if not handle.alive:
            return
        handle.alive = False
        try:
            handle.container.remove(force=True, remove_volumes=True)
        except (EngineError, OSError) as e:
            logger.warning("Failed to clean up container %s: %s", handle.id[:12], e)
