"""
Readiness checks.

The set of checks is closed: FileExists, CommandSucceeds, HTTPReady and
LogContains. Each one is a frozen dataclass whose evaluate() returns a
ContractResult. Waits are bounded by a monotonic deadline; running out of
time yields a failed result, never an exception. Infrastructure trouble
(ExecFailure, LogRetrievalFailure) is raised and recorded by the runner.
"""

from __future__ import annotations

import logging
import shlex
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Union

import httpx

from .const import DEFAULT_HTTP_TIMEOUT
from .results import ContractResult

if TYPE_CHECKING:
    from .lifecycle import ContainerHandle, Lifecycle

logger = logging.getLogger(__name__)

# Exit status of `test -e` for a missing path
_TEST_FALSE = 1


@dataclass(frozen=True)
class FileExists:
    """Passes when ``path`` exists inside the container."""

    path: str

    def describe(self) -> str:
        return f"file exists: {self.path}"

    def evaluate(
        self, lifecycle: "Lifecycle", handle: "ContainerHandle"
    ) -> ContractResult:
        result = lifecycle.exec(handle, ["test", "-e", self.path])
        if result.exit_code == 0:
            return ContractResult.ok(self.describe())
        if result.exit_code == _TEST_FALSE:
            return ContractResult.fail(
                self.describe(), f"{self.path} does not exist in the container"
            )
        return ContractResult.fail(
            self.describe(),
            f"test -e {self.path} exited with {result.exit_code}\n"
            f"--- Output ---\n{result.output}",
        )


@dataclass(frozen=True)
class CommandSucceeds:
    """Passes when ``argv`` exits with ``expected_exit_code``."""

    argv: tuple[str, ...]
    expected_exit_code: int = 0

    def __post_init__(self) -> None:
        if not self.argv:
            raise ValueError("CommandSucceeds needs a command")
        object.__setattr__(self, "argv", tuple(self.argv))

    def describe(self) -> str:
        return f"command succeeds: {shlex.join(self.argv)}"

    def evaluate(
        self, lifecycle: "Lifecycle", handle: "ContainerHandle"
    ) -> ContractResult:
        result = lifecycle.exec(handle, list(self.argv))
        if result.exit_code == self.expected_exit_code:
            return ContractResult.ok(self.describe())
        return ContractResult.fail(
            self.describe(),
            f"exit code {result.exit_code}, expected {self.expected_exit_code}\n"
            f"--- Output ---\n{result.output}",
        )


@dataclass(frozen=True)
class HTTPReady:
    """Passes when the published ``port`` answers ``path`` with ``expected_status``."""

    port: int
    path: str = "/"
    expected_status: int = 200
    timeout: float = DEFAULT_HTTP_TIMEOUT
    interval: float | None = None

    def describe(self) -> str:
        return f"HTTP {self.expected_status} on port {self.port}{self.path}"

    def evaluate(
        self, lifecycle: "Lifecycle", handle: "ContainerHandle"
    ) -> ContractResult:
        host_port = lifecycle.host_port(handle, self.port)
        url = f"http://{lifecycle.config.http_host}:{host_port}{self.path}"
        interval = self.interval or lifecycle.config.poll_interval

        deadline = time.monotonic() + self.timeout
        last_observed = "no request completed"
        attempts = 0

        # Container ports are local; proxy settings from the environment do not apply.
        with httpx.Client(follow_redirects=False, trust_env=False) as client:
            while True:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    break
                attempts += 1
                try:
                    response = client.get(url, timeout=min(remaining, interval * 4))
                    if response.status_code == self.expected_status:
                        logger.debug("%s ready after %d attempt(s)", url, attempts)
                        return ContractResult.ok(self.describe())
                    last_observed = f"status {response.status_code}"
                except httpx.HTTPError as e:
                    last_observed = f"{type(e).__name__}: {e}"

                time.sleep(max(0.0, min(interval, deadline - time.monotonic())))

        return ContractResult.fail(
            self.describe(),
            f"{url} did not answer {self.expected_status} within "
            f"{self.timeout:g}s ({attempts} attempt(s)); last observed: {last_observed}",
        )


@dataclass(frozen=True)
class LogContains:
    """
    Passes when every substring appears in the container logs.

    Logs are read after ``settle_delay`` (defaults to the configured
    settle delay). With a positive ``timeout`` they are re-read every
    ``interval`` until the substrings appear or the deadline passes.
    """

    substrings: tuple[str, ...]
    settle_delay: float | None = None
    timeout: float = 0.0
    interval: float | None = None

    def __post_init__(self) -> None:
        if not self.substrings:
            raise ValueError("LogContains needs at least one substring")
        object.__setattr__(self, "substrings", tuple(self.substrings))

    def describe(self) -> str:
        return "logs contain: " + ", ".join(repr(s) for s in self.substrings)

    def missing(self, logs: str) -> list[str]:
        return [s for s in self.substrings if s not in logs]

    def evaluate(
        self, lifecycle: "Lifecycle", handle: "ContainerHandle"
    ) -> ContractResult:
        settle = (
            lifecycle.config.settle_delay
            if self.settle_delay is None
            else self.settle_delay
        )
        interval = self.interval or lifecycle.config.poll_interval
        if settle > 0:
            time.sleep(settle)

        deadline = time.monotonic() + self.timeout
        while True:
            logs = lifecycle.logs(handle)
            missing = self.missing(logs)
            if not missing:
                return ContractResult.ok(self.describe())
            if time.monotonic() >= deadline:
                break
            time.sleep(max(0.0, min(interval, deadline - time.monotonic())))

        return ContractResult.fail(
            self.describe(),
            "missing: "
            + ", ".join(repr(s) for s in missing)
            + f"\n--- Logs ---\n{logs}",
        )


ReadinessCheck = Union[FileExists, CommandSucceeds, HTTPReady, LogContains]

CHECK_TYPES = (FileExists, CommandSucceeds, HTTPReady, LogContains)


def http_ports(checks: list[ReadinessCheck]) -> list[int]:
    """Container ports that HTTPReady checks need published."""
    return [check.port for check in checks if isinstance(check, HTTPReady)]
