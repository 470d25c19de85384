"""
pytest integration.

Registered through the ``pytest11`` entry point, so any project that has
capstan installed gets these fixtures:

- ``harness_config``: HarnessConfig loaded from the environment
- ``engine_client``: one engine session for the whole test session
- ``lifecycle``: LifecycleManager bound to that session
- ``verify_contract``: resolve an image name and verify its checks

Tests using the engine are skipped when no engine is reachable.
"""

from __future__ import annotations

from typing import Callable, Generator, Sequence

import pytest

from .checks import ReadinessCheck
from .client import EngineClient
from .config import HarnessConfig
from .exceptions import EngineUnavailable
from .lifecycle import LifecycleManager, RuntimeConfig
from .reference import resolve
from .results import ContractResult
from .runner import ContractRunner

VerifyContract = Callable[..., list[ContractResult]]


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers", "integration: needs a running container engine"
    )


@pytest.fixture(scope="session")
def harness_config() -> HarnessConfig:
    """Load harness configuration from environment."""
    return HarnessConfig.from_env()


@pytest.fixture(scope="session")
def engine_client(
    harness_config: HarnessConfig,
) -> Generator[EngineClient, None, None]:
    """Open the engine session once and close it at the end of the run."""
    client = EngineClient(
        harness_config.socket_path, timeout=harness_config.request_timeout
    )
    try:
        client.open()
    except EngineUnavailable as e:
        pytest.skip(f"Container engine not available: {e}")
    yield client
    client.close()


@pytest.fixture(scope="session")
def lifecycle(
    engine_client: EngineClient, harness_config: HarnessConfig
) -> LifecycleManager:
    return LifecycleManager(engine_client, harness_config)


@pytest.fixture
def verify_contract(
    lifecycle: LifecycleManager, harness_config: HarnessConfig
) -> VerifyContract:
    """
    Verify a contract against a fresh container.

    Usage:
        verify_contract("busybox", [CommandSucceeds(("/bin/busybox", "--list"))])
    """

    def verify(
        image: str,
        checks: Sequence[ReadinessCheck],
        runtime: RuntimeConfig | None = None,
        tag: str | None = None,
    ) -> list[ContractResult]:
        ref = resolve(image, override_tag=tag, config=harness_config)
        return ContractRunner(lifecycle).verify(ref, checks, runtime)

    return verify
