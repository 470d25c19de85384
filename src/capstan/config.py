"""
Harness configuration.

Controls registry mapping, tag pinning, engine connection and the bounded
waits used by readiness checks. Everything can be overridden from the
environment so CI can pin images without touching the tests.
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

from .const import (
    DEFAULT_HTTP_HOST,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_PULL_TIMEOUT,
    DEFAULT_REGISTRY,
    DEFAULT_SETTLE_DELAY,
    DEFAULT_TAG,
    DEFAULT_TIMEOUT,
)
from .transport import discover_socket_path


def parse_tag_overrides(raw: str) -> dict[str, str]:
    """
    Parse "name=tag,other=tag" into a mapping.
    Blank entries are skipped; entries without "=" are ignored.
    """
    overrides: dict[str, str] = {}
    for entry in raw.split(","):
        entry = entry.strip()
        if not entry or "=" not in entry:
            continue
        name, tag = entry.split("=", 1)
        if name.strip() and tag.strip():
            overrides[name.strip()] = tag.strip()
    return overrides


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() not in ("0", "false", "no", "off", "")


@dataclass(frozen=True)
class HarnessConfig:
    """Configuration for contract runs."""

    # Image resolution
    registry: str = DEFAULT_REGISTRY
    default_tag: str = DEFAULT_TAG
    tag_overrides: dict[str, str] = field(default_factory=dict)

    # Engine connection
    socket_path: str = field(default_factory=discover_socket_path)

    # Timeouts (seconds)
    startup_timeout: float = DEFAULT_TIMEOUT
    pull_timeout: float = DEFAULT_PULL_TIMEOUT
    request_timeout: float = DEFAULT_TIMEOUT

    # Readiness polling
    http_host: str = DEFAULT_HTTP_HOST
    poll_interval: float = DEFAULT_POLL_INTERVAL
    settle_delay: float = DEFAULT_SETTLE_DELAY

    # Pull progress bar
    show_progress: bool = True

    @classmethod
    def from_env(cls) -> "HarnessConfig":
        """Load config from environment variables."""
        return cls(
            registry=os.getenv("CAPSTAN_REGISTRY", DEFAULT_REGISTRY).rstrip("/"),
            default_tag=os.getenv("CAPSTAN_DEFAULT_TAG", DEFAULT_TAG),
            tag_overrides=parse_tag_overrides(os.getenv("CAPSTAN_TAG_OVERRIDES", "")),
            socket_path=discover_socket_path(),
            startup_timeout=float(
                os.getenv("CAPSTAN_STARTUP_TIMEOUT", str(DEFAULT_TIMEOUT))
            ),
            pull_timeout=float(
                os.getenv("CAPSTAN_PULL_TIMEOUT", str(DEFAULT_PULL_TIMEOUT))
            ),
            request_timeout=float(
                os.getenv("CAPSTAN_REQUEST_TIMEOUT", str(DEFAULT_TIMEOUT))
            ),
            http_host=os.getenv("CAPSTAN_HTTP_HOST", DEFAULT_HTTP_HOST),
            poll_interval=float(
                os.getenv("CAPSTAN_POLL_INTERVAL", str(DEFAULT_POLL_INTERVAL))
            ),
            settle_delay=float(
                os.getenv("CAPSTAN_SETTLE_DELAY", str(DEFAULT_SETTLE_DELAY))
            ),
            show_progress=_env_flag("CAPSTAN_PROGRESS", sys.stderr.isatty()),
        )


# Global default config instance
_config: HarnessConfig | None = None


def get_config() -> HarnessConfig:
    """Get or create the global config instance."""
    global _config
    if _config is None:
        _config = HarnessConfig.from_env()
    return _config
