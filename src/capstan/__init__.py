"""Container-contract verification harness.

Starts prebuilt container images through the Docker (or Podman) Engine
API and verifies that they came up correctly: files present, commands
succeeding, HTTP endpoints ready, startup log lines emitted.
"""

import logging
import os
import sys

from .checks import CommandSucceeds, FileExists, HTTPReady, LogContains, ReadinessCheck
from .client import EngineClient
from .config import HarnessConfig, get_config
from .exceptions import (
    ContractFailure,
    EngineError,
    EngineUnavailable,
    ExecFailure,
    HarnessError,
    InvalidReference,
    LogRetrievalFailure,
    StartFailure,
)
from .lifecycle import ContainerHandle, LifecycleManager, RuntimeConfig
from .reference import ImageReference, resolve
from .results import ContractResult
from .runner import ContractRunner, RunState

__all__ = [
    "CommandSucceeds",
    "ContainerHandle",
    "ContractFailure",
    "ContractResult",
    "ContractRunner",
    "EngineClient",
    "EngineError",
    "EngineUnavailable",
    "ExecFailure",
    "FileExists",
    "HTTPReady",
    "HarnessConfig",
    "HarnessError",
    "ImageReference",
    "InvalidReference",
    "LifecycleManager",
    "LogContains",
    "LogRetrievalFailure",
    "ReadinessCheck",
    "RunState",
    "RuntimeConfig",
    "StartFailure",
    "get_config",
    "resolve",
]

# Configure logging for the entire package
logger = logging.getLogger(__name__)
logger.setLevel(os.environ.get("CAPSTAN_LOG_LEVEL", "INFO").upper())

# Only add handler if none exists to avoid duplicates
if not logger.handlers:
    handler = logging.StreamHandler(sys.stdout)
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)
    logger.addHandler(handler)
