"""
Contract runner.

One ContractRunner drives exactly one contract run:

    CREATED -> STARTING -> READY -> EVALUATING -> TERMINATING -> DONE

A StartFailure moves STARTING to FAILED; an unrecoverable error during
evaluation moves EVALUATING to FAILED. Both still pass through teardown
before the error reaches the caller.
"""

from __future__ import annotations

import enum
import logging
from typing import TYPE_CHECKING, Sequence

from .checks import CHECK_TYPES, ReadinessCheck, http_ports
from .exceptions import CheckInfrastructureError, ContractFailure
from .lifecycle import RuntimeConfig
from .results import ContractResult, failed

if TYPE_CHECKING:
    from .lifecycle import ContainerHandle, Lifecycle
    from .reference import ImageReference

logger = logging.getLogger(__name__)


class RunState(enum.Enum):
    CREATED = "created"
    STARTING = "starting"
    READY = "ready"
    EVALUATING = "evaluating"
    TERMINATING = "terminating"
    DONE = "done"
    FAILED = "failed"


class ContractRunner:
    """Starts one container, evaluates checks in order, always tears down."""

    def __init__(self, lifecycle: "Lifecycle") -> None:
        self.lifecycle = lifecycle
        self.state = RunState.CREATED
        self.transitions = [RunState.CREATED]
        self.error: BaseException | None = None

    def run(
        self,
        ref: "ImageReference",
        checks: Sequence[ReadinessCheck],
        runtime: RuntimeConfig | None = None,
    ) -> list[ContractResult]:
        """
        Evaluate every check against a fresh container for ``ref``.

        Returns one ContractResult per check, in the order given, however
        many of them failed.

        Raises:
            StartFailure: If the container never came up.
            RuntimeError: If this runner was already used.
        """
        if self.state is not RunState.CREATED:
            raise RuntimeError(f"ContractRunner already used (state: {self.state.value})")

        checks = list(checks)
        for check in checks:
            if not isinstance(check, CHECK_TYPES):
                raise TypeError(f"Not a readiness check: {check!r}")

        runtime = (runtime or RuntimeConfig()).with_ports(http_ports(checks))

        self._move(RunState.STARTING)
        try:
            handle = self.lifecycle.start(ref, runtime)
        except BaseException as e:
            self._fail(ref, e)
            self._move(RunState.DONE)
            raise

        self._move(RunState.READY)
        try:
            self._move(RunState.EVALUATING)
            results = [self._evaluate(check, handle) for check in checks]
        except BaseException as e:
            self._fail(ref, e)
            raise
        finally:
            self._move(RunState.TERMINATING)
            self.lifecycle.terminate(handle)
            self._move(RunState.DONE)

        logger.info(
            "Contract for %s: %d/%d check(s) passed",
            ref,
            len(results) - len(failed(results)),
            len(results),
        )
        return results

    def _move(self, state: RunState) -> None:
        self.state = state
        self.transitions.append(state)

    def _fail(self, ref: "ImageReference", error: BaseException) -> None:
        self.error = error
        self._move(RunState.FAILED)
        logger.error("Contract run for %s failed: %s", ref, error)

    def _evaluate(
        self, check: ReadinessCheck, handle: "ContainerHandle"
    ) -> ContractResult:
        logger.debug("Evaluating %s", check.describe())
        try:
            result = check.evaluate(self.lifecycle, handle)
        except CheckInfrastructureError as e:
            result = ContractResult.fail(
                check.describe(), f"{type(e).__name__}: {e}"
            )
        if not result.passed:
            logger.warning("Check failed: %s", result.description)
        return result

    def verify(
        self,
        ref: "ImageReference",
        checks: Sequence[ReadinessCheck],
        runtime: RuntimeConfig | None = None,
    ) -> list[ContractResult]:
        """Like run(), but raises ContractFailure when any check failed."""
        results = self.run(ref, checks, runtime)
        if failed(results):
            raise ContractFailure(str(ref), results)
        return results

