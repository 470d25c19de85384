"""Exceptions module. Defines the error taxonomy of the harness."""


class HarnessError(Exception):
    """Base exception for capstan errors."""


class InvalidReference(HarnessError):
    """A logical image name could not be parsed into a registry reference."""


class EngineError(HarnessError):
    """The engine API answered with an error status."""

    def __init__(self, message: str, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class EngineUnavailable(EngineError):
    """The engine socket could not be reached at all."""


class StartFailure(HarnessError):
    """A container could not be brought up."""


class CheckInfrastructureError(HarnessError):
    """Infrastructure trouble while a readiness check was being evaluated."""


class LogRetrievalFailure(CheckInfrastructureError):
    """Container logs could not be fetched."""


class ExecFailure(CheckInfrastructureError):
    """A command could not be dispatched inside the container."""


class ContractFailure(AssertionError):
    """One or more readiness checks failed for an image."""

    def __init__(self, reference: str, results: list) -> None:
        from .results import format_results

        self.reference = reference
        self.results = results
        super().__init__(format_results(reference, results))
