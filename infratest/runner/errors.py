# Where: infratest/runner/errors.py
# What: Exception taxonomy for provisioning, readiness and scenario control.
# Why: Let the runner map each failure to the stage and kind it belongs to.
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from infratest.runner.models import AttemptRecord


class InfraTestError(Exception):
    """Base exception for the infratest engine."""

    pass


class ProvisioningError(InfraTestError):
    """Raised when apply fails permanently or exhausts its retry budget."""

    def __init__(
        self,
        message: str,
        *,
        classification: str,
        attempts: list[AttemptRecord] | None = None,
    ):
        self.classification = classification
        self.attempts = list(attempts or [])
        super().__init__(message)


class CleanupError(ProvisioningError):
    """Raised when destroy fails after its own retry budget.

    Resources are probably still running and billing.
    """

    pass


class ReadinessTimeoutError(InfraTestError):
    """Raised when the readiness probe never reported ready."""

    def __init__(self, resource: str, attempts: int, elapsed: float, last_error: str | None = None):
        self.resource = resource
        self.attempts = attempts
        self.elapsed = elapsed
        self.last_error = last_error
        message = f"{resource} not ready after {attempts} attempts ({elapsed:.1f}s)"
        if last_error:
            message = f"{message}. Last error: {last_error}"
        super().__init__(message)


class ScenarioTimeoutError(InfraTestError):
    """Raised when a scenario exceeds its overall deadline."""

    pass


class ScenarioCancelledError(InfraTestError):
    """Raised inside a scenario when the suite was interrupted."""

    pass


class OutputNotFoundError(InfraTestError, LookupError):
    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Output not found: {name}")


class OutputTypeError(InfraTestError, TypeError):
    def __init__(self, name: str, expected: str, actual: str):
        self.name = name
        super().__init__(f"Output {name} is a {actual}, not a {expected}")


class SuiteInterrupted(KeyboardInterrupt):
    """Ctrl-C during a suite run, raised once running scenarios have been destroyed.

    ``results`` holds every scenario that got to run, so callers can still
    report leaked resources.
    """

    def __init__(self, results: dict):
        self.results = results
        super().__init__("suite interrupted")
