"""Exception types raised by the operations scripts.

Every failure that should end a script with a non-zero exit code derives
from FlightOpsError, so entry points can catch one base class.
"""

from typing import List, Optional


class FlightOpsError(Exception):
    """Base error for the operations tooling."""


class ConfigurationError(FlightOpsError):
    """Missing or invalid configuration."""


class ValidationError(FlightOpsError):
    """Parameter validation error with the offending field."""

    def __init__(self, message: str, field: Optional[str] = None):
        self.message = message
        self.field = field
        super().__init__(message)


class CommandError(FlightOpsError):
    """External command exited with a non-zero status."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = stderr.strip()
        message = f"Command '{' '.join(command)}' failed with exit code {returncode}"
        if self.stderr:
            message = f"{message}: {self.stderr}"
        super().__init__(message)


class AzureOperationError(FlightOpsError):
    """An Azure call returned an unexpected state."""


class StepFailedError(FlightOpsError):
    """A critical step failed and the operation was aborted."""

    def __init__(self, step: str, cause: Exception):
        self.step = step
        self.cause = cause
        super().__init__(f"Step '{step}' failed: {cause}")


class OperationTimeoutError(FlightOpsError):
    """Polling a long-running operation exceeded its timeout."""


class ProductionSafetyError(FlightOpsError):
    """Refused to run a destructive action against production."""
