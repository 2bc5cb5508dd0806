"""Error taxonomy for the workflow driver.

Local errors (duplicate steps, unknown dependencies, cycles, malformed
identifiers) are raised before anything is sent to the warehouse. Remote
errors wrap what the warehouse reported and always carry the exact SQL that
was submitted, so it can be pasted into the warehouse console as-is.
"""

from __future__ import annotations


class WorkflowError(Exception):
    """Base class for all workflow driver errors."""


class DuplicateStepError(WorkflowError):
    """Raised when a step name is registered twice."""

    def __init__(self, name: str):
        super().__init__(f"Step '{name}' is already registered.")
        self.name = name


class UnknownDependencyError(WorkflowError):
    """Raised when a step references a step that was not registered before it."""

    def __init__(self, step: str, dependency: str):
        super().__init__(
            f"Step '{step}' references '{dependency}', which is not a declared "
            "dependency registered before it."
        )
        self.step = step
        self.dependency = dependency


class UnknownStepError(WorkflowError, KeyError):
    """Raised when a step name is looked up but was never registered."""

    def __init__(self, name: str):
        super().__init__(f"Unknown step '{name}'.")
        self.name = name

    def __str__(self) -> str:
        return f"Unknown step '{self.name}'."


class CycleError(WorkflowError):
    """Raised when the dependency graph contains a cycle."""

    def __init__(self, cycle: list[str]):
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")
        self.cycle = cycle


class InvalidIdentifierError(WorkflowError, ValueError):
    """Raised when a resource name is not a `<dataset>.<name>` pair."""

    def __init__(self, identifier: str):
        super().__init__(
            f"Invalid resource identifier '{identifier}' (expected `<dataset>.<name>`)."
        )
        self.identifier = identifier


class InvalidModelTypeError(WorkflowError, ValueError):
    """Raised when a training step names a model type the warehouse does not offer."""


class RemoteCallError(Exception):
    """
    Error reported by a warehouse adapter.

    Adapters translate SDK exceptions into this type so the driver does not
    depend on any particular client library.

    Attributes:
        message: The message reported by the warehouse, unchanged.
        retryable: True if the warehouse flagged the failure as transient.
    """

    def __init__(self, message: str, *, retryable: bool = False):
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class RemoteExecutionError(WorkflowError):
    """
    Raised when the warehouse rejects or fails a submitted statement.

    Attributes:
        message: The warehouse's error message, unchanged.
        offending_sql: The exact SQL text that was submitted.
        step: Name of the step that failed, if known.
    """

    def __init__(self, message: str, offending_sql: str, step: str | None = None):
        super().__init__(message)
        self.message = message
        self.offending_sql = offending_sql
        self.step = step


class TrainingFailedError(RemoteExecutionError):
    """Raised when a model training job ends in the FAILED state."""


class StepCancelledError(WorkflowError):
    """Raised when a step's poll loop is cancelled or exceeds its maximum wait."""

    def __init__(self, step: str | None, reason: str):
        super().__init__(f"Step '{step}' cancelled: {reason}" if step else reason)
        self.step = step
        self.reason = reason
