"""Remote execution interface.

The driver never talks to a warehouse SDK directly. Everything goes through
the `WarehouseAdapter` protocol below; concrete adapters live in
`whops.core.adapters`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from whops.core.resources import QueryResult, ResourceRef


class JobStatus(str, Enum):
    """
    Enumeration of possible states of an asynchronous warehouse job.

    Values:
        PENDING: The job has been accepted but has not started yet.
        RUNNING: The job is executing.
        SUCCEEDED: The job completed successfully.
        FAILED: The job completed with an error.
        CANCELLED: The job was cancelled before completion.
        UNKNOWN: The job state could not be determined.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED, JobStatus.CANCELLED)


@dataclass(frozen=True)
class JobState:
    """Status of a job plus the warehouse's error message, if any."""

    status: JobStatus
    error: str | None = None


@dataclass(frozen=True)
class RemoteJob:
    """
    Handle of an asynchronous statement submitted to the warehouse.

    Attributes:
        job_id: Warehouse-side identifier of the job.
        sql: The exact statement that was submitted.
    """

    job_id: str
    sql: str


class WarehouseAdapter(Protocol):
    """Interface for submitting SQL to a warehouse and tracking jobs."""

    def execute(self, sql: str, *, creates: ResourceRef | None = None) -> QueryResult:
        """Run a statement to completion and return its rows."""
        ...

    def submit(self, sql: str, *, creates: ResourceRef | None = None) -> RemoteJob:
        """Start a long-running statement and return its job handle."""
        ...

    def get_job_state(self, job_id: str) -> JobState:
        """Return the current state of a submitted job."""
        ...

    def cancel_job(self, job_id: str) -> None:
        """Request cancellation of a submitted job."""
        ...

    def ensure_dataset(self, dataset_id: str) -> None:
        """Create the dataset if it does not exist yet."""
        ...
