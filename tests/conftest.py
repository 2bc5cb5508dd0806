from __future__ import annotations

import sys
import threading
from pathlib import Path

import pytest

# Ensure tests always import the local src tree, not an older installed wheel.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
sys.path.insert(0, str(SRC))

from whops.core.config import WorkflowConfig  # noqa: E402
from whops.core.errors import RemoteCallError  # noqa: E402
from whops.core.remote import JobState, JobStatus, RemoteJob  # noqa: E402
from whops.core.resources import QueryResult  # noqa: E402


class FakeWarehouse:
    """In-memory stand-in for a warehouse adapter that records every call."""

    def __init__(self):
        self.calls: list[tuple[str, str]] = []
        self.rows_by_marker: dict[str, QueryResult] = {}
        self.errors_by_marker: dict[str, list[RemoteCallError]] = {}
        self.job_states: list[JobState] = [JobState(JobStatus.SUCCEEDED)]
        self.cancelled: list[str] = []
        self.datasets: list[str] = []
        self._jobs = 0
        self._lock = threading.Lock()

    def _record(self, method: str, sql: str) -> None:
        with self._lock:
            self.calls.append((method, sql))
        for marker, errors in self.errors_by_marker.items():
            if marker in sql and errors:
                raise errors.pop(0)

    def submitted(self) -> list[str]:
        """SQL passed to execute/submit, in call order."""
        return [sql for method, sql in self.calls if method in ("execute", "submit")]

    def execute(self, sql, *, creates=None):
        self._record("execute", sql)
        for marker, result in self.rows_by_marker.items():
            if marker in sql:
                return result
        return QueryResult.from_rows([], [])

    def submit(self, sql, *, creates=None):
        self._record("submit", sql)
        with self._lock:
            self._jobs += 1
            return RemoteJob(job_id=f"job-{self._jobs}", sql=sql)

    def get_job_state(self, job_id):
        with self._lock:
            self.calls.append(("status", job_id))
            if len(self.job_states) > 1:
                return self.job_states.pop(0)
            return self.job_states[0]

    def cancel_job(self, job_id):
        self.cancelled.append(job_id)

    def ensure_dataset(self, dataset_id):
        self.datasets.append(dataset_id)


@pytest.fixture
def warehouse() -> FakeWarehouse:
    return FakeWarehouse()


@pytest.fixture
def config() -> WorkflowConfig:
    return WorkflowConfig(dataset_id="ga", poll_interval_seconds=0.01)
