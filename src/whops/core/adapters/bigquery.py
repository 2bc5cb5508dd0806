from __future__ import annotations

from google.api_core.exceptions import (
    DeadlineExceeded,
    GoogleAPIError,
    InternalServerError,
    ServiceUnavailable,
    TooManyRequests,
)
from google.cloud import bigquery

from whops.core.errors import RemoteCallError
from whops.core.remote import JobState, JobStatus, RemoteJob
from whops.core.resources import QueryResult, ResourceRef

_TRANSIENT = (DeadlineExceeded, InternalServerError, ServiceUnavailable, TooManyRequests)


def _remote_error(exc: GoogleAPIError) -> RemoteCallError:
    """Translate a Google API exception, keeping the warehouse message as-is."""
    message = getattr(exc, "message", None) or str(exc)
    return RemoteCallError(message, retryable=isinstance(exc, _TRANSIENT))


class BigQueryAdapter:
    """Adapter around the BigQuery client (query jobs and datasets)."""

    def __init__(self, client: bigquery.Client, location: str | None = None):
        self.client = client
        self.location = location

    def execute(self, sql: str, *, creates: ResourceRef | None = None) -> QueryResult:
        """Run a query job to completion and return its rows."""
        try:
            rows = self.client.query(sql, location=self.location).result()
        except GoogleAPIError as exc:
            raise _remote_error(exc) from exc
        columns = [f.name for f in (rows.schema or [])]
        return QueryResult.from_rows(columns, (dict(r.items()) for r in rows))

    def submit(self, sql: str, *, creates: ResourceRef | None = None) -> RemoteJob:
        """Start a query job (e.g. CREATE MODEL) without waiting for it."""
        try:
            job = self.client.query(sql, location=self.location)
        except GoogleAPIError as exc:
            raise _remote_error(exc) from exc
        return RemoteJob(job_id=job.job_id, sql=sql)

    def get_job_state(self, job_id: str) -> JobState:
        """Return the state of a query job."""
        try:
            job = self.client.get_job(job_id, location=self.location)
        except GoogleAPIError as exc:
            raise _remote_error(exc) from exc

        if job.state == "PENDING":
            return JobState(JobStatus.PENDING)
        if job.state == "RUNNING":
            return JobState(JobStatus.RUNNING)
        if job.state != "DONE":
            return JobState(JobStatus.UNKNOWN)

        error = job.error_result
        if not error:
            return JobState(JobStatus.SUCCEEDED)
        # BigQuery reports cancelled jobs as DONE with reason "stopped"
        if error.get("reason") == "stopped":
            return JobState(JobStatus.CANCELLED, error.get("message"))
        return JobState(JobStatus.FAILED, error.get("message"))

    def cancel_job(self, job_id: str) -> None:
        """Request cancellation of a query job."""
        try:
            self.client.cancel_job(job_id, location=self.location)
        except GoogleAPIError as exc:
            raise _remote_error(exc) from exc

    def ensure_dataset(self, dataset_id: str) -> None:
        """Create the dataset in the client's project if it does not exist."""
        try:
            self.client.create_dataset(dataset_id, exists_ok=True)
        except GoogleAPIError as exc:
            raise _remote_error(exc) from exc
