from __future__ import annotations

import time

from databricks.sdk import WorkspaceClient
from databricks.sdk.errors import (
    DatabricksError,
    DeadlineExceeded,
    TemporarilyUnavailable,
    TooManyRequests,
)
from databricks.sdk.service.sql import (
    Disposition,
    ExecuteStatementRequestOnWaitTimeout,
    Format,
    StatementState,
)

from whops.core.errors import RemoteCallError
from whops.core.remote import JobState, JobStatus, RemoteJob
from whops.core.resources import QueryResult, ResourceRef

_TRANSIENT = (DeadlineExceeded, TemporarilyUnavailable, TooManyRequests)

_STATUS_BY_STATE = {
    StatementState.PENDING: JobStatus.PENDING,
    StatementState.RUNNING: JobStatus.RUNNING,
    StatementState.SUCCEEDED: JobStatus.SUCCEEDED,
    StatementState.FAILED: JobStatus.FAILED,
    StatementState.CANCELED: JobStatus.CANCELLED,
    StatementState.CLOSED: JobStatus.SUCCEEDED,
}


def _remote_error(exc: DatabricksError) -> RemoteCallError:
    """Translate a Databricks SDK exception, keeping its message as-is."""
    return RemoteCallError(str(exc), retryable=isinstance(exc, _TRANSIENT))


class DatabricksSqlAdapter:
    """Adapter around the Databricks SDK Statement Execution API."""

    _SYNC_WAIT_TIMEOUT = "50s"

    def __init__(
        self,
        client: WorkspaceClient,
        warehouse_id: str,
        *,
        catalog: str | None = None,
        poll_interval: float = 1.0,
    ):
        """Create an adapter that runs statements on one SQL warehouse."""
        self.client = client
        self.warehouse_id = warehouse_id
        self.catalog = catalog
        self.poll_interval = poll_interval

    def _execute_statement(self, sql: str, wait_timeout: str):
        try:
            return self.client.statement_execution.execute_statement(
                statement=sql,
                warehouse_id=self.warehouse_id,
                catalog=self.catalog,
                wait_timeout=wait_timeout,
                on_wait_timeout=ExecuteStatementRequestOnWaitTimeout.CONTINUE,
                disposition=Disposition.INLINE,
                format=Format.JSON_ARRAY,
            )
        except DatabricksError as exc:
            raise _remote_error(exc) from exc

    def _get_statement(self, statement_id: str):
        try:
            return self.client.statement_execution.get_statement(statement_id)
        except DatabricksError as exc:
            raise _remote_error(exc) from exc

    def execute(self, sql: str, *, creates: ResourceRef | None = None) -> QueryResult:
        """Run a statement to completion and return its rows."""
        resp = self._execute_statement(sql, self._SYNC_WAIT_TIMEOUT)
        while resp.status and resp.status.state in (
            StatementState.PENDING,
            StatementState.RUNNING,
        ):
            time.sleep(self.poll_interval)
            resp = self._get_statement(resp.statement_id)

        state = _state_of(resp)
        if state.status != JobStatus.SUCCEEDED:
            raise RemoteCallError(
                state.error or f"Statement {resp.statement_id} ended {state.status.value}."
            )

        columns: list[str] = []
        if resp.manifest and resp.manifest.schema and resp.manifest.schema.columns:
            columns = [c.name for c in resp.manifest.schema.columns]

        data = list(resp.result.data_array or []) if resp.result else []
        next_chunk = resp.result.next_chunk_index if resp.result else None
        while next_chunk is not None:
            try:
                chunk = self.client.statement_execution.get_statement_result_chunk_n(
                    resp.statement_id, next_chunk
                )
            except DatabricksError as exc:
                raise _remote_error(exc) from exc
            data.extend(chunk.data_array or [])
            next_chunk = chunk.next_chunk_index

        return QueryResult.from_rows(columns, (dict(zip(columns, row)) for row in data))

    def submit(self, sql: str, *, creates: ResourceRef | None = None) -> RemoteJob:
        """Start a statement asynchronously and return its handle."""
        resp = self._execute_statement(sql, "0s")
        return RemoteJob(job_id=resp.statement_id, sql=sql)

    def get_job_state(self, job_id: str) -> JobState:
        """Return the state of a submitted statement."""
        return _state_of(self._get_statement(job_id))

    def cancel_job(self, job_id: str) -> None:
        """Request cancellation of a running statement."""
        try:
            self.client.statement_execution.cancel_execution(job_id)
        except DatabricksError as exc:
            raise _remote_error(exc) from exc

    def ensure_dataset(self, dataset_id: str) -> None:
        """Create the schema if it does not exist."""
        self.execute(f"CREATE SCHEMA IF NOT EXISTS {dataset_id}")


def _state_of(resp) -> JobState:
    """Map a statement response to a JobState."""
    status = resp.status
    if not status or not status.state:
        return JobState(JobStatus.UNKNOWN)
    error = status.error.message if status.error else None
    return JobState(_STATUS_BY_STATE.get(status.state, JobStatus.UNKNOWN), error)
