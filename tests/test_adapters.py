from types import SimpleNamespace

import pytest
from databricks.sdk.errors import BadRequest as DatabricksBadRequest
from databricks.sdk.errors import TemporarilyUnavailable
from databricks.sdk.service.sql import StatementState
from google.api_core.exceptions import BadRequest, ServiceUnavailable

from whops.core.adapters.bigquery import BigQueryAdapter
from whops.core.adapters.databricks_sql import DatabricksSqlAdapter
from whops.core.errors import RemoteCallError
from whops.core.remote import JobStatus

# ----------------------------------------------------------------------
# BigQuery
# ----------------------------------------------------------------------


class _Rows(list):
    def __init__(self, rows, columns):
        super().__init__(rows)
        self.schema = [SimpleNamespace(name=c) for c in columns]


class _BigQueryClient:
    def __init__(self):
        self.queries = []
        self.rows = _Rows([], [])
        self.query_error = None
        self.jobs = {}
        self.cancelled = []
        self.datasets = []

    def query(self, sql, location=None):
        self.queries.append((sql, location))
        if self.query_error is not None:
            raise self.query_error
        return SimpleNamespace(job_id="bq-job-1", result=lambda: self.rows)

    def get_job(self, job_id, location=None):
        return self.jobs[job_id]

    def cancel_job(self, job_id, location=None):
        self.cancelled.append(job_id)

    def create_dataset(self, dataset_id, exists_ok=False):
        self.datasets.append((dataset_id, exists_ok))


def test_bigquery_execute_returns_rows_and_columns():
    client = _BigQueryClient()
    client.rows = _Rows(
        [{"country": "United States", "total": 10}, {"country": "Taiwan", "total": 2}],
        ["country", "total"],
    )

    result = BigQueryAdapter(client, location="US").execute("SELECT 1")

    assert result.columns == ("country", "total")
    assert [dict(r) for r in result.rows] == [
        {"country": "United States", "total": 10},
        {"country": "Taiwan", "total": 2},
    ]
    assert client.queries == [("SELECT 1", "US")]


def test_bigquery_errors_keep_message_and_retryability():
    client = _BigQueryClient()
    adapter = BigQueryAdapter(client)

    client.query_error = BadRequest("Syntax error: Unexpected keyword FROM")
    with pytest.raises(RemoteCallError) as excinfo:
        adapter.execute("SELECT FROM")
    assert excinfo.value.message == "Syntax error: Unexpected keyword FROM"
    assert excinfo.value.retryable is False

    client.query_error = ServiceUnavailable("backend unavailable")
    with pytest.raises(RemoteCallError) as excinfo:
        adapter.execute("SELECT 1")
    assert excinfo.value.retryable is True


@pytest.mark.parametrize(
    "state, error_result, expected",
    [
        ("PENDING", None, JobStatus.PENDING),
        ("RUNNING", None, JobStatus.RUNNING),
        ("DONE", None, JobStatus.SUCCEEDED),
        ("DONE", {"reason": "invalidQuery", "message": "bad model"}, JobStatus.FAILED),
        ("DONE", {"reason": "stopped", "message": "Job cancelled"}, JobStatus.CANCELLED),
    ],
)
def test_bigquery_job_states(state, error_result, expected):
    client = _BigQueryClient()
    client.jobs["bq-job-1"] = SimpleNamespace(state=state, error_result=error_result)

    job_state = BigQueryAdapter(client).get_job_state("bq-job-1")

    assert job_state.status == expected
    if error_result:
        assert job_state.error == error_result["message"]


def test_bigquery_submit_cancel_and_dataset():
    client = _BigQueryClient()
    adapter = BigQueryAdapter(client)

    job = adapter.submit("CREATE OR REPLACE MODEL ga.m AS SELECT 1")
    adapter.cancel_job(job.job_id)
    adapter.ensure_dataset("ga")

    assert job.job_id == "bq-job-1"
    assert job.sql == "CREATE OR REPLACE MODEL ga.m AS SELECT 1"
    assert client.cancelled == ["bq-job-1"]
    assert client.datasets == [("ga", True)]


# ----------------------------------------------------------------------
# Databricks SQL
# ----------------------------------------------------------------------


def _response(statement_id, state, *, columns=(), data=None, next_chunk=None, error=None):
    return SimpleNamespace(
        statement_id=statement_id,
        status=SimpleNamespace(
            state=state,
            error=SimpleNamespace(message=error) if error else None,
        ),
        manifest=SimpleNamespace(
            schema=SimpleNamespace(columns=[SimpleNamespace(name=c) for c in columns])
        ),
        result=SimpleNamespace(data_array=data, next_chunk_index=next_chunk),
    )


class _StatementExecution:
    def __init__(self):
        self.executed = []
        self.responses = []
        self.polled = []
        self.chunks = {}
        self.cancelled = []
        self.execute_error = None

    def execute_statement(self, **kwargs):
        self.executed.append(kwargs)
        if self.execute_error is not None:
            raise self.execute_error
        return self.responses.pop(0)

    def get_statement(self, statement_id):
        self.polled.append(statement_id)
        return self.responses.pop(0)

    def get_statement_result_chunk_n(self, statement_id, chunk_index):
        return self.chunks[chunk_index]

    def cancel_execution(self, statement_id):
        self.cancelled.append(statement_id)


def _databricks():
    api = _StatementExecution()
    client = SimpleNamespace(statement_execution=api)
    return DatabricksSqlAdapter(client, "wh-1", catalog="main", poll_interval=0), api


def test_databricks_execute_polls_and_reads_chunks():
    adapter, api = _databricks()
    api.responses = [
        _response("st-1", StatementState.RUNNING),
        _response(
            "st-1",
            StatementState.SUCCEEDED,
            columns=["country", "total"],
            data=[["Canada", "3"]],
            next_chunk=1,
        ),
    ]
    api.chunks[1] = SimpleNamespace(data_array=[["India", "1"]], next_chunk_index=None)

    result = adapter.execute("SELECT country, total FROM t")

    assert result.columns == ("country", "total")
    assert [dict(r) for r in result.rows] == [
        {"country": "Canada", "total": "3"},
        {"country": "India", "total": "1"},
    ]
    assert api.polled == ["st-1"]
    assert api.executed[0]["warehouse_id"] == "wh-1"
    assert api.executed[0]["catalog"] == "main"
    assert api.executed[0]["wait_timeout"] == "50s"


def test_databricks_failed_statement_keeps_message():
    adapter, api = _databricks()
    api.responses = [
        _response("st-2", StatementState.FAILED, error="[TABLE_OR_VIEW_NOT_FOUND] ga.x")
    ]

    with pytest.raises(RemoteCallError, match="TABLE_OR_VIEW_NOT_FOUND"):
        adapter.execute("SELECT * FROM ga.x")


def test_databricks_sdk_errors_are_translated():
    adapter, api = _databricks()

    api.execute_error = TemporarilyUnavailable("warehouse starting")
    with pytest.raises(RemoteCallError) as excinfo:
        adapter.execute("SELECT 1")
    assert excinfo.value.retryable is True

    api.execute_error = DatabricksBadRequest("PARSE_SYNTAX_ERROR")
    with pytest.raises(RemoteCallError) as excinfo:
        adapter.execute("SELEC 1")
    assert excinfo.value.retryable is False
    assert "PARSE_SYNTAX_ERROR" in excinfo.value.message


def test_databricks_submit_is_async_and_tracks_state():
    adapter, api = _databricks()
    api.responses = [
        _response("st-3", StatementState.PENDING),
        _response("st-3", StatementState.CANCELED),
    ]

    job = adapter.submit("CREATE MODEL m")
    state = adapter.get_job_state(job.job_id)
    adapter.cancel_job(job.job_id)

    assert job.job_id == "st-3"
    assert api.executed[0]["wait_timeout"] == "0s"
    assert state.status == JobStatus.CANCELLED
    assert api.cancelled == ["st-3"]


@pytest.mark.parametrize(
    "state, expected",
    [
        (StatementState.RUNNING, JobStatus.RUNNING),
        (StatementState.SUCCEEDED, JobStatus.SUCCEEDED),
        (StatementState.CLOSED, JobStatus.SUCCEEDED),
        (StatementState.FAILED, JobStatus.FAILED),
        (StatementState.CANCELED, JobStatus.CANCELLED),
    ],
)
def test_databricks_statement_states(state, expected):
    adapter, api = _databricks()
    api.responses = [_response("st-5", state)]

    assert adapter.get_job_state("st-5").status == expected


def test_databricks_ensure_dataset_creates_schema():
    adapter, api = _databricks()
    api.responses = [_response("st-4", StatementState.SUCCEEDED)]

    adapter.ensure_dataset("ga")

    assert api.executed[0]["statement"] == "CREATE SCHEMA IF NOT EXISTS ga"
