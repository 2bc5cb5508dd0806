import threading
import time

import pytest

from whops.core.config import WorkflowConfig
from whops.core.driver import WorkflowDriver
from whops.core.errors import (
    RemoteCallError,
    RemoteExecutionError,
    StepCancelledError,
    TrainingFailedError,
)
from whops.core.remote import JobState, JobStatus
from whops.core.resources import EvaluationMetrics, QueryResult, ResourceKind, ResourceRef
from whops.core.steps import StepKind, StepStatus

VIEW_SQL = "CREATE OR REPLACE VIEW {name} AS SELECT 1 AS label"
MODEL_SQL = (
    "CREATE OR REPLACE MODEL {name} OPTIONS(model_type='{model_type}') AS "
    "SELECT * FROM {training_data}"
)
EVAL_SQL = "SELECT * FROM ML.EVALUATE(MODEL {logistic_model})"
PREDICT_SQL = (
    "SELECT country, SUM(predicted_label) AS total FROM "
    "ML.PREDICT(MODEL {logistic_model}, (SELECT * FROM {training_data})) GROUP BY country"
)


def _tutorial(driver: WorkflowDriver) -> WorkflowDriver:
    driver.define_step("training_data", StepKind.CREATE_VIEW, VIEW_SQL)
    driver.define_step(
        "logistic_model",
        StepKind.TRAIN_MODEL,
        MODEL_SQL,
        ["training_data"],
        model_type="logistic_reg",
    )
    driver.define_step(
        "predictions", StepKind.PREDICT, PREDICT_SQL, ["logistic_model", "training_data"]
    )
    return driver


def test_raw_query_returns_rows_unchanged(warehouse, config):
    rows = QueryResult.from_rows(
        ["os", "sessions"], [{"os": "Android", "sessions": 10}, {"os": "iOS", "sessions": 7}]
    )
    warehouse.rows_by_marker["FROM sessions"] = rows
    driver = WorkflowDriver(warehouse, config)
    driver.define_step("raw_query", StepKind.QUERY, "SELECT os, sessions FROM sessions")

    result = driver.run("raw_query")

    assert result is rows
    assert driver.status("raw_query") == StepStatus.SUCCEEDED
    assert warehouse.submitted() == ["SELECT os, sessions FROM sessions"]
    assert driver.resources == {}


def test_run_executes_dependencies_first(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))

    ref = driver.run("logistic_model")

    assert [o.step for o in driver.history] == ["training_data", "logistic_model"]
    assert all(o.status == StepStatus.SUCCEEDED for o in driver.history)
    assert ref == ResourceRef(
        name="ga.logistic_model",
        kind=ResourceKind.MODEL,
        sql=driver.render("logistic_model"),
        model_type=driver.steps[1].model_type,
    )
    assert [m for m, _ in warehouse.calls if m != "status"] == ["execute", "submit"]
    assert driver.status("predictions") == StepStatus.PENDING


def test_run_skips_dependencies_that_already_succeeded(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))
    driver.run("logistic_model")
    before = len(warehouse.submitted())

    driver.run("predictions")

    assert len(warehouse.submitted()) == before + 1
    assert "ML.PREDICT" in warehouse.submitted()[-1]


def test_run_steps_executes_each_step_once_whatever_the_target_order(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))

    outcomes = driver.run_steps(["predictions", "logistic_model", "predictions"])

    assert [o.step for o in outcomes] == ["training_data", "logistic_model", "predictions"]
    assert [m for m, _ in warehouse.calls if m == "submit"] == ["submit"]


def test_run_steps_reruns_targets_but_not_succeeded_dependencies(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))
    driver.run("logistic_model")

    outcomes = driver.run_steps(["logistic_model"])

    assert [o.step for o in outcomes] == ["logistic_model"]


def test_run_all_visits_each_step_once_dependencies_first(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))
    driver.define_step("other_view", StepKind.CREATE_VIEW, VIEW_SQL)

    outcomes = driver.run_all()

    names = [o.step for o in outcomes]
    assert sorted(names) == sorted(s.name for s in driver.steps)
    position = {n: i for i, n in enumerate(names)}
    for step in driver.steps:
        for dep in step.depends_on:
            assert position[dep] < position[step.name]


def test_create_and_train_are_idempotent(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))

    driver.run("logistic_model")
    driver.run("training_data")
    driver.run("logistic_model")

    assert sorted(driver.resources) == ["ga.logistic_model", "ga.training_data"]
    assert driver.resources["ga.training_data"].kind == ResourceKind.VIEW


def test_training_failure_halts_run_all(warehouse, config):
    warehouse.job_states = [
        JobState(JobStatus.RUNNING),
        JobState(JobStatus.FAILED, "Invalid input_label_cols"),
    ]
    driver = _tutorial(WorkflowDriver(warehouse, config))

    with pytest.raises(TrainingFailedError) as excinfo:
        driver.run_all()

    err = excinfo.value
    assert err.message == "Invalid input_label_cols"
    assert err.step == "logistic_model"
    assert err.offending_sql == driver.render("logistic_model")
    assert driver.status("training_data") == StepStatus.SUCCEEDED
    assert driver.status("logistic_model") == StepStatus.FAILED
    assert driver.status("predictions") == StepStatus.PENDING
    assert not any("ML.PREDICT" in sql for sql in warehouse.submitted())
    # no rollback of what already succeeded
    assert "ga.training_data" in driver.resources
    assert "ga.logistic_model" not in driver.resources


def test_remote_error_keeps_message_and_sql(warehouse, config):
    warehouse.errors_by_marker["VIEW"] = [RemoteCallError("Syntax error: Unexpected keyword")]
    driver = _tutorial(WorkflowDriver(warehouse, config))

    with pytest.raises(RemoteExecutionError) as excinfo:
        driver.run("training_data")

    assert str(excinfo.value) == "Syntax error: Unexpected keyword"
    assert excinfo.value.offending_sql == driver.render("training_data")
    assert excinfo.value.step == "training_data"
    assert driver.outcome("training_data").error == "Syntax error: Unexpected keyword"


def test_no_retry_by_default(warehouse, config):
    warehouse.errors_by_marker["SELECT 1"] = [RemoteCallError("backend busy", retryable=True)]
    driver = WorkflowDriver(warehouse, config)
    driver.define_step("q", StepKind.QUERY, "SELECT 1")

    with pytest.raises(RemoteExecutionError):
        driver.run("q")

    assert len(warehouse.submitted()) == 1


def test_transient_retries_for_queries_only(warehouse):
    cfg = WorkflowConfig(dataset_id="ga", poll_interval_seconds=0.01, transient_retries=2)
    warehouse.errors_by_marker["SELECT 1"] = [RemoteCallError("backend busy", retryable=True)]
    warehouse.errors_by_marker["MODEL"] = [RemoteCallError("backend busy", retryable=True)]
    driver = _tutorial(WorkflowDriver(warehouse, cfg))
    driver.define_step("q", StepKind.QUERY, "SELECT 1")

    driver.run("q")
    assert warehouse.submitted().count("SELECT 1") == 2

    with pytest.raises(RemoteExecutionError, match="backend busy"):
        driver.run("logistic_model")


def test_max_wait_marks_step_cancelled_and_allows_rerun(warehouse):
    cfg = WorkflowConfig(dataset_id="ga", poll_interval_seconds=0.01, max_wait_seconds=0.05)
    warehouse.job_states = [JobState(JobStatus.RUNNING)]
    driver = _tutorial(WorkflowDriver(warehouse, cfg))

    with pytest.raises(StepCancelledError) as excinfo:
        driver.run("logistic_model")

    assert excinfo.value.step == "logistic_model"
    assert driver.status("logistic_model") == StepStatus.CANCELLED
    assert warehouse.cancelled == ["job-1"]

    warehouse.job_states = [JobState(JobStatus.SUCCEEDED)]
    driver.run("logistic_model")

    assert driver.status("logistic_model") == StepStatus.SUCCEEDED


def test_cancel_stops_poll_loop(warehouse):
    cfg = WorkflowConfig(dataset_id="ga", poll_interval_seconds=0.01)
    warehouse.job_states = [JobState(JobStatus.RUNNING)]
    driver = _tutorial(WorkflowDriver(warehouse, cfg))
    driver.run("training_data")
    errors = []

    def _run():
        try:
            driver.run("logistic_model")
        except StepCancelledError as exc:
            errors.append(exc)

    worker = threading.Thread(target=_run)
    worker.start()
    deadline = time.monotonic() + 5
    while driver.status("logistic_model") != StepStatus.RUNNING and time.monotonic() < deadline:
        time.sleep(0.001)
    driver.cancel()
    worker.join(timeout=5)

    assert len(errors) == 1
    assert driver.status("logistic_model") == StepStatus.CANCELLED
    assert warehouse.cancelled == ["job-1"]


def test_evaluate_returns_fixed_shape_metrics(warehouse, config):
    warehouse.rows_by_marker["ML.EVALUATE"] = QueryResult.from_rows(
        ["precision", "recall", "accuracy", "f1_score", "log_loss", "roc_auc"],
        [
            {
                "precision": 0.4689,
                "recall": 0.1106,
                "accuracy": 0.9854,
                "f1_score": 0.1790,
                "log_loss": 0.0466,
                "roc_auc": 0.9819,
            }
        ],
    )
    driver = _tutorial(WorkflowDriver(warehouse, config))
    driver.define_step("evaluation", StepKind.EVALUATE, EVAL_SQL, ["logistic_model"])

    metrics = driver.run("evaluation")

    assert metrics == EvaluationMetrics(precision=0.4689, recall=0.1106, f1=0.1790, auc=0.9819)


def test_evaluate_without_rows_fails(warehouse, config):
    driver = _tutorial(WorkflowDriver(warehouse, config))
    driver.define_step("evaluation", StepKind.EVALUATE, EVAL_SQL, ["logistic_model"])

    with pytest.raises(RemoteExecutionError, match="no rows"):
        driver.run("evaluation")
    assert driver.status("evaluation") == StepStatus.FAILED


def test_evaluate_with_null_metric_fails_with_sql(warehouse, config):
    warehouse.rows_by_marker["ML.EVALUATE"] = QueryResult.from_rows(
        ["precision", "recall", "f1_score", "roc_auc"],
        [{"precision": 0.0, "recall": 0.0, "f1_score": 0.0, "roc_auc": None}],
    )
    driver = _tutorial(WorkflowDriver(warehouse, config))
    driver.define_step("evaluation", StepKind.EVALUATE, EVAL_SQL, ["logistic_model"])

    with pytest.raises(RemoteExecutionError, match="roc_auc is NULL") as excinfo:
        driver.run("evaluation")

    assert excinfo.value.step == "evaluation"
    assert excinfo.value.offending_sql == driver.render("evaluation")
    assert driver.status("evaluation") == StepStatus.FAILED


def test_listener_sees_status_changes(warehouse, config):
    seen = []
    driver = WorkflowDriver(warehouse, config, listener=lambda n, s: seen.append((n, s)))
    driver.define_step("q", StepKind.QUERY, "SELECT 1")

    driver.run("q")

    assert seen == [("q", StepStatus.RUNNING), ("q", StepStatus.SUCCEEDED)]


def test_ensure_dataset_uses_configured_dataset(warehouse, config):
    WorkflowDriver(warehouse, config).ensure_dataset()

    assert warehouse.datasets == ["ga"]


class _BarrierWarehouse:
    """Wraps a fake warehouse; the first status check of each job waits for the other."""

    def __init__(self, inner, parties: int):
        self.inner = inner
        self.barrier = threading.Barrier(parties, timeout=5)
        self.seen: set[str] = set()

    def __getattr__(self, name):
        return getattr(self.inner, name)

    def get_job_state(self, job_id):
        if job_id not in self.seen:
            self.seen.add(job_id)
            self.barrier.wait()
        return self.inner.get_job_state(job_id)


def test_run_all_parallel_trains_independent_branches_concurrently(warehouse, config):
    adapter = _BarrierWarehouse(warehouse, parties=2)
    driver = WorkflowDriver(adapter, config)
    for suffix in ("a", "b"):
        driver.define_step(f"view_{suffix}", StepKind.CREATE_VIEW, VIEW_SQL)
        driver.define_step(
            f"model_{suffix}",
            StepKind.TRAIN_MODEL,
            f"CREATE OR REPLACE MODEL {{name}} AS SELECT * FROM {{view_{suffix}}}",
            [f"view_{suffix}"],
            model_type="logistic_reg",
        )

    outcomes = driver.run_all(max_parallel=2)

    assert len(outcomes) == 4
    assert all(driver.status(s.name) == StepStatus.SUCCEEDED for s in driver.steps)
    names = [o.step for o in outcomes]
    assert names.index("view_a") < names.index("model_a")
    assert names.index("view_b") < names.index("model_b")


def test_run_all_parallel_stops_scheduling_after_failure(warehouse, config):
    warehouse.errors_by_marker["VIEW"] = [RemoteCallError("Access Denied")]
    driver = _tutorial(WorkflowDriver(warehouse, config))

    with pytest.raises(RemoteExecutionError, match="Access Denied"):
        driver.run_all(max_parallel=3)

    assert driver.status("training_data") == StepStatus.FAILED
    assert driver.status("logistic_model") == StepStatus.PENDING
    assert driver.status("predictions") == StepStatus.PENDING


def test_run_all_rejects_non_positive_parallel(warehouse, config):
    with pytest.raises(ValueError, match="max_parallel"):
        WorkflowDriver(warehouse, config).run_all(max_parallel=0)
