"""Workflow driver.

The driver holds an ordered list of named SQL steps, renders each step's
template with the configured dataset and the names of the resources it
depends on, and forwards the statement to a warehouse adapter. It performs
no local data processing: results are returned as the warehouse produced
them.

Execution is sequential by default. Independent branches of the dependency
graph can run on a thread pool; a per-resource lock keeps two workers from
creating or replacing the same resource at the same time.
"""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from contextlib import nullcontext
from dataclasses import replace
from typing import Any, Callable, Iterable, TypeVar

from whops.core.config import WorkflowConfig
from whops.core.errors import (
    CycleError,
    DuplicateStepError,
    InvalidModelTypeError,
    RemoteCallError,
    RemoteExecutionError,
    StepCancelledError,
    UnknownDependencyError,
    UnknownStepError,
    WorkflowError,
)
from whops.core.polling import wait_for_job
from whops.core.remote import WarehouseAdapter
from whops.core.resources import (
    EvaluationMetrics,
    ModelType,
    QueryResult,
    ResourceRef,
    qualify,
    validate_name_part,
)
from whops.core.steps import (
    RESERVED_PLACEHOLDERS,
    Step,
    StepKind,
    StepOutcome,
    StepState,
    StepStatus,
    render_sql,
    template_fields,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

StepListener = Callable[[str, StepStatus], None]

_METRIC_COLUMNS: dict[str, tuple[str, ...]] = {
    "precision": ("precision",),
    "recall": ("recall",),
    "f1": ("f1_score", "f1"),
    "auc": ("roc_auc", "auc"),
}


class WorkflowDriver:
    """
    Registers workflow steps and executes them against a warehouse.

    Args:
        adapter: Warehouse adapter used for every remote call.
        config: Dataset, polling and sampling settings.
        listener: Optional callback invoked with (step name, status) on every
                  status change, e.g. to drive a progress display.
    """

    def __init__(
        self,
        adapter: WarehouseAdapter,
        config: WorkflowConfig,
        *,
        listener: StepListener | None = None,
    ):
        self.adapter = adapter
        self.config = config
        self.listener = listener
        self._steps: dict[str, Step] = {}
        self._states: dict[str, StepState] = {}
        self._resources: dict[str, ResourceRef] = {}
        self._history: list[StepOutcome] = []
        self._lock = threading.Lock()
        self._resource_locks: dict[str, threading.Lock] = {}
        self._cancel = threading.Event()

    # ------------------------------------------------------------------
    # Graph construction
    # ------------------------------------------------------------------

    def define_step(
        self,
        name: str,
        kind: StepKind | str,
        sql_template: str,
        depends_on: Iterable[str] = (),
        *,
        model_type: ModelType | str | None = None,
    ) -> Step:
        """
        Register a step.

        Args:
            name: Unique step name. Resource-creating steps create
                  `<dataset>.<name>`.
            kind: Statement kind.
            sql_template: SQL text with `str.format` placeholders.
            depends_on: Names of previously registered steps.
            model_type: Classifier type; required for training steps.

        Returns:
            The registered Step.

        Raises:
            DuplicateStepError: If `name` is already registered.
            UnknownDependencyError: If a dependency, or a step placeholder in
                the template, is not a previously registered, declared dependency.
            InvalidIdentifierError: If `name` cannot form a resource identifier.
            InvalidModelTypeError: If a training step has no valid model type.
            ValueError: If evaluate/predict steps lack the model or view
                dependencies they need.
        """
        if name in self._steps:
            raise DuplicateStepError(name)

        kind = StepKind.parse(kind)
        validate_name_part(name)
        if kind.creates is not None:
            qualify(self.config.dataset_id, name)

        deps = tuple(dict.fromkeys(depends_on))
        for dep in deps:
            if dep not in self._steps:
                raise UnknownDependencyError(name, dep)

        for field_name in template_fields(sql_template):
            if field_name in RESERVED_PLACEHOLDERS:
                continue
            if field_name not in deps:
                raise UnknownDependencyError(name, field_name)
            if self._steps[field_name].kind.creates is None:
                raise ValueError(
                    f"Step '{name}' references '{field_name}', which creates no resource."
                )

        parsed_model_type = self._check_model_type(name, kind, model_type)
        self._check_required_inputs(name, kind, deps)

        step = Step(
            name=name,
            kind=kind,
            sql_template=sql_template,
            depends_on=deps,
            model_type=parsed_model_type,
        )
        self._steps[name] = step
        self._states[name] = StepState()
        logger.debug("Registered step %s (%s) depends_on=%s", name, kind.value, deps)
        return step

    def add_dependency(self, step: str, depends_on: str) -> Step:
        """
        Make an already registered step depend on another registered step.

        Cycles are not checked here; `run`, `run_all` and `execution_order`
        raise CycleError when they walk a cyclic graph.
        """
        current = self._get(step)
        if depends_on not in self._steps:
            raise UnknownDependencyError(step, depends_on)
        if depends_on in current.depends_on:
            return current
        updated = replace(current, depends_on=current.depends_on + (depends_on,))
        self._steps[step] = updated
        return updated

    def _check_model_type(
        self, name: str, kind: StepKind, model_type: ModelType | str | None
    ) -> ModelType | None:
        if kind != StepKind.TRAIN_MODEL:
            if model_type is not None:
                raise ValueError(f"Step '{name}' is not a training step; drop model_type.")
            return None
        if model_type is None:
            raise InvalidModelTypeError(f"Training step '{name}' needs a model_type.")
        return ModelType.parse(model_type)

    def _check_required_inputs(
        self, name: str, kind: StepKind, deps: tuple[str, ...]
    ) -> None:
        dep_kinds = {self._steps[d].kind for d in deps}
        if kind in (StepKind.EVALUATE, StepKind.PREDICT):
            if StepKind.TRAIN_MODEL not in dep_kinds:
                raise ValueError(f"Step '{name}' must depend on a training step.")
        if kind == StepKind.PREDICT and StepKind.CREATE_VIEW not in dep_kinds:
            raise ValueError(f"Step '{name}' must depend on a view with inference input.")

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    @property
    def steps(self) -> list[Step]:
        """Registered steps, in registration order."""
        return list(self._steps.values())

    @property
    def history(self) -> list[StepOutcome]:
        """Every step execution so far, in the order it finished."""
        with self._lock:
            return list(self._history)

    @property
    def resources(self) -> dict[str, ResourceRef]:
        """Resources created so far, keyed by `<dataset>.<name>`."""
        with self._lock:
            return dict(self._resources)

    def status(self, name: str) -> StepStatus:
        """Return the current status of a step."""
        self._get(name)
        with self._lock:
            return self._states[name].status

    def outcome(self, name: str) -> StepOutcome | None:
        """Return the outcome of the step's latest execution, if any."""
        self._get(name)
        with self._lock:
            return self._states[name].last

    def execution_order(self, names: Iterable[str] | None = None) -> list[str]:
        """
        Return steps in dependency order.

        Dependencies are walked depth-first and visited before the steps that
        need them; ties are broken by registration order.

        Args:
            names: Target steps (with their transitive dependencies), or None
                   for every registered step.

        Raises:
            UnknownStepError: If a target name is not registered.
            CycleError: If the graph reachable from the targets has a cycle.
        """
        position = {n: i for i, n in enumerate(self._steps)}
        targets = list(self._steps) if names is None else list(names)
        order: list[str] = []
        done: set[str] = set()
        path: list[str] = []

        def visit(node: str) -> None:
            if node in done:
                return
            if node in path:
                raise CycleError(path[path.index(node):] + [node])
            path.append(node)
            for dep in sorted(self._get(node).depends_on, key=position.__getitem__):
                visit(dep)
            path.pop()
            done.add(node)
            order.append(node)

        for target in targets:
            self._get(target)
            visit(target)
        return order

    def resource_name(self, name: str) -> str | None:
        """Return the `<dataset>.<name>` a step creates, or None."""
        step = self._get(name)
        if step.kind.creates is None:
            return None
        return qualify(self.config.dataset_id, step.name)

    def render(self, name: str) -> str:
        """Return the exact SQL the step would submit."""
        step = self._get(name)
        values: dict[str, str] = self.config.template_values()
        own = self.resource_name(name)
        if own is not None:
            values["name"] = own
        if step.model_type is not None:
            values["model_type"] = step.model_type.value
        for dep in step.depends_on:
            dep_name = self.resource_name(dep)
            if dep_name is not None:
                values[dep] = dep_name
        return render_sql(step.sql_template, values)

    def _get(self, name: str) -> Step:
        try:
            return self._steps[name]
        except KeyError:
            raise UnknownStepError(name) from None

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    def ensure_dataset(self) -> None:
        """Create the configured dataset in the warehouse if it is missing."""
        logger.info("Ensuring dataset %s exists", self.config.dataset_id)
        self.adapter.ensure_dataset(self.config.dataset_id)

    def cancel(self) -> None:
        """Cancel every running poll loop; affected steps end CANCELLED."""
        logger.info("Cancellation requested")
        self._cancel.set()

    def run(self, name: str) -> Any:
        """
        Run a step, executing any dependency that has not succeeded yet.

        The target step itself is always executed, so re-running a
        cancelled step (or re-creating a view or model) is allowed.

        Returns:
            QueryResult for query and predict steps, ResourceRef for view and
            training steps, EvaluationMetrics for evaluate steps.

        Raises:
            CycleError: If the dependencies contain a cycle.
            RemoteExecutionError: If the warehouse rejects a statement.
            TrainingFailedError: If a training job ends FAILED.
            StepCancelledError: If a poll loop is cancelled or times out.
        """
        order = self.execution_order([name])
        self._cancel.clear()
        for dep in order[:-1]:
            if self.status(dep) != StepStatus.SUCCEEDED:
                self._execute(self._steps[dep])
        return self._execute(self._steps[name])

    def run_steps(self, names: Iterable[str]) -> list[StepOutcome]:
        """
        Run several target steps, executing each step at most once.

        Dependencies that have not succeeded yet run first; every target runs
        even if it succeeded earlier, but never twice in one call, whatever
        order the targets are given in.

        Returns:
            The outcomes of this call, in the order the steps finished.
        """
        targets = list(dict.fromkeys(names))
        order = self.execution_order(targets)
        self._cancel.clear()
        start = len(self.history)
        for name in order:
            if name in targets or self.status(name) != StepStatus.SUCCEEDED:
                self._execute(self._steps[name])
        return self.history[start:]

    def run_all(self, max_parallel: int | None = None) -> list[StepOutcome]:
        """
        Execute every registered step exactly once, in dependency order.

        The first failure stops scheduling; resources created by earlier steps
        are left in place and steps that were never reached stay PENDING.

        Args:
            max_parallel: Number of worker threads; None or 1 runs sequentially.

        Returns:
            The outcomes of this pass, in the order the steps finished.
        """
        if max_parallel is not None and max_parallel < 1:
            raise ValueError("max_parallel must be >= 1")

        order = self.execution_order()
        self._cancel.clear()
        start = len(self.history)
        with self._lock:
            for state in self._states.values():
                state.status = StepStatus.PENDING

        if not max_parallel or max_parallel == 1:
            for name in order:
                self._execute(self._steps[name])
        else:
            self._run_parallel(order, max_parallel)
        return self.history[start:]

    def _run_parallel(self, order: list[str], max_parallel: int) -> None:
        """Run ready steps on a thread pool until all are done or one fails."""
        pending = list(order)
        done: set[str] = set()
        first_error: WorkflowError | None = None

        with ThreadPoolExecutor(max_workers=max_parallel) as pool:
            running: dict[Future, str] = {}
            while pending or running:
                if first_error is None:
                    for name in list(pending):
                        if len(running) >= max_parallel:
                            break
                        if all(d in done for d in self._steps[name].depends_on):
                            pending.remove(name)
                            fut = pool.submit(self._execute, self._steps[name])
                            running[fut] = name

                if not running:
                    break

                try:
                    finished, _ = wait(running, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    # workers' poll loops stop on the cancel event
                    self.cancel()
                    raise
                for fut in finished:
                    name = running.pop(fut)
                    try:
                        fut.result()
                    except WorkflowError as exc:
                        if first_error is None:
                            first_error = exc
                    else:
                        done.add(name)

        if first_error is not None:
            raise first_error

    def _execute(self, step: Step) -> Any:
        """Execute one step and record its outcome."""
        sql = self.render(step.name)
        resource = self._resource_ref(step, sql)
        lock = self._resource_lock(resource.name) if resource else nullcontext()

        self._set_status(step.name, StepStatus.RUNNING)
        logger.info("Running step %s (%s)", step.name, step.kind.value)
        started = time.monotonic()

        try:
            with lock:
                result = self._dispatch(step, sql, resource)
        except StepCancelledError as exc:
            self._finish(step, StepStatus.CANCELLED, sql, started, error=exc.reason)
            raise StepCancelledError(step.name, exc.reason) from exc
        except RemoteExecutionError as exc:
            exc.step = step.name
            self._finish(step, StepStatus.FAILED, sql, started, error=exc.message)
            raise
        except Exception as exc:
            self._finish(step, StepStatus.FAILED, sql, started, error=str(exc))
            raise

        self._finish(step, StepStatus.SUCCEEDED, sql, started, result=result)
        return result

    def _dispatch(self, step: Step, sql: str, resource: ResourceRef | None) -> Any:
        if step.kind in (StepKind.QUERY, StepKind.PREDICT):
            return self._call(step, sql, lambda: self.adapter.execute(sql))

        if step.kind == StepKind.CREATE_VIEW:
            self._call(step, sql, lambda: self.adapter.execute(sql, creates=resource))
            return self._register(resource)

        if step.kind == StepKind.TRAIN_MODEL:
            job = self._call(step, sql, lambda: self.adapter.submit(sql, creates=resource))
            logger.info("Step %s submitted training job %s", step.name, job.job_id)
            try:
                wait_for_job(
                    self.adapter,
                    job,
                    self.config.poll_interval_seconds,
                    max_wait=self.config.max_wait_seconds,
                    cancel_event=self._cancel,
                )
            except RemoteCallError as exc:
                raise RemoteExecutionError(exc.message, sql, step.name) from exc
            return self._register(resource)

        result = self._call(step, sql, lambda: self.adapter.execute(sql))
        return _to_metrics(result, sql, step.name)

    def _call(self, step: Step, sql: str, fn: Callable[[], T]) -> T:
        """Invoke an adapter call, retrying transient failures if configured."""
        attempt = 0
        while True:
            try:
                return fn()
            except RemoteCallError as exc:
                can_retry = (
                    exc.retryable
                    and step.kind != StepKind.TRAIN_MODEL
                    and attempt < self.config.transient_retries
                )
                if not can_retry:
                    raise RemoteExecutionError(exc.message, sql, step.name) from exc
                attempt += 1
                logger.warning(
                    "Step %s hit a transient error (attempt %d/%d): %s",
                    step.name,
                    attempt,
                    self.config.transient_retries,
                    exc.message,
                )

    def _resource_ref(self, step: Step, sql: str) -> ResourceRef | None:
        kind = step.kind.creates
        if kind is None:
            return None
        return ResourceRef(
            name=qualify(self.config.dataset_id, step.name),
            kind=kind,
            sql=sql,
            model_type=step.model_type,
        )

    def _resource_lock(self, resource_name: str) -> threading.Lock:
        with self._lock:
            return self._resource_locks.setdefault(resource_name, threading.Lock())

    def _register(self, resource: ResourceRef) -> ResourceRef:
        with self._lock:
            self._resources[resource.name] = resource
        logger.debug("Registered %s %s", resource.kind.value.lower(), resource.name)
        return resource

    def _set_status(self, name: str, status: StepStatus) -> None:
        with self._lock:
            self._states[name].status = status
        if self.listener is not None:
            self.listener(name, status)

    def _finish(
        self,
        step: Step,
        status: StepStatus,
        sql: str,
        started: float,
        *,
        result: Any = None,
        error: str | None = None,
    ) -> None:
        outcome = StepOutcome(
            step=step.name,
            status=status,
            sql=sql,
            result=result,
            error=error,
            duration_seconds=time.monotonic() - started,
        )
        with self._lock:
            state = self._states[step.name]
            state.last = outcome
            self._history.append(outcome)
        if status == StepStatus.SUCCEEDED:
            logger.info("Step %s succeeded", step.name)
        else:
            logger.error("Step %s ended %s: %s", step.name, status.value, error)
        self._set_status(step.name, status)


def _to_metrics(result: QueryResult, sql: str, step: str) -> EvaluationMetrics:
    """Map the first row of an evaluation result to EvaluationMetrics."""
    if not result.rows:
        raise RemoteExecutionError("Evaluation returned no rows.", sql, step)
    row = result.rows[0]
    values: dict[str, float] = {}
    for metric, columns in _METRIC_COLUMNS.items():
        column = next((c for c in columns if c in row), None)
        if column is None:
            raise RemoteExecutionError(
                f"Evaluation result has no {' / '.join(columns)} column.", sql, step
            )
        if row[column] is None:
            raise RemoteExecutionError(f"Evaluation column {column} is NULL.", sql, step)
        values[metric] = float(row[column])
    return EvaluationMetrics(**values)
