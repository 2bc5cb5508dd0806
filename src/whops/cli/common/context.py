"""Application context management for the CLI."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from whops.cli.common.exits import EXIT_USAGE, die, exit_from_exc
from whops.core.adapters.bigquery import BigQueryAdapter
from whops.core.adapters.databricks_sql import DatabricksSqlAdapter
from whops.core.auth import get_bigquery_client, get_databricks_client
from whops.core.config import WorkflowConfig
from whops.core.driver import WorkflowDriver
from whops.core.errors import WorkflowError
from whops.core.remote import WarehouseAdapter
from whops.core.resources import ModelType
from whops.core.workflows import load_workflow, tutorial_workflow

BACKENDS = ("bigquery", "databricks")


class LazyAdapter:
    """Builds the real adapter on first use, so offline commands need no credentials."""

    def __init__(self, factory: Callable[[], WarehouseAdapter]):
        self._factory = factory
        self._adapter: WarehouseAdapter | None = None

    def __getattr__(self, name: str) -> Any:
        if self._adapter is None:
            self._adapter = self._factory()
        return getattr(self._adapter, name)


@dataclass
class WorkflowAppContext:
    """Application context holding the workflow configuration and driver."""

    backend: str
    config: WorkflowConfig
    driver: WorkflowDriver


def _adapter_factory(
    backend: str,
    *,
    project: str | None,
    location: str | None,
    profile: str | None,
    warehouse_id: str | None,
    catalog: str | None,
) -> Callable[[], WarehouseAdapter]:
    """Return a factory for the selected backend's adapter."""
    if backend == "bigquery":
        return lambda: BigQueryAdapter(
            get_bigquery_client(project, location), location=location
        )
    if not warehouse_id:
        die(
            "The databricks backend needs --warehouse-id (or WHOPS_WAREHOUSE_ID).",
            code=EXIT_USAGE,
        )
    return lambda: DatabricksSqlAdapter(
        get_databricks_client(profile), warehouse_id, catalog=catalog
    )


def build_workflow_context(
    *,
    backend: str = "bigquery",
    project: str | None = None,
    location: str | None = None,
    profile: str | None = None,
    warehouse_id: str | None = None,
    catalog: str | None = None,
    dataset: str | None = None,
    workflow: Path | None = None,
    model_type: str | None = None,
    poll_interval: float | None = None,
    max_wait: float | None = None,
    sample_fraction: float | None = None,
    retries: int | None = None,
) -> WorkflowAppContext:
    """Build the workflow context: validated config, adapter and registered steps.

    Configuration and workflow-definition errors exit with code 2.
    """
    backend = backend.strip().lower()
    if backend not in BACKENDS:
        die(
            f"Unknown backend '{backend}' (expected one of: {', '.join(BACKENDS)}).",
            code=EXIT_USAGE,
        )

    try:
        config = WorkflowConfig.from_env(
            dataset_id=dataset,
            poll_interval_seconds=poll_interval,
            max_wait_seconds=max_wait,
            sample_fraction=sample_fraction,
            transient_retries=retries,
        )
    except ValueError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_USAGE)

    factory = _adapter_factory(
        backend,
        project=project,
        location=location,
        profile=profile,
        warehouse_id=warehouse_id,
        catalog=catalog,
    )
    driver = WorkflowDriver(LazyAdapter(factory), config)

    try:
        if workflow is not None:
            if model_type:
                die("--model-type applies to the built-in workflow only.", code=EXIT_USAGE)
            load_workflow(workflow, driver)
        else:
            tutorial_workflow(driver, ModelType.parse(model_type or ModelType.LOGISTIC_REG))
    except OSError as exc:
        exit_from_exc(
            exc, message=f"Cannot read workflow file: {exc}", code=EXIT_USAGE
        )
    except (WorkflowError, ValueError) as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_USAGE)

    return WorkflowAppContext(backend=backend, config=config, driver=driver)
