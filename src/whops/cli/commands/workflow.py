"""Commands for running warehouse ML workflows."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.markup import escape

from whops.cli.common.context import WorkflowAppContext, build_workflow_context
from whops.cli.common.exits import (
    EXIT_USAGE,
    die,
    exit_for_statuses,
    exit_from_exc,
    ok_exit,
    warn_exit,
)
from whops.cli.common.logs import configure_logging
from whops.cli.common.options import (
    BackendOpt,
    CatalogOpt,
    ConfirmOpt,
    CreateDatasetOpt,
    DatasetOpt,
    DryRunOpt,
    KindOpt,
    LocationOpt,
    MaxWaitOpt,
    ModelTypeOpt,
    NameOpt,
    ParallelOpt,
    PollIntervalOpt,
    ProfileOpt,
    ProjectOpt,
    RetriesOpt,
    SampleFractionOpt,
    SelectOpt,
    UseOrOpt,
    VerboseOpt,
    WarehouseOpt,
    WorkflowFileOpt,
)
from whops.cli.common.output import out
from whops.cli.common.progress import StepProgress
from whops.cli.common.selector_builder import build_selector
from whops.cli.tui import select_steps as tui_select_steps
from whops.core.auth import AuthError
from whops.core.driver import WorkflowDriver
from whops.core.errors import (
    RemoteCallError,
    RemoteExecutionError,
    StepCancelledError,
    WorkflowError,
)
from whops.core.selectors import select_steps as core_select_steps
from whops.core.steps import StepStatus

app = typer.Typer(
    help="Define and run warehouse ML workflows",
    no_args_is_help=False,
    invoke_without_command=True,
)


@app.callback()
def _init(
    ctx: typer.Context,
    backend: str = BackendOpt,
    project: str | None = ProjectOpt,
    location: str | None = LocationOpt,
    profile: str | None = ProfileOpt,
    warehouse_id: str | None = WarehouseOpt,
    catalog: str | None = CatalogOpt,
    dataset: str | None = DatasetOpt,
    workflow: Path | None = WorkflowFileOpt,
    model_type: str | None = ModelTypeOpt,
    poll_interval: float | None = PollIntervalOpt,
    max_wait: float | None = MaxWaitOpt,
    sample_fraction: float | None = SampleFractionOpt,
    retries: int | None = RetriesOpt,
    verbose: bool = VerboseOpt,
):
    """Initialize workflow context (configuration, backend, steps)."""
    configure_logging(verbose)
    ctx.obj = build_workflow_context(
        backend=backend,
        project=project,
        location=location,
        profile=profile,
        warehouse_id=warehouse_id,
        catalog=catalog,
        dataset=dataset,
        workflow=workflow,
        model_type=model_type,
        poll_interval=poll_interval,
        max_wait=max_wait,
        sample_fraction=sample_fraction,
        retries=retries,
    )
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit(0)


def _resolve_targets(
    driver: WorkflowDriver,
    steps: list[str] | None,
    *,
    name: str | None,
    kinds: list[str],
    use_or: bool,
    select: bool,
) -> list[str] | None:
    """Return the target steps, or None to run the whole workflow."""
    targets = list(steps) if steps else None

    try:
        selector = build_selector(name=name, kinds=kinds, use_or=use_or)
    except ValueError as e:
        die(str(e), code=EXIT_USAGE)

    if selector is not None:
        matched = core_select_steps(driver, selector)
        targets = [t for t in targets if t in matched] if targets else matched
        if not targets:
            warn_exit("No steps matched")

    if select:
        candidates = [s for s in driver.steps if targets is None or s.name in targets]
        targets = tui_select_steps(candidates)
        if not targets:
            warn_exit("No steps selected")

    return targets


def _execute(
    driver: WorkflowDriver,
    order: list[str],
    targets: list[str] | None,
    parallel: int,
) -> WorkflowError | None:
    """Run the targets under a live progress display; return the halting error."""
    progress = StepProgress(order, {s.name: s.kind.value for s in driver.steps})
    driver.listener = progress.on_status
    try:
        with progress:
            if targets is None:
                driver.run_all(max_parallel=parallel)
            else:
                driver.run_steps(targets)
    except (RemoteExecutionError, StepCancelledError) as exc:
        return exc
    except AuthError as exc:
        exit_from_exc(exc, message=str(exc))
    finally:
        driver.listener = None
    return None


@app.command()
def steps(ctx: typer.Context):
    """
    List the workflow steps in execution order.
    """
    appctx: WorkflowAppContext = ctx.obj
    driver = appctx.driver

    try:
        order = driver.execution_order()
    except WorkflowError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_USAGE)

    by_name = {s.name: s for s in driver.steps}
    out.steps_table([by_name[n] for n in order], title="Workflow steps")


@app.command()
def show(
    ctx: typer.Context,
    step: str = typer.Argument(..., help="Step whose SQL to print"),
):
    """
    Print the SQL a step would submit.
    """
    appctx: WorkflowAppContext = ctx.obj

    try:
        sql = appctx.driver.render(step)
        resource = appctx.driver.resource_name(step)
    except WorkflowError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_USAGE)

    if resource:
        out.kv({"creates": resource})
    out.sql(sql)


@app.command()
def run(
    ctx: typer.Context,
    steps: list[str] = typer.Argument(
        None, help="Steps to run (with their dependencies); all steps when omitted"
    ),
    name: str | None = NameOpt,
    kind: list[str] = KindOpt,
    use_or: bool = UseOrOpt,
    select: bool = SelectOpt,
    parallel: int = ParallelOpt,
    confirm: bool = ConfirmOpt,
    dry_run: bool = DryRunOpt,
    create_dataset: bool = CreateDatasetOpt,
):
    """
    Run workflow steps against the warehouse.
    """
    appctx: WorkflowAppContext = ctx.obj
    driver = appctx.driver

    if parallel < 1:
        die("--parallel must be >= 1", code=EXIT_USAGE)

    targets = _resolve_targets(
        driver, steps, name=name, kinds=kind, use_or=use_or, select=select
    )

    try:
        order = driver.execution_order(targets)
    except WorkflowError as exc:
        exit_from_exc(exc, message=str(exc), code=EXIT_USAGE)

    by_name = {s.name: s for s in driver.steps}
    out.header(f"Dataset {appctx.config.dataset_id} on {appctx.backend}")
    out.steps_table([by_name[n] for n in order], title="Execution order")

    if dry_run:
        for n in order:
            out.sql(driver.render(n), title=n)
        warn_exit("Dry-run enabled: no statements were submitted")

    if confirm and not out.confirm(f"Submit {len(order)} step(s) to {appctx.backend}?"):
        ok_exit("Cancelled")

    if create_dataset:
        try:
            with out.status(f"Creating dataset {appctx.config.dataset_id}..."):
                driver.ensure_dataset()
        except RemoteCallError as exc:
            exit_from_exc(exc, message=f"Could not create dataset: {escape(exc.message)}")
        except AuthError as exc:
            exit_from_exc(exc, message=str(exc))

    error = _execute(driver, order, targets, parallel)

    out.step_status_table([(n, driver.status(n)) for n in order], title="Step status")
    for n in order:
        outcome = driver.outcome(n)
        if outcome is not None and outcome.status == StepStatus.SUCCEEDED:
            out.result(n, outcome.result)

    if isinstance(error, RemoteExecutionError):
        out.error(f"Step '{error.step}' failed: {escape(error.message)}")
        out.sql(error.offending_sql, title="Submitted SQL")
    elif isinstance(error, StepCancelledError):
        out.warn(f"{escape(str(error))} (the step can be run again)")

    exit_for_statuses(driver.status(n) for n in order)
