"""Progress display for workflow runs."""

from __future__ import annotations

from typing import Mapping

from rich.console import Group
from rich.live import Live
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)

from whops.cli.common.output import console
from whops.core.steps import StepStatus

_MAX_STEP_NAME_WIDTH = 48

_TERMINAL = (StepStatus.SUCCEEDED, StepStatus.FAILED, StepStatus.CANCELLED)


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _display_step_label(
    name: str,
    kind_by_name: Mapping[str, str] | None,
    *,
    name_width: int,
) -> str:
    """
    Render a step label for the live progress list.

    - With mapping: `<name>  (<kind>)` with aligned kind column.
    - Without mapping (or if missing): fallback to just `<name>`.
    """
    short_name = _truncate(name, _MAX_STEP_NAME_WIDTH)
    kind = kind_by_name.get(name) if kind_by_name else None
    if kind is None:
        return short_name
    return f"{short_name.ljust(name_width)}  ({kind})"


def _style_for(status: StepStatus) -> str:
    if status == StepStatus.SUCCEEDED:
        return "green"
    if status == StepStatus.FAILED:
        return "red"
    if status in (StepStatus.RUNNING, StepStatus.CANCELLED):
        return "yellow"
    return "dim"


class StepProgress:
    """
    Live progress for a workflow run. Shows:
      - an overall progress bar (x/y finished + failures)
      - per-step spinner rows with elapsed timers

    Use as a context manager and pass `on_status` as the driver listener.
    """

    def __init__(self, steps: list[str], kind_by_name: Mapping[str, str] | None = None):
        shown = [_truncate(s, _MAX_STEP_NAME_WIDTH) for s in steps]
        name_width = max((len(s) for s in shown), default=0)
        self._failures = 0

        self.overall = Progress(
            TextColumn("[bold]Overall[/]"),
            BarColumn(),
            TaskProgressColumn(),
            TextColumn("failures=[bold red]{task.fields[failures]}[/]"),
            TimeElapsedColumn(),
            console=console,
        )
        self.per_step = Progress(
            SpinnerColumn(),
            TextColumn("[bold]{task.fields[step]}[/]"),
            TextColumn(
                "status=[{task.fields[style]}]{task.fields[status]}[/{task.fields[style]}]"
            ),
            TimeElapsedColumn(),
            console=console,
        )
        self._overall_id = self.overall.add_task(
            "overall", total=max(len(steps), 1), failures=0
        )
        self._task_ids = {
            name: self.per_step.add_task(
                "",
                total=1,
                start=False,
                step=_display_step_label(name, kind_by_name, name_width=name_width),
                status=StepStatus.PENDING.value,
                style=_style_for(StepStatus.PENDING),
            )
            for name in steps
        }
        self._live = Live(
            Group(self.overall, self.per_step),
            console=console,
            refresh_per_second=10,
            transient=True,
        )

    def __enter__(self) -> "StepProgress":
        self._live.__enter__()
        return self

    def __exit__(self, *exc_info) -> None:
        self._live.__exit__(*exc_info)

    def on_status(self, name: str, status: StepStatus) -> None:
        """Driver listener: update the row of `name`."""
        task_id = self._task_ids.get(name)
        if task_id is None:
            return

        if status == StepStatus.RUNNING:
            # restarts the elapsed timer when a cancelled step is re-run
            self.per_step.reset(task_id, total=1)

        self.per_step.update(task_id, status=status.value, style=_style_for(status))

        if status in _TERMINAL:
            self.per_step.update(task_id, completed=1)
            if status != StepStatus.SUCCEEDED:
                self._failures += 1
                self.overall.update(self._overall_id, failures=self._failures)
            self.overall.advance(self._overall_id, 1)
