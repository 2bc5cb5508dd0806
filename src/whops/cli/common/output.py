"""Output formatting utilities for the CLI."""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Iterable, Mapping

import questionary
from rich.console import Console
from rich.markup import escape
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme

from whops.cli.common.tui_style import QUESTIONARY_STYLE_CONFIRM
from whops.core.resources import EvaluationMetrics, QueryResult, ResourceRef

_THEME = Theme(
    {
        "ok": "bold green",
        "warn": "yellow",
        "err": "bold red",
        "title": "bold cyan",
        "meta": "dim",
    }
)

_STATUS_STYLE = {
    "SUCCEEDED": "ok",
    "FAILED": "err",
    "CANCELLED": "warn",
    "RUNNING": "warn",
    "PENDING": "meta",
}

console = Console(theme=_THEME)


@dataclass(frozen=True)
class Out:
    """Output formatter for CLI messages and tables."""

    def _q_try(self, fn, *args, **kwargs):
        """Call questionary prompts and drop unsupported kwargs on older versions."""
        try:
            return fn(*args, **kwargs)
        except TypeError:
            for k in ("pointer", "checked_icon", "unchecked_icon", "auto_enter"):
                kwargs.pop(k, None)
            return fn(*args, **kwargs)

    def _q(self, message: str) -> str:
        """Prefix Questionary prompts to be WHOPS consistent."""
        return f"[WHOPS] {message}"

    def info(self, msg: str) -> None:
        """Print an info message."""
        console.print(f"[title]›[/] {msg}")

    @contextmanager
    def status(self, msg: str):
        """Show a transient status spinner while work is in progress."""
        with console.status(msg, spinner="dots"):
            yield

    def success(self, msg: str) -> None:
        """Print a success message."""
        console.print(f"[ok]✓[/] {msg}")

    def warn(self, msg: str) -> None:
        """Print a warning message."""
        console.print(f"[warn]⚠[/] {msg}")

    def error(self, msg: str) -> None:
        """Print an error message."""
        console.print(f"[err]✗[/] {msg}")

    def header(self, title: str) -> None:
        """Print a header message."""
        console.print(f"[title]{title}[/]")

    def kv(self, items: Mapping[str, Any]) -> None:
        """Print key-value pairs."""
        for k, v in items.items():
            console.print(f"[meta]{k}[/]: {v}")

    def sql(self, text: str, title: str | None = None) -> None:
        """Print SQL text with syntax highlighting, or plain when not a terminal."""
        if title:
            self.header(title)
        if console.is_terminal:
            console.print(Syntax(text, "sql", word_wrap=True))
        else:
            # keep the statement copy-pasteable in logs and pipes
            console.print(text, markup=False, highlight=False, soft_wrap=True)

    def confirm(self, message: str, *, default: bool = False) -> bool:
        """
        Ask the user for confirmation using a standardized Questionary prompt.

        Args:
            message: Confirmation question shown to the user.
            default: Default answer if the user just presses enter.

        Returns:
            True if the user confirms, False otherwise.
        """
        console.print("[meta]Use y/n then Enter[/]")

        prompt = self._q_try(
            questionary.confirm,
            self._q(message),
            default=default,
            style=QUESTIONARY_STYLE_CONFIRM,
            qmark="✦",
            auto_enter=False,
            pointer="❯",
        )
        return bool(prompt.ask())

    def steps_table(self, steps: Iterable[Any], title: str = "Steps") -> None:
        """
        Expects objects with .name .kind .depends_on .model_type
        (like whops.core.steps.Step)
        """
        t = Table(title=title, show_lines=False)
        t.add_column("#", style="meta", no_wrap=True)
        t.add_column("Step", style="ok", no_wrap=True)
        t.add_column("Kind")
        t.add_column("Depends on", style="meta")
        t.add_column("Model type", style="meta")

        for i, s in enumerate(steps, start=1):
            model_type = getattr(s, "model_type", None)
            t.add_row(
                str(i),
                s.name,
                s.kind.value,
                ", ".join(s.depends_on),
                model_type.value if model_type else "",
            )

        console.print(t)

    def step_status_table(
        self, results: Iterable[tuple[str, Any]], title: str = "Step status"
    ) -> None:
        """
        Expects tuples of (step name, StepStatus), in execution order.
        """
        t = Table(title=title, show_lines=False)
        t.add_column("Step", style="ok", no_wrap=True)
        t.add_column("Status")

        for name, status in results:
            status_value = status.value if hasattr(status, "value") else str(status)
            style = _STATUS_STYLE.get(status_value, "meta")
            t.add_row(name, f"[{style}]{status_value}[/{style}]")

        console.print(t)

    def rows_table(self, result: QueryResult, title: str = "Result") -> None:
        """Render a warehouse result set as returned."""
        t = Table(title=f"{title} ({len(result)} rows)", show_lines=False)
        columns = list(result.columns) or (list(result.rows[0]) if result.rows else [])
        for c in columns:
            t.add_column(c)
        for row in result.rows:
            t.add_row(
                *("" if row.get(c) is None else escape(str(row.get(c))) for c in columns)
            )
        console.print(t)

    def metrics(self, metrics: EvaluationMetrics, title: str = "Evaluation") -> None:
        """Render evaluation metrics."""
        self.header(title)
        self.kv(
            {
                "precision": f"{metrics.precision:.4f}",
                "recall": f"{metrics.recall:.4f}",
                "f1": f"{metrics.f1:.4f}",
                "auc": f"{metrics.auc:.4f}",
            }
        )

    def result(self, step: str, value: Any) -> None:
        """Render whatever a step returned."""
        if isinstance(value, QueryResult):
            self.rows_table(value, title=step)
        elif isinstance(value, EvaluationMetrics):
            self.metrics(value, title=step)
        elif isinstance(value, ResourceRef):
            self.success(f"{step}: {value.kind.value.lower()} {value.name} ready")


out = Out()
