"""Terminal UI utilities for picking workflow steps."""

from __future__ import annotations

import questionary

from whops.cli.common.tui_style import QUESTIONARY_STYLE_SELECT
from whops.core.steps import Step

_MAX_STEP_NAME_WIDTH = 64


def _truncate(text: str, max_len: int) -> str:
    """Return text capped at max_len characters using an ASCII ellipsis."""
    if max_len <= 3 or len(text) <= max_len:
        return text[:max_len]
    return f"{text[: max_len - 3]}..."


def _step_choice_title(step: Step, *, name_width: int) -> str:
    """Format one step choice as `<name>  (<kind>)` with aligned kind column."""
    short_name = _truncate(step.name, _MAX_STEP_NAME_WIDTH)
    return f"{short_name.ljust(name_width)}  ({step.kind.value})"


def select_steps(steps: list[Step]) -> list[str]:
    """Display a checkbox prompt to select steps from a list.

    Args:
        steps: Steps to choose from, in display order.

    Returns:
        Names of the selected steps, or an empty list if none selected.
    """
    shown_names = [_truncate(step.name, _MAX_STEP_NAME_WIDTH) for step in steps]
    name_width = max((len(name) for name in shown_names), default=0)

    choices = [
        questionary.Choice(
            title=_step_choice_title(step, name_width=name_width),
            value=step.name,
        )
        for step in steps
    ]

    return (
        questionary.checkbox(
            "Select steps:",
            choices=choices,
            style=QUESTIONARY_STYLE_SELECT,
        ).ask()
        or []
    )
