"""Exit handling for the CLI.

Exit codes:
    0: success; cancelled steps and empty selections included.
    1: a step ended FAILED, or the warehouse could not be reached.
    2: invalid options, configuration or workflow definition.
"""

from typing import Iterable, NoReturn

import typer

from whops.cli.common.output import out
from whops.core.steps import StepStatus

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def ok_exit(msg: str | None = None) -> NoReturn:
    """Print an optional info line and exit 0."""
    if msg:
        out.info(msg)
    raise typer.Exit(EXIT_OK)


def die(msg: str, code: int = EXIT_FAILED) -> NoReturn:
    out.error(msg)
    raise typer.Exit(code)


def warn_exit(msg: str, code: int = EXIT_OK) -> NoReturn:
    out.warn(msg)
    raise typer.Exit(code)


def exit_from_exc(exc: Exception, *, message: str, code: int = EXIT_FAILED) -> NoReturn:
    """Print `message` and exit, keeping `exc` as the cause."""
    out.error(message)
    raise typer.Exit(code) from exc


def exit_for_statuses(statuses: Iterable[StepStatus]) -> None:
    """Exit 1 if any step ended FAILED; return normally otherwise."""
    if any(s == StepStatus.FAILED for s in statuses):
        raise typer.Exit(EXIT_FAILED)
