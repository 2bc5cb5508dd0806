"""CLI application for warehouse ML workflow tooling."""

import typer

from whops.cli.commands.workflow import app as workflow_app

app = typer.Typer(
    help="whops - warehouse ML workflow tooling",
    no_args_is_help=True,
)

app.add_typer(
    workflow_app,
    name="workflow",
    help="List / inspect / run warehouse ML workflow steps.",
)


if __name__ == "__main__":
    app()
