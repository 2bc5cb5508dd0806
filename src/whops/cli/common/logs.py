"""Logging setup for the CLI."""

from __future__ import annotations

import logging

from rich.logging import RichHandler

from whops.cli.common.output import console


def configure_logging(verbose: bool = False) -> None:
    """Route `whops` log records through Rich; DEBUG when verbose, else WARNING."""
    level = logging.DEBUG if verbose else logging.WARNING
    logger = logging.getLogger("whops")
    logger.setLevel(level)
    logger.handlers.clear()
    handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="%H:%M:%S"))
    logger.addHandler(handler)
    logger.propagate = False
