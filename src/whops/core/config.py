"""Workflow configuration.

The configuration replaces the "current project/dataset" selection of the
warehouse console: it is built once, validated, and passed explicitly to the
driver. Values can come from environment variables and be overridden by
command-line options.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any

from whops.core.resources import validate_name_part

_DATASET_ENV = "WHOPS_DATASET"
_POLL_INTERVAL_ENV = "WHOPS_POLL_INTERVAL"
_MAX_WAIT_ENV = "WHOPS_MAX_WAIT"
_SAMPLE_FRACTION_ENV = "WHOPS_SAMPLE_FRACTION"
_TRANSIENT_RETRIES_ENV = "WHOPS_TRANSIENT_RETRIES"

DEFAULT_POLL_INTERVAL_SECONDS = 5.0


@dataclass(frozen=True)
class WorkflowConfig:
    """
    Settings shared by every step of a workflow run.

    Attributes:
        dataset_id: Dataset (schema) that holds every created view and model.
        poll_interval_seconds: Delay between status checks of a training job.
        max_wait_seconds: Maximum time to wait for a training job, or None
                          to wait indefinitely.
        sample_fraction: Fraction of rows used for reduced-cost training runs.
        transient_retries: How many times a non-training statement is retried
                           when the warehouse flags the failure as transient.
    """

    dataset_id: str
    poll_interval_seconds: float = DEFAULT_POLL_INTERVAL_SECONDS
    max_wait_seconds: float | None = None
    sample_fraction: float = 1.0
    transient_retries: int = 0

    def __post_init__(self) -> None:
        validate_name_part(self.dataset_id)
        if self.poll_interval_seconds <= 0:
            raise ValueError("poll_interval_seconds must be > 0")
        if self.max_wait_seconds is not None and self.max_wait_seconds <= 0:
            raise ValueError("max_wait_seconds must be > 0 (or unset for no limit)")
        if not 0 < self.sample_fraction <= 1:
            raise ValueError("sample_fraction must be in (0, 1]")
        if self.transient_retries < 0:
            raise ValueError("transient_retries must be >= 0")

    @classmethod
    def from_env(cls, **overrides: Any) -> "WorkflowConfig":
        """
        Build a configuration from `WHOPS_*` environment variables.

        Keyword overrides that are not None take precedence over the
        environment, which lets CLI options win over exported defaults.

        Raises:
            ValueError: If no dataset is configured or a value is invalid.
        """
        values: dict[str, Any] = {
            "dataset_id": os.getenv(_DATASET_ENV),
            "poll_interval_seconds": _float_env(_POLL_INTERVAL_ENV),
            "max_wait_seconds": _float_env(_MAX_WAIT_ENV),
            "sample_fraction": _float_env(_SAMPLE_FRACTION_ENV),
            "transient_retries": _int_env(_TRANSIENT_RETRIES_ENV),
        }
        values.update({k: v for k, v in overrides.items() if v is not None})

        if not values["dataset_id"]:
            raise ValueError(
                f"No dataset configured. Pass --dataset or set {_DATASET_ENV}."
            )
        return cls(**{k: v for k, v in values.items() if v is not None})

    def template_values(self) -> dict[str, str]:
        """Return the config-derived placeholders available to SQL templates."""
        return {
            "dataset": self.dataset_id,
            "sample_fraction": repr(float(self.sample_fraction)),
        }


def _float_env(name: str) -> float | None:
    """Read a float from the environment (None when unset or blank)."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return float(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be a number, got '{raw}'") from exc


def _int_env(name: str) -> int | None:
    """Read an integer from the environment (None when unset or blank)."""
    raw = os.getenv(name, "").strip()
    if not raw:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from exc
