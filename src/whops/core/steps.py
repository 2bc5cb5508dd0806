"""Step definitions and SQL template rendering.

A step is one named unit of work: a SQL template, the kind of statement it
is, and the steps whose resources it references. Templates use
`str.format` placeholders:

    {dataset}          the configured dataset id
    {sample_fraction}  the configured sample fraction
    {name}             this step's own `<dataset>.<step>` resource name
    {model_type}       the model type of a training step
    {<step>}           the `<dataset>.<step>` name of a dependency

Any other brace is read as a placeholder, so literal braces in the SQL (for
example a regex quantifier such as `\\d{3}` inside `REGEXP_CONTAINS`) must be
written doubled: `\\d{{3}}`.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from string import Formatter
from typing import Any, Mapping

from whops.core.resources import ModelType, ResourceKind

RESERVED_PLACEHOLDERS = frozenset({"dataset", "sample_fraction", "name", "model_type"})


class StepKind(str, Enum):
    """Kinds of statements a step can submit."""

    QUERY = "query"
    CREATE_VIEW = "create_view"
    TRAIN_MODEL = "train_model"
    EVALUATE = "evaluate"
    PREDICT = "predict"

    @classmethod
    def parse(cls, value: "str | StepKind") -> "StepKind":
        """Return the kind for `value`, accepting `createView`-style spellings."""
        if isinstance(value, StepKind):
            return value
        raw = str(value).strip().replace("-", "_")
        if not raw.isupper():
            raw = re.sub(r"(?<!^)(?=[A-Z])", "_", raw)
        normalized = raw.lower()
        try:
            return cls(normalized)
        except ValueError as exc:
            allowed = ", ".join(k.value for k in cls)
            raise ValueError(
                f"Unknown step kind '{value}' (expected one of: {allowed})."
            ) from exc

    @property
    def creates(self) -> ResourceKind | None:
        """The kind of resource this step creates, if any."""
        if self == StepKind.CREATE_VIEW:
            return ResourceKind.VIEW
        if self == StepKind.TRAIN_MODEL:
            return ResourceKind.MODEL
        return None


class StepStatus(str, Enum):
    """
    Lifecycle of a step within a driver.

    Values:
        PENDING: The step has not been executed (or was never reached).
        RUNNING: The step's statement is being executed or polled.
        SUCCEEDED: The step completed successfully.
        FAILED: The warehouse reported an error.
        CANCELLED: The step was cancelled or exceeded its maximum wait;
                   it may be run again.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


@dataclass(frozen=True)
class Step:
    """
    A registered workflow step.

    Attributes:
        name: Unique step name; also the unqualified name of the resource it
              creates, if any.
        kind: Statement kind.
        sql_template: SQL text with `str.format` placeholders.
        depends_on: Names of steps that must succeed before this one.
        model_type: Classifier type, for training steps only.
    """

    name: str
    kind: StepKind
    sql_template: str
    depends_on: tuple[str, ...] = ()
    model_type: ModelType | None = None


@dataclass(frozen=True)
class StepOutcome:
    """Result of one step execution, as recorded by the driver."""

    step: str
    status: StepStatus
    sql: str | None = None
    result: Any = None
    error: str | None = None
    duration_seconds: float = 0.0


@dataclass
class StepState:
    """Mutable per-step bookkeeping held by the driver."""

    status: StepStatus = StepStatus.PENDING
    last: StepOutcome | None = field(default=None)


def template_fields(sql_template: str) -> set[str]:
    """Return the placeholder names used in a SQL template."""
    fields: set[str] = set()
    for _, field_name, _, _ in Formatter().parse(sql_template):
        if field_name is None:
            continue
        # `{x.attr}` / `{x[0]}` still reference `x`
        root = field_name.split(".", 1)[0].split("[", 1)[0]
        if not root:
            raise ValueError("Positional placeholders ('{}') are not allowed in SQL templates.")
        fields.add(root)
    return fields


def render_sql(sql_template: str, values: Mapping[str, str]) -> str:
    """Substitute placeholders in a SQL template."""
    return sql_template.format_map(dict(values))
