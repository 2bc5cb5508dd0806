"""Core domain models for warehouse-side resources.

These models are references to state owned by the warehouse (datasets,
views, models) plus the small value types returned by steps. They are
intentionally free of SDK types and CLI concerns; the warehouse remains the
source of truth for everything they point at.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from whops.core.errors import InvalidIdentifierError, InvalidModelTypeError

_NAME_PART = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class ModelType(str, Enum):
    """
    Classifier types offered by the warehouse's built-in machine learning.

    Values are the literal `model_type` option accepted by the warehouse.
    """

    LOGISTIC_REG = "logistic_reg"
    AUTOML_CLASSIFIER = "automl_classifier"
    DNN_CLASSIFIER = "dnn_classifier"

    @classmethod
    def parse(cls, value: "str | ModelType") -> "ModelType":
        """Return the model type for `value` (case-insensitive)."""
        if isinstance(value, ModelType):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError as exc:
            allowed = ", ".join(m.value for m in cls)
            raise InvalidModelTypeError(
                f"Unknown model type '{value}' (expected one of: {allowed})."
            ) from exc


class ResourceKind(str, Enum):
    """Kinds of resources a workflow can create."""

    VIEW = "VIEW"
    MODEL = "MODEL"


@dataclass(frozen=True)
class ResourceRef:
    """
    Reference to a view or model created in the warehouse.

    Attributes:
        name: Fully qualified `<dataset>.<name>` identifier.
        kind: Whether the resource is a view or a model.
        sql: The statement that created the resource.
        model_type: Classifier type, for models only.
    """

    name: str
    kind: ResourceKind
    sql: str
    model_type: ModelType | None = None


@dataclass(frozen=True)
class QueryResult:
    """
    Tabular result returned by the warehouse.

    Rows are read-only mappings from column name to value, in the order the
    warehouse returned them.
    """

    columns: tuple[str, ...]
    rows: tuple[Mapping[str, Any], ...]

    @classmethod
    def from_rows(
        cls, columns: Iterable[str], rows: Iterable[Mapping[str, Any]]
    ) -> "QueryResult":
        """Build a result, freezing each row."""
        return cls(
            columns=tuple(columns),
            rows=tuple(MappingProxyType(dict(r)) for r in rows),
        )

    def __len__(self) -> int:
        return len(self.rows)


@dataclass(frozen=True)
class EvaluationMetrics:
    """Fixed-shape evaluation metrics of a binary classifier."""

    precision: float
    recall: float
    f1: float
    auc: float


def validate_name_part(value: str) -> str:
    """Validate a single identifier part (a dataset or a resource name)."""
    if not isinstance(value, str) or not _NAME_PART.match(value):
        raise InvalidIdentifierError(str(value))
    return value


def parse_resource_name(full_name: str) -> tuple[str, str]:
    """Split `<dataset>.<name>` into (dataset, name)."""
    parts = full_name.strip().split(".")
    if len(parts) != 2:
        raise InvalidIdentifierError(full_name)
    dataset, name = parts
    if not _NAME_PART.match(dataset) or not _NAME_PART.match(name):
        raise InvalidIdentifierError(full_name)
    return dataset, name


def qualify(dataset_id: str, name: str) -> str:
    """Return the validated `<dataset>.<name>` identifier."""
    full_name = f"{dataset_id}.{name}"
    parse_resource_name(full_name)
    return full_name
