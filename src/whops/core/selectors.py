"""Step selector abstractions and implementations.

Selectors decide whether a registered workflow step matches a criterion
(its name, its kind). They can be composed with AND / OR and are used to
pick the steps a command operates on.
"""

from __future__ import annotations

import re
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from whops.core.steps import StepKind

if TYPE_CHECKING:
    from whops.core.driver import WorkflowDriver
    from whops.core.steps import Step


class StepSelector(ABC):
    """
    Abstract base class for all step selectors.

    A StepSelector encapsulates a single piece of matching logic that
    determines whether a given Step satisfies a specific criterion.
    """

    @abstractmethod
    def matches(self, step: Step) -> bool:
        """
        Determine whether the given step matches this selector.

        Args:
            step: Step instance to evaluate.

        Returns:
            True if the step matches the selector criteria, False otherwise.
        """
        ...


class NameRegexSelector(StepSelector):
    """Selector that matches steps whose name matches a regular expression."""

    def __init__(self, pattern: str):
        try:
            self.regex = re.compile(pattern)
        except re.error as exc:
            raise ValueError(f"Invalid regex expression: {exc}") from exc

    def matches(self, step: Step) -> bool:
        return bool(self.regex.search(step.name))


class KindSelector(StepSelector):
    """Selector that matches steps of a given kind."""

    def __init__(self, kind: StepKind | str):
        self.kind = StepKind.parse(kind)

    def matches(self, step: Step) -> bool:
        return step.kind == self.kind


class AndSelector(StepSelector):
    """Composite selector that matches a step only if all child selectors match."""

    def __init__(self, selectors: list[StepSelector]):
        self.selectors = selectors

    def matches(self, step: Step) -> bool:
        return all(s.matches(step) for s in self.selectors)


class OrSelector(StepSelector):
    """Composite selector that matches a step if any child selector matches."""

    def __init__(self, selectors: list[StepSelector]):
        self.selectors = selectors

    def matches(self, step: Step) -> bool:
        return any(s.matches(step) for s in self.selectors)


def select_steps(driver: WorkflowDriver, selector: StepSelector) -> list[str]:
    """Return the names of registered steps matching `selector`, in registration order."""
    return [step.name for step in driver.steps if selector.matches(step)]
