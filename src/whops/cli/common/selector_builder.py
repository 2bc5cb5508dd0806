"""Selector construction utilities.

Translates CLI arguments into a concrete StepSelector, centralizing the
validation and AND/OR composition so commands work with a single selector.
"""

from typing import Iterable

from whops.core.selectors import (
    AndSelector,
    KindSelector,
    NameRegexSelector,
    OrSelector,
    StepSelector,
)


def build_selector(
    *,
    name: str | None,
    kinds: Iterable[str],
    use_or: bool,
) -> StepSelector | None:
    """
    Build a composite StepSelector from user-provided criteria.

    Args:
        name: Optional regular expression used to match step names.
        kinds: Iterable of step kinds (e.g. `train_model`).
        use_or: If True, combine multiple selectors using logical OR.
                If False, combine them using logical AND.

    Returns:
        A StepSelector, or None when no criteria were given.

    Raises:
        ValueError: If the regex or a kind is invalid.
    """
    selectors: list[StepSelector] = []

    if name:
        selectors.append(NameRegexSelector(name))

    for kind in kinds:
        selectors.append(KindSelector(kind))

    if not selectors:
        return None

    if len(selectors) == 1:
        return selectors[0]

    return OrSelector(selectors) if use_or else AndSelector(selectors)
