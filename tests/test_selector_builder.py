import pytest

from whops.cli.common.selector_builder import build_selector
from whops.core.selectors import AndSelector, KindSelector, NameRegexSelector, OrSelector


def test_build_selector_none_without_criteria():
    assert build_selector(name=None, kinds=[], use_or=False) is None


def test_build_selector_name_only():
    selector = build_selector(name="model", kinds=[], use_or=False)

    assert isinstance(selector, NameRegexSelector)


def test_build_selector_kind_only():
    selector = build_selector(name=None, kinds=["train_model"], use_or=False)

    assert isinstance(selector, KindSelector)


def test_build_selector_combined_and_or():
    and_selector = build_selector(name="model", kinds=["train_model"], use_or=False)
    or_selector = build_selector(name="model", kinds=["train_model"], use_or=True)

    assert isinstance(and_selector, AndSelector)
    assert isinstance(or_selector, OrSelector)


def test_build_selector_invalid_kind():
    with pytest.raises(ValueError):
        build_selector(name=None, kinds=["export"], use_or=False)
