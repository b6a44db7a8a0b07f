from __future__ import annotations

import pytest

from persondir.domain.merge.mergers import (
    MultivaluedAttributeMerger,
    NoncollidingAttributeAdder,
    ReplacingAttributeAdder,
    ReturnChangesAttributeMerger,
    ReturnOriginalAttributeMerger,
    merger_by_name,
)
from persondir.domain.models import Person
from persondir.errors import ConfigError, InvalidArgumentError


def _base() -> dict:
    return {"phone": ["777-7777"], "mail": ["e@example.org"]}


def _incoming() -> dict:
    return {"phone": ["888-8888"], "major": ["CS"]}


def test_multivalued_concatenates_values():
    merged = MultivaluedAttributeMerger().merge_attributes(_base(), _incoming())

    assert merged == {"phone": ["777-7777", "888-8888"], "mail": ["e@example.org"], "major": ["CS"]}


def test_replacing_overwrites_colliding_keys():
    merged = ReplacingAttributeAdder().merge_attributes(_base(), _incoming())

    assert merged == {"phone": ["888-8888"], "mail": ["e@example.org"], "major": ["CS"]}


def test_noncolliding_keeps_base_values():
    merged = NoncollidingAttributeAdder().merge_attributes(_base(), _incoming())

    assert merged == {"phone": ["777-7777"], "mail": ["e@example.org"], "major": ["CS"]}


def test_return_changes_and_return_original():
    assert ReturnChangesAttributeMerger().merge_attributes(_base(), _incoming()) == _incoming()
    assert ReturnOriginalAttributeMerger().merge_attributes(_base(), _incoming()) == _base()


def test_merge_does_not_modify_inputs():
    base, incoming = _base(), _incoming()

    MultivaluedAttributeMerger().merge_attributes(base, incoming)

    assert base == _base()
    assert incoming == _incoming()


def test_merge_attributes_rejects_none():
    with pytest.raises(InvalidArgumentError):
        ReplacingAttributeAdder().merge_attributes(None, {})


def test_merge_results_collapses_same_identity():
    base = {Person("edalquist", {"phone": ["777"]}), Person("awp9", {"phone": ["888"]})}
    incoming = {Person("edalquist", {"major": ["CS"]}), Person("erider", {"major": ["EE"]})}

    merged = {p.name: p for p in MultivaluedAttributeMerger().merge_results(base, incoming)}

    assert set(merged) == {"edalquist", "awp9", "erider"}
    assert dict(merged["edalquist"].attributes) == {"phone": ("777",), "major": ("CS",)}
    assert dict(merged["awp9"].attributes) == {"phone": ("888",)}


def test_attribute_name_merges_are_unions():
    merger = ReplacingAttributeAdder()

    assert merger.merge_possible_user_attribute_names({"a"}, {"b"}) == {"a", "b"}
    assert merger.merge_available_query_attributes({"a"}, {"a"}) == {"a"}


def test_merger_by_name():
    assert isinstance(merger_by_name("multivalued", distinct_values=True), MultivaluedAttributeMerger)
    assert isinstance(merger_by_name("Replace"), ReplacingAttributeAdder)
    with pytest.raises(ConfigError):
        merger_by_name("union")
