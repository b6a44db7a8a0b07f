from __future__ import annotations

import logging

import pytest

from persondir.domain.merge.mergers import MultivaluedAttributeMerger, ReplacingAttributeAdder
from persondir.domain.models import Person
from persondir.domain.ports.sources import choose_not_ids, choose_tagged
from persondir.domain.resolution.aggregating import MergingResolver
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import AmbiguousResultError, InvalidArgumentError, NotConfiguredError, SourceError


class _FixedSource(BaseAttributeSource):
    def __init__(self, people, *, possible=None, available=None, **kwargs):
        super().__init__(**kwargs)
        self.people = people
        self.possible = possible
        self.available = available
        self.calls = []

    def resolve_many(self, query, filter=None):
        self.calls.append(dict(query))
        return set(self.people) if self.people is not None else None

    def possible_result_attribute_names(self, filter=None):
        return self.possible

    def available_query_attributes(self, filter=None):
        return self.available


class _ThrowingSource(BaseAttributeSource):
    def __init__(self, exc: Exception, **kwargs):
        super().__init__(**kwargs)
        self.exc = exc
        self.calls = 0

    def resolve_many(self, query, filter=None):
        self.calls += 1
        raise self.exc

    def possible_result_attribute_names(self, filter=None):
        raise self.exc


def _make_person(name: str, **attributes) -> Person:
    return Person(name, {k: v if isinstance(v, list) else [v] for k, v in attributes.items()})


def _seed(uid: str = "edalquist") -> dict:
    return {"username": [uid]}


def test_null_child_leaves_result_untouched_while_empty_child_makes_it_non_null():
    only_null = MergingResolver([_FixedSource(None, source_id="null")])
    with_empty = MergingResolver([_FixedSource(None, source_id="null"), _FixedSource([], source_id="empty")])

    assert only_null.resolve_many(_seed()) is None
    assert with_empty.resolve_many(_seed()) == set()


def test_stop_on_success_uses_first_child_that_did_not_throw():
    p1 = _make_person("p1", mail="p1@example.org")
    p2 = _make_person("p2", mail="p2@example.org")
    throwing = _ThrowingSource(SourceError("boom"), source_id="a")
    b = _FixedSource([p1], source_id="b")
    c = _FixedSource([p2], source_id="c")

    resolver = MergingResolver([throwing, b, c], recover_exceptions=True, stop_on_success=True)
    assert resolver.resolve_many(_seed()) == {p1}
    assert c.calls == []

    resolver = MergingResolver([throwing, b, c], recover_exceptions=True, stop_on_success=False)
    assert resolver.resolve_many(_seed()) == {p1, p2}


def test_stop_on_success_stops_even_when_child_returned_none():
    a = _FixedSource(None, source_id="a")
    b = _FixedSource([_make_person("p1")], source_id="b")

    resolver = MergingResolver([a, b], stop_on_success=True)

    assert resolver.resolve_many(_seed()) is None
    assert b.calls == []


@pytest.mark.parametrize("exc", [RuntimeError("boom"), SourceError("down", source_id="ldap")])
def test_recover_exceptions_false_propagates_child_exception(exc):
    good = _FixedSource([_make_person("edalquist")], source_id="good")
    resolver = MergingResolver([good, _ThrowingSource(exc)], recover_exceptions=False)

    with pytest.raises(type(exc)):
        resolver.resolve_many(_seed())


def test_recover_exceptions_logs_warning_and_continues(caplog):
    good = _FixedSource([_make_person("edalquist", mail="e@example.org")], source_id="good")
    resolver = MergingResolver([_ThrowingSource(RuntimeError("boom"), source_id="bad"), good])

    with caplog.at_level(logging.WARNING, logger="persondir"):
        result = resolver.resolve_many(_seed())

    assert {p.name for p in result} == {"edalquist"}
    assert any("bad" in r.getMessage() and r.levelno == logging.WARNING for r in caplog.records)


@pytest.mark.parametrize(
    "exc",
    [InvalidArgumentError("bad query"), NotConfiguredError("no sources"), AmbiguousResultError(2)],
)
def test_non_recoverable_errors_are_never_swallowed(exc):
    resolver = MergingResolver([_ThrowingSource(exc)], recover_exceptions=True)

    with pytest.raises(type(exc)):
        resolver.resolve_many(_seed())


def test_resolve_without_sources_raises_not_configured():
    with pytest.raises(NotConfiguredError):
        MergingResolver().resolve_many(_seed())
    with pytest.raises(NotConfiguredError):
        MergingResolver().possible_result_attribute_names()
    with pytest.raises(NotConfiguredError):
        MergingResolver([]).resolve_many(_seed())
    with pytest.raises(NotConfiguredError):
        MergingResolver([]).available_query_attributes()


def test_resolve_many_rejects_none_query():
    with pytest.raises(InvalidArgumentError):
        MergingResolver([_FixedSource([])]).resolve_many(None)


def test_merging_resolver_merges_same_identity_with_multivalued_default():
    a = _FixedSource([_make_person("edalquist", phone="777-7777", mail="e@a.org")])
    b = _FixedSource([_make_person("edalquist", phone="888-8888")])

    person = MergingResolver([a, b]).resolve_one("edalquist")

    assert person.attribute_values("phone") == ("777-7777", "888-8888")
    assert person.attribute_values("mail") == ("e@a.org",)


def test_merging_resolver_with_replacing_merger_keeps_last_value():
    a = _FixedSource([_make_person("edalquist", phone="777-7777")])
    b = _FixedSource([_make_person("edalquist", phone="888-8888")])

    person = MergingResolver([a, b], merger=ReplacingAttributeAdder()).resolve_one("edalquist")

    assert person.attribute_values("phone") == ("888-8888",)


def test_resolve_one_raises_on_more_than_one_person():
    source = _FixedSource([_make_person("a"), _make_person("b")])

    with pytest.raises(AmbiguousResultError) as excinfo:
        MergingResolver([source]).resolve_one("a")
    assert excinfo.value.count == 2


def test_resolve_one_names_anonymous_person_with_uid():
    source = _FixedSource([Person(None, {"mail": ["x@example.org"]})])

    person = MergingResolver([source]).resolve_one("edalquist")

    assert person.name == "edalquist"


def test_filter_skips_children():
    a = _FixedSource([_make_person("p1")], source_id="a", tags=["hr"])
    b = _FixedSource([_make_person("p2")], source_id="b", tags=["ldap"])
    resolver = MergingResolver([a, b])

    assert {p.name for p in resolver.resolve_many(_seed(), choose_tagged("hr"))} == {"p1"}
    assert {p.name for p in resolver.resolve_many(_seed(), choose_not_ids("a"))} == {"p2"}
    assert b.calls == [_seed()]


def test_attribute_names_are_unioned_and_none_means_unknown():
    a = _FixedSource([], possible={"mail"}, available={"username"})
    b = _FixedSource([], possible=None, available={"studentId"})
    c = _FixedSource([], possible={"phone"}, available=None)
    resolver = MergingResolver([a, b, c])

    assert resolver.possible_result_attribute_names() == {"mail", "phone"}
    assert resolver.available_query_attributes() == {"username", "studentId"}
    assert MergingResolver([_FixedSource([])]).possible_result_attribute_names() is None


def test_attribute_names_recover_from_throwing_child():
    resolver = MergingResolver([_ThrowingSource(RuntimeError("boom")), _FixedSource([], possible={"mail"})])

    assert resolver.possible_result_attribute_names() == {"mail"}


def test_default_source_id_lists_children():
    resolver = MergingResolver([_FixedSource([], source_id="a"), _FixedSource([], source_id="b")])

    assert resolver.source_id == "MergingResolver[a,b]"
    assert resolver.ids() == ["MergingResolver", "a", "b"]


def test_distinct_multivalued_merger_drops_case_insensitive_duplicates():
    a = _FixedSource([_make_person("edalquist", mail="E@Example.org")])
    b = _FixedSource([_make_person("edalquist", mail=["e@example.org", "other@example.org"])])

    person = MergingResolver([a, b], merger=MultivaluedAttributeMerger(distinct_values=True)).resolve_one("edalquist")

    assert person.attribute_values("mail") == ("E@Example.org", "other@example.org")
