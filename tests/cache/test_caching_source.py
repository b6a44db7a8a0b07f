from __future__ import annotations

import logging

import pytest

from persondir.domain.caching.caching_source import NULL_RESULTS_MARKER, CachingAttributeSource
from persondir.domain.caching.key_generator import OP_RESOLVE_MANY, AttributeBasedCacheKeyGenerator
from persondir.domain.models import Person
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import InvalidArgumentError, NotConfiguredError
from persondir.infra.cache.memory_store import InMemoryCacheStore
from persondir.infra.cache.sqlite_store import SqliteCacheStore


class _CountingSource(BaseAttributeSource):
    def __init__(self, people=None, **kwargs):
        super().__init__(**kwargs)
        self.people = people
        self.calls = 0

    def resolve_many(self, query, filter=None):
        self.calls += 1
        return set(self.people) if self.people is not None else None

    def possible_result_attribute_names(self, filter=None):
        self.calls += 1
        return {"mail"}


def _make_cache(people=None, **kwargs) -> tuple[CachingAttributeSource, _CountingSource, InMemoryCacheStore]:
    delegate = _CountingSource(people)
    store = InMemoryCacheStore()
    return CachingAttributeSource(delegate, store, **kwargs), delegate, store


def test_second_query_is_served_from_cache():
    cache, delegate, store = _make_cache([Person("edalquist", {"mail": ["e@example.org"]})])
    query = {"username": ["edalquist"]}

    first = cache.resolve_many(query)
    second = cache.resolve_many(query)

    assert first == second
    assert delegate.calls == 1
    assert (cache.queries, cache.misses, cache.hits) == (2, 1, 1)
    assert len(store) == 1


def test_null_results_are_cached_only_when_enabled():
    cache, delegate, store = _make_cache(None)
    assert cache.resolve_many({"username": ["nobody"]}) is None
    assert cache.resolve_many({"username": ["nobody"]}) is None
    assert delegate.calls == 2
    assert len(store) == 0

    cache, delegate, store = _make_cache(None, cache_null_results=True)
    assert cache.resolve_many({"username": ["nobody"]}) is None
    assert cache.resolve_many({"username": ["nobody"]}) is None
    assert delegate.calls == 1
    key = AttributeBasedCacheKeyGenerator().generate_key(OP_RESOLVE_MANY, {"username": ["nobody"]})
    assert store.get(key) is NULL_RESULTS_MARKER


def test_query_without_key_attributes_bypasses_cache():
    cache, delegate, store = _make_cache([Person("x")])

    cache.resolve_many({"mail": ["x@example.org"]})
    cache.resolve_many({"mail": ["x@example.org"]})

    assert delegate.calls == 2
    assert len(store) == 0
    assert cache.misses == 2


def test_resolve_one_and_resolve_many_use_separate_entries():
    cache, delegate, store = _make_cache([Person("edalquist", {"mail": ["e@example.org"]})])

    person = cache.resolve_one("edalquist")
    people = cache.resolve_many({"username": ["edalquist"]})

    assert person.name == "edalquist"
    assert people == {person}
    assert len(store) == 2
    assert delegate.calls == 2


def test_remove_user_attributes_evicts_entries():
    cache, delegate, store = _make_cache([Person("edalquist")])
    cache.resolve_many({"username": ["edalquist"]})
    cache.resolve_one("edalquist")

    cache.remove_user_attributes("edalquist")
    cache.resolve_many({"username": ["edalquist"]})

    assert len(store) == 1
    assert delegate.calls == 3


def test_attribute_name_queries_are_not_cached():
    cache, delegate, _ = _make_cache([])

    assert cache.possible_result_attribute_names() == {"mail"}
    assert cache.possible_result_attribute_names() == {"mail"}
    assert delegate.calls == 2


def test_missing_collaborators_raise_not_configured():
    with pytest.raises(NotConfiguredError):
        CachingAttributeSource(None, InMemoryCacheStore()).resolve_many({"username": ["x"]})
    with pytest.raises(NotConfiguredError):
        CachingAttributeSource(_CountingSource([]), None).resolve_many({"username": ["x"]})


def test_none_query_is_rejected():
    cache, _, _ = _make_cache([])

    with pytest.raises(InvalidArgumentError):
        cache.resolve_many(None)
    with pytest.raises(InvalidArgumentError):
        cache.remove_user_attributes(None)


def test_mutating_returned_result_keeps_cached_entry():
    cache, delegate, store = _make_cache([Person("edalquist")])
    query = {"username": ["edalquist"]}

    cache.resolve_many(query).clear()
    cache.resolve_many(query).add(Person("awp9"))

    assert cache.resolve_many(query) == {Person("edalquist")}
    assert delegate.calls == 1
    key = AttributeBasedCacheKeyGenerator().generate_key(OP_RESOLVE_MANY, query)
    assert isinstance(store.get(key), frozenset)


def test_unserializable_result_is_returned_but_not_cached(tmp_path, caplog):
    delegate = _CountingSource([Person("edalquist", {"photo": [b"\x89PNG"]})])
    store = SqliteCacheStore.in_dir(str(tmp_path / "cache"))
    cache = CachingAttributeSource(delegate, store)
    query = {"username": ["edalquist"]}

    try:
        with caplog.at_level(logging.WARNING, logger="persondir"):
            first = cache.resolve_many(query)
            second = cache.resolve_many(query)
        entries = store.status()["entries"]
    finally:
        store.close()

    assert first == second == {Person("edalquist")}
    assert delegate.calls == 2
    assert entries == 0
    assert any("cache put skipped" in record.getMessage() for record in caplog.records)
