from __future__ import annotations

import pytest

from persondir.domain.caching.caching_source import NULL_RESULTS_MARKER
from persondir.domain.models import Person
from persondir.infra.cache.sqlite_store import SqliteCacheStore, decode_value, encode_value, getCacheDbPath


def _make_store(tmp_path, namespace: str = "default") -> SqliteCacheStore:
    return SqliteCacheStore.in_dir(str(tmp_path / "cache"), namespace=namespace)


def test_encode_decode_values():
    people = {Person("edalquist", {"phone": ["777", "888"]}), Person("awp9", {"mail": None})}

    decoded = decode_value(encode_value(people))

    assert {p.name: dict(p.attributes) for p in decoded} == {
        "edalquist": {"phone": ("777", "888")},
        "awp9": {"mail": None},
    }
    assert decode_value(encode_value(NULL_RESULTS_MARKER)) is NULL_RESULTS_MARKER
    assert decode_value(encode_value(Person("x", {"a": [1]}))).attribute_value("a") == 1
    with pytest.raises(TypeError):
        encode_value("not a person")


def test_store_persists_across_instances(tmp_path):
    store = _make_store(tmp_path)
    store.put("resolve_one|abc", Person("edalquist", {"mail": ["e@example.org"]}))
    store.close()

    reopened = _make_store(tmp_path)
    try:
        person = reopened.get("resolve_one|abc")
        assert person.name == "edalquist"
        assert person.attribute_value("mail") == "e@example.org"
        assert reopened.get("resolve_one|missing") is None
    finally:
        reopened.close()


def test_namespaces_are_isolated_and_clear_removes_all(tmp_path):
    hr = _make_store(tmp_path, "hr")
    ldap = _make_store(tmp_path, "ldap")
    try:
        hr.put("resolve_many|k", {Person("a")})
        ldap.put("resolve_many|k", NULL_RESULTS_MARKER)

        assert hr.get("resolve_many|k") == {Person("a")}
        assert ldap.get("resolve_many|k") is NULL_RESULTS_MARKER

        status = hr.status()
        assert status["entries"] == 2
        assert status["by_operation"] == {"resolve_many": 2}
        assert status["by_namespace"] == {"hr": 1, "ldap": 1}
        assert status["schema_version"] == 1

        hr.remove("resolve_many|k")
        assert ldap.get("resolve_many|k") is NULL_RESULTS_MARKER

        assert ldap.clear() == 1
        assert ldap.status()["entries"] == 0
    finally:
        hr.close()
        ldap.close()


def test_db_path_is_inside_cache_dir(tmp_path):
    assert getCacheDbPath(str(tmp_path)).endswith("persondir_cache.sqlite3")


def test_encode_rejects_values_json_cannot_represent():
    with pytest.raises(TypeError):
        encode_value({Person("edalquist", {"photo": [b"\x89PNG"]})})
