from __future__ import annotations

import json

import httpx
import pytest

from persondir.domain.caching.caching_source import CachingAttributeSource
from persondir.domain.merge.mergers import MultivaluedAttributeMerger, ReplacingAttributeAdder
from persondir.domain.resolution.aggregating import MergingResolver
from persondir.domain.resolution.cascading import CascadingResolver
from persondir.errors import ConfigError, InvalidMappingError
from persondir.infra.cache.memory_store import InMemoryCacheStore
from persondir.infra.factory import SourceFactory, load_source_document


def _make_document(tmp_path) -> dict:
    (tmp_path / "students.json").write_text(
        json.dumps({"123": {"major": "CS", "uid": "edalquist"}}),
        encoding="utf-8",
    )
    return {
        "username_attribute": "uid",
        "root": {
            "type": "cascading",
            "id": "directory",
            "merger": {"name": "multivalued", "distinct_values": True},
            "sources": [
                {
                    "type": "complex_stub",
                    "id": "hr",
                    "tags": ["hr"],
                    "backing_map": {"edalquist": {"studentId": "123", "phone": "777"}},
                },
                {
                    "type": "caching",
                    "id": "students-cache",
                    "source": {
                        "type": "json",
                        "id": "students",
                        "path": "students.json",
                        "query_attribute": "studentId",
                        "result_attribute_mapping": {"major": "program", "uid": None},
                    },
                },
            ],
        },
    }


def test_build_cascading_graph_from_document(tmp_path):
    source = SourceFactory(base_dir=tmp_path).build(_make_document(tmp_path))

    assert isinstance(source, CascadingResolver)
    assert source.source_id == "directory"
    assert isinstance(source.merger, MultivaluedAttributeMerger)
    assert source.merger.distinct_values is True
    assert isinstance(source.sources[1], CachingAttributeSource)
    assert source.sources[0].tags == frozenset(["hr"])

    person = source.resolve_one("edalquist")

    assert person.name == "edalquist"
    assert person.attribute_values("program") == ("CS",)
    assert person.attribute_values("studentId") == ("123",)


def test_settings_defaults_flow_into_aggregates():
    factory = SourceFactory(recover_exceptions=False, stop_on_success=True)

    source = factory.build({"root": {"type": "merging", "merger": "replace", "sources": [{"type": "echo"}]}})

    assert isinstance(source, MergingResolver)
    assert source.recover_exceptions is False
    assert source.stop_on_success is True
    assert isinstance(source.merger, ReplacingAttributeAdder)


def test_sqlite_store_requested_through_factory_callback():
    stores = {}

    def _store(cache_id):
        stores[cache_id] = InMemoryCacheStore()
        return stores[cache_id]

    factory = SourceFactory(cache_store_factory=_store)
    factory.build({"root": {"type": "caching", "id": "c1", "store": "sqlite", "source": {"type": "echo"}}})

    assert list(stores) == ["c1"]
    with pytest.raises(ConfigError):
        SourceFactory().build({"root": {"type": "caching", "store": "sqlite", "source": {"type": "echo"}}})


def test_rest_and_regex_and_additional_types():
    transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"mail": "e@example.org"}))
    factory = SourceFactory(rest_transport=transport)
    document = {
        "root": {
            "type": "merging",
            "sources": [
                {
                    "type": "regex",
                    "patterns": {"username": "[a-z]+"},
                    "source": {"type": "rest", "url": "https://people.local/api", "basic_auth_password": "x"},
                },
                {
                    "type": "additional",
                    "descriptors": {"name": "edalquist", "attributes": {"role": "staff"}},
                },
            ],
        }
    }

    person = factory.build(document).resolve_one("edalquist")

    assert person.attribute_values("mail") == ("e@example.org",)
    assert person.attribute_values("role") == ("staff",)


@pytest.mark.parametrize(
    "document",
    [
        {},
        {"root": {"type": "ldap"}},
        {"root": {"type": "merging"}},
        {"root": {"type": "caching"}},
        {"root": {"type": "merging", "merger": "union", "sources": [{"type": "echo"}]}},
        {"root": {"type": "regex", "source": {"type": "echo"}}},
        {"root": {"type": "rest"}},
        {"root": {"type": "complex_stub", "default_case_canonicalization_mode": "title"}},
        {"root": {"type": "complex_stub", "default_case_canonicalization_mode": None}},
        {"root": {"type": "complex_stub", "username_case_canonicalization_mode": None}},
    ],
)
def test_invalid_documents_raise_config_error(document):
    with pytest.raises(ConfigError):
        SourceFactory().build(document)


def test_invalid_mapping_is_reported_as_mapping_error():
    with pytest.raises(InvalidMappingError):
        SourceFactory().build({"root": {"type": "complex_stub", "result_attribute_mapping": {"mail": 5}}})


def test_load_source_document(tmp_path):
    path = tmp_path / "sources.yml"
    path.write_text("root:\n  type: echo\n", encoding="utf-8")

    assert load_source_document(path) == {"root": {"type": "echo"}}

    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_source_document(path)
    with pytest.raises(ConfigError):
        load_source_document(tmp_path / "missing.yml")
