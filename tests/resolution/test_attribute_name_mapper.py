from __future__ import annotations

import pytest

from persondir.domain.case import CaseCanonicalizationMode
from persondir.domain.models import Person
from persondir.domain.resolution.mapping import (
    AttributeNameMapper,
    flatten_mapping_targets,
    parse_attribute_mapping,
)
from persondir.domain.resolution.username import UsernameResolver
from persondir.errors import InvalidArgumentError, InvalidMappingError


def _make_person() -> Person:
    return Person(
        "edalquist",
        {
            "name.first": ["eric"],
            "mail": ["Eric@Example.org"],
            "cn;lang-ru": ["Эрик"],
            "cn;lang-en": ["Eric"],
            "cn": ["Eric D"],
        },
    )


def test_parse_attribute_mapping_normalizes_targets():
    parsed = parse_attribute_mapping({"uid": "username", "mail": ["email", "mail"], "phone": None})

    assert parsed == {"uid": frozenset(["username"]), "mail": frozenset(["email", "mail"]), "phone": None}
    assert flatten_mapping_targets(parsed) == {"username", "email", "mail", "phone"}
    assert parse_attribute_mapping(None) is None


@pytest.mark.parametrize("mapping", [{"": "x"}, {"mail": 42}, {"mail": ["ok", 7]}, {None: "x"}])
def test_parse_attribute_mapping_rejects_invalid_entries(mapping):
    with pytest.raises(InvalidMappingError):
        parse_attribute_mapping(mapping)


def test_mapper_rejects_invalid_mapping_at_construction():
    with pytest.raises(InvalidMappingError):
        AttributeNameMapper(result_attribute_mapping={"mail": 1})


def test_map_result_without_configuration_is_identity():
    person = _make_person()

    mapped = AttributeNameMapper().map_result(person)

    assert mapped.name == "edalquist"
    assert list(mapped.attributes.items()) == list(person.attributes.items())


def test_result_case_and_username_case_are_independent():
    mapper = AttributeNameMapper(
        result_attribute_mapping={"name.first": None},
        case_insensitive_result_attributes={"name.first": CaseCanonicalizationMode.UPPER},
    )
    mapped = mapper.map_result(Person("EDalquist", {"name.first": ["eric"]}))
    assert mapped.attribute_value("name.first") == "ERIC"
    assert mapped.name == "EDalquist"

    mapper = AttributeNameMapper(username_case_canonicalization_mode=CaseCanonicalizationMode.LOWER)
    mapped = mapper.map_result(Person("EDalquist", {"name.first": ["eric"]}))
    assert mapped.name == "edalquist"
    assert mapped.attribute_value("name.first") == "eric"


def test_result_mapping_renames_and_fans_out():
    mapper = AttributeNameMapper(result_attribute_mapping={"mail": ["email", "mailAddress"], "name.first": "givenName"})

    mapped = mapper.map_result(_make_person())

    assert set(mapped.attributes) == {"email", "mailAddress", "givenName"}
    assert mapped.attribute_value("givenName") == "eric"
    assert mapper.possible_result_attribute_names() == {"email", "mailAddress", "givenName"}


def test_result_mapping_drops_absent_and_unmapped_attributes():
    mapper = AttributeNameMapper(result_attribute_mapping={"mail": None, "missing": "gone"})

    mapped = mapper.map_result(_make_person())

    assert dict(mapped.attributes) == {"mail": ("Eric@Example.org",)}


def test_key_family_passthrough_is_opt_in():
    mapping = {"cn": "cn;"}

    passthrough = AttributeNameMapper(result_attribute_mapping=mapping, key_family_passthrough=True)
    mapped = passthrough.map_result(_make_person())
    assert set(mapped.attributes) == {"cn;lang-ru", "cn;lang-en"}

    plain = AttributeNameMapper(result_attribute_mapping=mapping)
    mapped = plain.map_result(_make_person())
    assert dict(mapped.attributes) == {"cn;": ("Eric D",)}


def test_username_taken_from_unmapped_attribute_when_person_has_no_name():
    mapper = AttributeNameMapper(unmapped_username_attribute="uid")

    mapped = mapper.map_result(Person(None, {"uid": ["awp9"], "mail": ["a@example.org"]}))

    assert mapped.name == "awp9"


def test_map_query_with_mapping_renames_and_canonicalizes():
    mapper = AttributeNameMapper(
        query_attribute_mapping={"username": "uid", "mail": None},
        case_insensitive_query_attributes={"username": None},
    )

    query = mapper.map_query({"username": ["EDalquist"], "mail": ["e@example.org"], "phone": ["1"]})

    assert query == {"uid": ["edalquist"], "mail": ["e@example.org"]}
    assert mapper.available_query_attributes() == {"username", "mail"}


def test_require_all_query_attributes_yields_none_instead_of_partial_query():
    mapper = AttributeNameMapper(
        query_attribute_mapping={"username": "uid", "userid": None},
        require_all_query_attributes=True,
    )

    assert mapper.map_query({"username": ["edalquist"]}) is None
    assert mapper.map_query({"username": ["edalquist"], "userid": ["42"]}) == {"uid": ["edalquist"], "userid": ["42"]}


def test_map_query_without_mapping_depends_on_use_all_query_attributes():
    query = {"username": ["edalquist"], "mail": ["e@example.org"]}

    assert AttributeNameMapper().map_query(query) == query
    mapper = AttributeNameMapper(use_all_query_attributes=False)
    assert mapper.map_query(query) is None
    assert mapper.requires_query is False
    assert AttributeNameMapper().available_query_attributes() == set()


def test_map_query_uses_custom_append_hook():
    mapper = AttributeNameMapper(query_attribute_mapping={"username": "uid"})

    def _append(builder, name, values):
        return (builder or "") + f"({name}={values[0]})"

    assert mapper.map_query({"username": ["edalquist"]}, append=_append) == "(uid=edalquist)"


def test_map_query_rejects_none():
    with pytest.raises(InvalidArgumentError):
        AttributeNameMapper().map_query(None)


def test_username_attribute_falls_back_to_resolver():
    assert AttributeNameMapper(username_resolver=UsernameResolver("uid")).username_attribute() == "uid"
    assert AttributeNameMapper(unmapped_username_attribute="login").username_attribute() == "login"
