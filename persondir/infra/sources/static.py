from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from persondir.domain.models import Person, to_multivalued
from persondir.domain.ports.sources import SourceFilter
from persondir.domain.resolution.base import BaseAttributeSource, QueryAttributeSource
from persondir.errors import InvalidArgumentError


class StubAttributeSource(BaseAttributeSource):
    """
    Назначение:
        Источник с единственным фиксированным Person: на любой запрос
        возвращает его, либо None, если backing_map не задан.
    """

    component = "source.stub"

    def __init__(self, backing_map: Mapping[str, Any] | None = None, **kwargs: Any):
        super().__init__(**kwargs)
        self.backing_person: Person | None = None
        self.set_backing_map(backing_map)

    def set_backing_map(self, backing_map: Mapping[str, Any] | None) -> None:
        if backing_map is None:
            self.backing_person = None
            return
        self.backing_person = Person.from_attribute(self.username_resolver.username_attribute, to_multivalued(backing_map))

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        if self.backing_person is None:
            return None
        return {self.backing_person}

    def resolve_one(self, uid_or_query, filter: SourceFilter | None = None) -> Person | None:
        if uid_or_query is None:
            raise InvalidArgumentError("uid may not be None")
        if not self.enabled:
            return None
        return self.backing_person

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        if self.backing_person is None:
            return set()
        return set(self.backing_person.attributes.keys())


class ComplexStubAttributeSource(QueryAttributeSource):
    """
    Назначение/ответственность:
        Статическая карта "значение ключевого атрибута -> атрибуты Person".

    Алгоритм:
        - запрос провайдера: первое значение атрибута query_attribute_name;
        - если ключевой атрибут совпадает с атрибутом username, имя Person равно
          значению ключа, иначе берётся из атрибута username найденной записи.

    Ограничения:
        Карта заменяется целиком через set_backing_map.
    """

    component = "source.complex_stub"

    def __init__(
        self,
        backing_map: Mapping[str, Mapping[str, Any]] | None = None,
        *,
        query_attribute_name: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.query_attribute_name = query_attribute_name or self.username_resolver.username_attribute
        self.backing_map: dict[str, dict[str, list]] = {}
        self._possible_names: set[str] = set()
        self.set_backing_map(backing_map)

    def set_backing_map(self, backing_map: Mapping[str, Mapping[str, Any]] | None) -> None:
        if backing_map is None:
            self.backing_map = {}
            self._possible_names = set()
            return
        self.backing_map = {str(key): to_multivalued(attributes) for key, attributes in backing_map.items()}
        names: set[str] = set()
        for attributes in self.backing_map.values():
            names.update(attributes.keys())
        self._possible_names = names

    def append_to_query(self, builder: Any, name: str, values: Sequence[Any]) -> Any:
        if builder is not None:
            return builder
        if name == self.query_attribute_name and values:
            return str(values[0])
        return None

    def fetch(self, provider_query: Any, username: str | None) -> Iterable[Person] | None:
        attributes = self.backing_map.get(provider_query) if provider_query is not None else None
        if attributes is None:
            self._log(logging.DEBUG, f"no entry for {self.query_attribute_name}={provider_query!r}")
            return None

        username_attribute = self.mapper.username_attribute()
        if self.query_attribute_name == username_attribute:
            return [Person(provider_query, attributes)]
        person = Person.from_attribute(username_attribute, attributes)
        # Запись без атрибута username получает имя из исходного query.
        if person.name is None and username is not None:
            person = Person(username, attributes)
        return [person]

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        return set(self._possible_names)

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return {self.query_attribute_name}


class EchoAttributeSource(BaseAttributeSource):
    """Возвращает сам query как единственный Person (имя - из атрибута username)."""

    component = "source.echo"

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("seed may not be None")
        return {Person.from_attribute(self.username_resolver.username_attribute, query)}


__all__ = ["StubAttributeSource", "ComplexStubAttributeSource", "EchoAttributeSource"]
