from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from persondir.domain.models import Person, flatten, single_person, to_multivalued
from persondir.domain.ports.sources import SourceFilter
from persondir.domain.resolution.mapping import AttributeNameMapper
from persondir.domain.resolution.username import UsernameResolver
from persondir.errors import InvalidArgumentError
from persondir.loggingSetup import getComponentLogger, logEvent


class BaseAttributeSource:
    """
    Назначение/ответственность:
        Общее поведение источников атрибутов:
        - resolve_one поверх resolve_many с контролем неоднозначности;
        - resolve_flat / resolve_attributes для однозначных точек вызова;
        - source_id, tags, enabled, логгер с runId/component.

    Ограничения:
        Наследники реализуют resolve_many; методы имён атрибутов по умолчанию
        возвращают None ("неизвестно").
    """

    component = "source"

    def __init__(
        self,
        *,
        source_id: str | None = None,
        tags: Iterable[str] | None = None,
        enabled: bool = True,
        username_resolver: UsernameResolver | None = None,
        logger: logging.Logger | None = None,
        run_id: str | None = None,
    ):
        self.source_id = source_id or type(self).__name__
        self.tags = frozenset(tags or ())
        self.enabled = enabled
        self.username_resolver = username_resolver or UsernameResolver()
        self.logger = logger or getComponentLogger(self.component)
        self.run_id = run_id

    def resolve_one(self, uid_or_query: str | Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> Person | None:
        """
        Контракт (вход/выход):
            - uid: строится seed {username_attribute: [uid]}; если найденный Person
              без имени, ему присваивается uid;
            - query: передаётся в resolve_many как есть.
        Ошибки/исключения:
            InvalidArgumentError на None, AmbiguousResultError при >1 совпадении.
        """
        if uid_or_query is None:
            raise InvalidArgumentError("uid may not be None")
        if not self.enabled:
            return None

        uid = uid_or_query if isinstance(uid_or_query, str) else None
        query = self.username_resolver.to_seed(uid) if uid is not None else uid_or_query
        self._log(logging.DEBUG, f"resolve_one seed={dict(query)!r}")

        person = single_person(self.resolve_many(query, filter))
        if person is None:
            return None
        if person.name is None and uid is not None:
            person = Person(uid, person.attributes)
        return person

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        raise NotImplementedError

    def resolve_flat(self, seed: Mapping[str, Any], filter: SourceFilter | None = None) -> set[Person] | None:
        """Однозначный seed -> многозначный query -> resolve_many."""
        if seed is None:
            raise InvalidArgumentError("seed may not be None")
        if not self.enabled:
            return None
        return self.resolve_many(to_multivalued(seed), filter)

    def resolve_attributes(self, uid_or_query: str | Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> dict[str, Any] | None:
        """Плоские атрибуты единственного Person (первое значение каждого атрибута)."""
        person = self.resolve_one(uid_or_query, filter)
        if person is None:
            return None
        return flatten(person.attributes)

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        return None

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return None

    def _log(self, level: int, message: str, exc_info: BaseException | None = None) -> None:
        logEvent(self.logger, level, self.run_id, self.component, f"{self.source_id}: {message}", exc_info=exc_info)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(source_id={self.source_id!r})"


class QueryAttributeSource(BaseAttributeSource):
    """
    Назначение/ответственность:
        Источник, работающий через AttributeNameMapper:
        query -> map_query -> fetch -> map_result для каждого Person.

    Алгоритм resolve_many:
        1) построить запрос провайдера; если он нужен, но не построен -> None;
        2) username извлекается из исходного query (UsernameResolver);
        3) fetch(provider_query, username) -> сырые Person или None;
        4) каждый Person переводится map_result.

    Ограничения:
        Наследники реализуют fetch и, при необходимости, append_to_query.
    """

    def __init__(self, *, mapper: AttributeNameMapper | None = None, **kwargs: Any):
        if mapper is not None and kwargs.get("username_resolver") is None:
            kwargs["username_resolver"] = mapper.username_resolver
        super().__init__(**kwargs)
        self.mapper = mapper or AttributeNameMapper(username_resolver=self.username_resolver)

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        if not self.enabled:
            return None

        provider_query = self.mapper.map_query(query, append=self.append_to_query)
        if provider_query is None and self.mapper.requires_query:
            self._log(logging.DEBUG, f"no provider query generated for {dict(query)!r}, returning None")
            return None

        username = self.username_resolver.username_from_query(query)
        raw_people = self.fetch(provider_query, username)
        if raw_people is None:
            return None
        return {self.mapper.map_result(person) for person in raw_people}

    def append_to_query(self, builder: Any, name: str, values: Sequence[Any]) -> Any:
        """Хук построения запроса провайдера; по умолчанию - хук маппера."""
        return self.mapper.append(builder, name, values)

    def fetch(self, provider_query: Any, username: str | None) -> Iterable[Person] | None:
        raise NotImplementedError

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        return self.mapper.possible_result_attribute_names()

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return self.mapper.available_query_attributes()


__all__ = ["BaseAttributeSource", "QueryAttributeSource"]
