from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from persondir.domain.models import Person, flatten, to_multivalued
from persondir.domain.ports.sources import AttributeSource, SourceFilter
from persondir.errors import InvalidArgumentError
from persondir.loggingSetup import logEvent


@dataclass
class ResolveResult:
    """
    Назначение:
        Результат команды resolve для вывода в CLI.

    Инварианты:
        evaluated=False означает, что источники не смогли выполнить запрос (None),
        а не "ничего не найдено".
    """

    people: list[dict[str, Any]] = field(default_factory=list)
    evaluated: bool = True

    @property
    def found(self) -> bool:
        return bool(self.people)

    def to_dict(self) -> dict[str, Any]:
        return {"evaluated": self.evaluated, "count": len(self.people), "people": self.people}


def person_to_dict(person: Person, flat: bool = False) -> dict[str, Any]:
    if flat:
        attributes = flatten(person.attributes) or {}
    else:
        attributes = person.mutable_attributes()
    return {"name": person.name, "attributes": attributes}


def parse_query_pairs(pairs: list[str]) -> dict[str, list[str]]:
    """
    Назначение:
        Разобрать значения --query вида attr=value (повторяемые) в многозначный query.

    Ошибки/исключения:
        InvalidArgumentError: элемент без '=' или с пустым именем атрибута.
    """
    query: dict[str, list[str]] = {}
    for pair in pairs:
        if "=" not in pair:
            raise InvalidArgumentError(f"Query item must look like attr=value: {pair}")
        name, value = pair.split("=", 1)
        name = name.strip()
        if not name:
            raise InvalidArgumentError(f"Query item has an empty attribute name: {pair}")
        query.setdefault(name, []).append(value)
    return query


class ResolveUseCase:
    """
    Назначение/ответственность:
        Use-case разрешения атрибутов для CLI: uid -> resolve_one,
        query -> resolve_many; сериализация Person в dict.

    Ошибки/исключения:
        AmbiguousResultError из resolve_one пробрасывается вызывающему.
    """

    def __init__(self, source: AttributeSource, logger: logging.Logger, run_id: str | None = None):
        self.source = source
        self.logger = logger
        self.run_id = run_id

    def resolve(
        self,
        uid: str | None = None,
        query: Mapping[str, Any] | None = None,
        flat: bool = False,
        filter: SourceFilter | None = None,
    ) -> ResolveResult:
        if (uid is None) == (query is None):
            raise InvalidArgumentError("Exactly one of uid or query must be given")

        if uid is not None:
            logEvent(self.logger, logging.INFO, self.run_id, "resolve", f"resolve uid={uid}")
            person = self.source.resolve_one(uid, filter)
            people = [person] if person is not None else []
            result = ResolveResult(people=[person_to_dict(p, flat) for p in people])
        else:
            multi = to_multivalued(query)
            logEvent(self.logger, logging.INFO, self.run_id, "resolve", f"resolve query={multi!r}")
            found = self.source.resolve_many(multi, filter)
            if found is None:
                result = ResolveResult(evaluated=False)
            else:
                ordered = sorted(found, key=lambda p: (p.name is None, str(p.name)))
                result = ResolveResult(people=[person_to_dict(p, flat) for p in ordered])

        logEvent(
            self.logger,
            logging.INFO,
            self.run_id,
            "resolve",
            f"resolve done evaluated={result.evaluated} count={len(result.people)}",
        )
        return result

    def attributes(self, filter: SourceFilter | None = None) -> dict[str, Any]:
        possible = self.source.possible_result_attribute_names(filter)
        available = self.source.available_query_attributes(filter)
        return {
            "possible_result_attribute_names": sorted(possible) if possible is not None else None,
            "available_query_attributes": sorted(available) if available is not None else None,
        }


__all__ = ["ResolveResult", "ResolveUseCase", "parse_query_pairs", "person_to_dict"]
