from __future__ import annotations

import logging
from typing import Any

from persondir.domain.merge.mergers import BaseAdditiveAttributeMerger, ReplacingAttributeAdder
from persondir.domain.resolution.aggregating import AggregatingResolver


class CascadingResolver(AggregatingResolver):
    """
    Назначение/ответственность:
        Цепочка зависимых запросов: атрибуты, найденные предыдущими источниками
        (например, внешний ключ), становятся запросом к следующему.

    Алгоритм build_child_query:
        - первый запрос, либо (не stop_if_first_source_returns_null и результата нет):
          исходный seed;
        - stop_if_first_source_returns_null и результата нет: None, источник
          и все последующие пропускаются;
        - иначе по запросу на каждый накопленный Person:
          {username_attribute: [name]} + все атрибуты Person.

    Ограничения:
        Стратегия мерджа по умолчанию - ReplacingAttributeAdder.
    """

    component = "cascade"

    def __init__(self, sources=None, *, stop_if_first_source_returns_null: bool = False, **kwargs: Any):
        self.stop_if_first_source_returns_null = stop_if_first_source_returns_null
        super().__init__(sources, **kwargs)

    @classmethod
    def default_merger(cls) -> BaseAdditiveAttributeMerger:
        return ReplacingAttributeAdder()

    def build_child_query(self, seed, first_query, child, result, filter):
        if first_query or (not self.stop_if_first_source_returns_null and not result):
            return [seed]

        if self.stop_if_first_source_returns_null and not result:
            self._log(logging.DEBUG, "first source returned no people, skipping remaining sources")
            return None

        username_attribute = self.username_resolver.username_attribute
        queries = []
        for person in result:
            query: dict[str, list | None] = {}
            if person.name is not None:
                query[username_attribute] = [person.name]
            query.update(person.mutable_attributes())
            queries.append(query)
        return queries


__all__ = ["CascadingResolver"]
