from __future__ import annotations

import logging
import re
from typing import Any, Mapping, Sequence

from persondir.domain.models import Person
from persondir.domain.ports.sources import AttributeSource, SourceFilter
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import InvalidArgumentError, InvalidMappingError


class RegexGatewayAttributeSource(BaseAttributeSource):
    """
    Назначение/ответственность:
        Условный шлюз: передаёт запрос delegate только если значения query
        соответствуют регулярным выражениям, иначе возвращает None.

    Входные данные:
        delegate: AttributeSource
        patterns: атрибут -> регулярное выражение (полное совпадение)
        match_all_patterns: должны совпасть все шаблоны (иначе достаточно одного)
        match_all_values: все значения атрибута должны совпасть (иначе достаточно одного)

    Ошибки/исключения:
        - InvalidMappingError: пустой набор шаблонов или некорректное выражение;
        - InvalidArgumentError: нестроковое значение проверяемого атрибута.
    """

    component = "source.regex"

    def __init__(
        self,
        delegate: AttributeSource,
        patterns: Mapping[str, str],
        *,
        match_all_patterns: bool = False,
        match_all_values: bool = False,
        **kwargs: Any,
    ):
        if delegate is None:
            raise InvalidArgumentError("delegate may not be None")
        if not patterns:
            raise InvalidMappingError("patterns must contain at least one mapping")
        super().__init__(**kwargs)
        self.delegate = delegate
        self.match_all_patterns = match_all_patterns
        self.match_all_values = match_all_values
        self.patterns: dict[str, re.Pattern] = {}
        for name, pattern in patterns.items():
            if pattern is None:
                raise InvalidMappingError(f"Attribute '{name}' has a None pattern")
            try:
                self.patterns[name] = re.compile(pattern)
            except re.error as exc:
                raise InvalidMappingError(f"Invalid pattern for '{name}': {exc}") from exc

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        if not self.matches(query):
            self._log(logging.DEBUG, f"query {dict(query)!r} does not match patterns, returning None")
            return None
        self._log(logging.DEBUG, f"matching criteria met, delegating to {getattr(self.delegate, 'source_id', self.delegate)!r}")
        return self.delegate.resolve_many(query, filter)

    def matches(self, query: Mapping[str, Sequence[Any]]) -> bool:
        matched_patterns = False
        for name, pattern in self.patterns.items():
            values = query.get(name)
            if values is None:
                if self.match_all_patterns:
                    return False
                continue
            if isinstance(values, str):
                values = [values]

            matched_patterns = self._match_values(name, pattern, values)
            if matched_patterns and not self.match_all_patterns:
                return True
            if not matched_patterns and self.match_all_patterns:
                return False
        return matched_patterns

    def _match_values(self, name: str, pattern: re.Pattern, values: Sequence[Any]) -> bool:
        matched = False
        for value in values:
            if not isinstance(value, str):
                raise InvalidArgumentError(
                    f"Only string values can be matched; attribute '{name}' has a non-string value",
                    details={"attribute": name},
                )
            matched = pattern.fullmatch(value) is not None
            if matched and not self.match_all_values:
                return True
            if not matched and self.match_all_values:
                return False
        return matched

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        return self.delegate.possible_result_attribute_names(filter)

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return set(self.patterns.keys())


__all__ = ["RegexGatewayAttributeSource"]
