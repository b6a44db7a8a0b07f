from __future__ import annotations

import logging
from typing import Any, Callable, Iterable, Mapping, Sequence

from persondir.domain.merge.mergers import BaseAdditiveAttributeMerger, MultivaluedAttributeMerger
from persondir.domain.models import Person
from persondir.domain.ports.sources import AttributeSource, SourceFilter
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import NON_RECOVERABLE_ERRORS, InvalidArgumentError, NotConfiguredError

MultiQuery = Mapping[str, Sequence[Any]]


class AggregatingResolver(BaseAttributeSource):
    """
    Назначение/ответственность:
        Последовательный опрос упорядоченного списка дочерних источников
        с мерджем результатов через стратегию AttributeMerger.

    Алгоритм resolve_many:
        1) нет списка источников -> NotConfiguredError;
        2) result = None, first_query = True;
        3) для каждого источника по порядку:
           - пропустить, если filter его отклоняет;
           - build_child_query -> список запросов (None -> источник пропускается);
           - вызвать источник; исключение либо логируется и поглощается
             (recover_exceptions), либо пробрасывается;
           - first_query = False только после вызова без исключения;
           - первый не-None результат берётся как есть, следующие мерджатся;
           - stop_on_success: остановиться после первого источника без исключения,
             независимо от того, вернул ли он None.
        4) вернуть result (None, если ни один источник ничего не вернул).

    Инварианты:
        - None от источника не меняет накопленный результат, пустое множество
          делает его не-None;
        - InvalidArgumentError, NotConfiguredError, InvalidMappingError и
          AmbiguousResultError никогда не поглощаются.
    """

    component = "aggregate"

    def __init__(
        self,
        sources: Iterable[AttributeSource] | None = None,
        *,
        merger: BaseAdditiveAttributeMerger | None = None,
        recover_exceptions: bool = True,
        stop_on_success: bool = False,
        source_id: str | None = None,
        **kwargs: Any,
    ):
        self.sources: tuple[AttributeSource, ...] | None = tuple(sources) if sources is not None else None
        self.merger = merger or self.default_merger()
        self.recover_exceptions = recover_exceptions
        self.stop_on_success = stop_on_success
        super().__init__(source_id=source_id or self._aggregate_id(), **kwargs)

    @classmethod
    def default_merger(cls) -> BaseAdditiveAttributeMerger:
        return MultivaluedAttributeMerger()

    def build_child_query(
        self,
        seed: MultiQuery,
        first_query: bool,
        child: AttributeSource,
        result: set[Person] | None,
        filter: SourceFilter | None,
    ) -> list[MultiQuery] | None:
        """
        Назначение:
            Хук: какие запросы отправить очередному источнику.

        Выходные данные:
            Список запросов (источник вызывается по разу на каждый, результаты
            мерджатся) либо None - источник не вызывается.
        """
        raise NotImplementedError

    def resolve_many(self, query: MultiQuery, filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        sources = self._require_sources()

        result: set[Person] | None = None
        first_query = True

        for child in sources:
            if filter is not None and not filter(child):
                continue

            handled = False
            current: set[Person] | None = None
            try:
                current = self._query_child(query, first_query, child, result, filter)
                first_query = False
                self._log(
                    logging.DEBUG,
                    f"retrieved people={_people_repr(current)} from child={_source_name(child)} for query={dict(query)!r}",
                )
            except Exception as exc:
                if not self._recover(child, exc):
                    raise
                handled = True

            if current is not None:
                if result is None:
                    result = set(current)
                else:
                    result = self.merger.merge_results(result, current)

            if self.stop_on_success and not handled:
                self._log(logging.DEBUG, f"child={_source_name(child)} succeeded and stop_on_success is set, stopping")
                break

        self._log(logging.DEBUG, f"aggregated people={_people_repr(result)} for query={dict(query)!r}")
        return result

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        return self._aggregate_names(
            lambda child: child.possible_result_attribute_names(filter),
            self.merger.merge_possible_user_attribute_names,
            filter,
        )

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return self._aggregate_names(
            lambda child: child.available_query_attributes(filter),
            self.merger.merge_available_query_attributes,
            filter,
        )

    def ids(self) -> list[str]:
        """Имя класса агрегата и идентификаторы всех дочерних источников."""
        return [type(self).__name__] + [_source_name(child) for child in (self.sources or ())]

    def _aggregate_id(self) -> str:
        children = [_source_name(child) for child in (self.sources or ())]
        return f"{type(self).__name__}[{','.join(children)}]"

    def _require_sources(self) -> tuple[AttributeSource, ...]:
        if not self.sources:
            raise NotConfiguredError("sources must be a non-empty list", details={"source": type(self).__name__})
        return self.sources

    def _query_child(
        self,
        seed: MultiQuery,
        first_query: bool,
        child: AttributeSource,
        result: set[Person] | None,
        filter: SourceFilter | None,
    ) -> set[Person] | None:
        queries = self.build_child_query(seed, first_query, child, result, filter)
        if queries is None:
            return None

        merged: set[Person] | None = None
        for child_query in queries:
            people = child.resolve_many(child_query, filter)
            if people is None:
                continue
            merged = set(people) if merged is None else self.merger.merge_results(merged, people)
        return merged

    def _aggregate_names(
        self,
        fetch: Callable[[AttributeSource], set[str] | None],
        merge: Callable[[set[str], set[str]], set[str]],
        filter: SourceFilter | None,
    ) -> set[str] | None:
        sources = self._require_sources()
        names: set[str] | None = None

        for child in sources:
            if filter is not None and not filter(child):
                continue

            handled = False
            current: set[str] | None = None
            try:
                current = fetch(child)
            except Exception as exc:
                if not self._recover(child, exc):
                    raise
                handled = True

            if current is not None:
                names = merge(names if names is not None else set(), current)

            if self.stop_on_success and not handled:
                break

        return names

    def _recover(self, child: AttributeSource, exc: Exception) -> bool:
        """
        Назначение:
            Решение по исключению дочернего источника.

        Выходные данные:
            True - исключение залогировано на WARNING и поглощено;
            False - залогировано на ERROR, вызывающий обязан пробросить.
        """
        if self.recover_exceptions and not isinstance(exc, NON_RECOVERABLE_ERRORS):
            self._log(logging.WARNING, f"recovering from exception thrown by child={_source_name(child)}: {exc}", exc_info=exc)
            return True
        self._log(logging.ERROR, f"failing from exception thrown by child={_source_name(child)}: {exc}", exc_info=exc)
        return False


class MergingResolver(AggregatingResolver):
    """
    Назначение:
        Базовое поведение агрегата: каждый источник получает исходный seed,
        результаты объединяются (по умолчанию MultivaluedAttributeMerger).
    """

    def build_child_query(self, seed, first_query, child, result, filter):
        return [seed]


def _source_name(source: Any) -> str:
    return getattr(source, "source_id", None) or type(source).__name__


def _people_repr(people: set[Person] | None) -> str:
    if people is None:
        return "None"
    return "[" + ", ".join(sorted(str(person.name) for person in people)) + "]"


__all__ = ["AggregatingResolver", "MergingResolver"]
