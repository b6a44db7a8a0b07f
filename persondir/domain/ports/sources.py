from __future__ import annotations

from typing import Callable, Mapping, Protocol, Sequence, runtime_checkable

from persondir.domain.models import Person


@runtime_checkable
class AttributeSource(Protocol):
    """
    Назначение/ответственность:
        Единичный источник атрибутов (статическая карта, REST, агрегат и т.п.).
    Взаимодействия:
        Вызывается агрегирующими резолверами и кэширующим декоратором.
    Ограничения:
        Синхронный вызов; "не найдено" никогда не выражается исключением.
    """

    source_id: str
    tags: frozenset[str]
    enabled: bool

    def resolve_one(self, uid_or_query: "str | Mapping[str, Sequence]", filter: "SourceFilter | None" = None) -> Person | None:
        """
        Контракт (вход/выход):
            - Вход: uid (строка) или многозначный query.
            - Выход: единственный Person либо None.
        Ошибки/исключения:
            AmbiguousResultError, если совпало больше одной identity.
        """
        ...

    def resolve_many(self, query: Mapping[str, Sequence], filter: "SourceFilter | None" = None) -> set[Person] | None:
        """
        Контракт (вход/выход):
            - None: источник не смог выполнить запрос.
            - пустое множество: запрос выполнен, совпадений нет.
        """
        ...

    def possible_result_attribute_names(self, filter: "SourceFilter | None" = None) -> set[str] | None:
        """None означает "неизвестно"."""
        ...

    def available_query_attributes(self, filter: "SourceFilter | None" = None) -> set[str] | None:
        """None означает "неизвестно"."""
        ...


SourceFilter = Callable[[AttributeSource], bool]


def always_choose(source: AttributeSource) -> bool:
    return True


def choose_tagged(tag: str) -> SourceFilter:
    """
    Назначение:
        Фильтр, выбирающий только источники с указанным тегом.
    """

    def _choose(source: AttributeSource) -> bool:
        return tag in getattr(source, "tags", frozenset())

    return _choose


def choose_not_ids(*source_ids: str) -> SourceFilter:
    """Фильтр, исключающий источники с перечисленными source_id."""
    excluded = set(source_ids)

    def _choose(source: AttributeSource) -> bool:
        return getattr(source, "source_id", None) not in excluded

    return _choose


__all__ = ["AttributeSource", "SourceFilter", "always_choose", "choose_tagged", "choose_not_ids"]
