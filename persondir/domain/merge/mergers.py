from __future__ import annotations

from typing import Any, Iterable, Mapping, Sequence

from persondir.domain.models import Person
from persondir.errors import ConfigError, InvalidArgumentError

MutableAttributes = dict[str, "list | None"]


class BaseAdditiveAttributeMerger:
    """
    Назначение/ответственность:
        Общая часть стратегий мерджа:
        - merge_results: мердж множеств Person по identity (name);
        - merge_possible_user_attribute_names / merge_available_query_attributes: объединение.

    Ограничения:
        - Входные множества и Person не изменяются; мердж выполняется на копиях.
        - Стратегия без состояния, экземпляр можно разделять между резолверами.
    """

    name = "base"

    def merge_attributes(self, base: Mapping[str, Sequence[Any] | None], incoming: Mapping[str, Sequence[Any] | None]) -> MutableAttributes:
        if base is None or incoming is None:
            raise InvalidArgumentError("Attribute maps to merge can not be None")
        return self._merge(_copy_attributes(base), incoming)

    def _merge(self, to_modify: MutableAttributes, to_consider: Mapping[str, Sequence[Any] | None]) -> MutableAttributes:
        raise NotImplementedError

    def merge_results(self, base: Iterable[Person], incoming: Iterable[Person]) -> set[Person]:
        """
        Алгоритм:
            - Person без пары в другом множестве проходит без изменений;
            - для совпавших по name атрибуты сливаются через merge_attributes.
        """
        if base is None or incoming is None:
            raise InvalidArgumentError("Result sets to merge can not be None")

        by_name: dict[str | None, Person] = {person.name: person for person in base}
        for person in incoming:
            existing = by_name.get(person.name)
            if existing is None:
                by_name[person.name] = person
                continue
            merged = self.merge_attributes(existing.attributes, person.attributes)
            by_name[person.name] = Person(person.name, merged)
        return set(by_name.values())

    def merge_possible_user_attribute_names(self, base: set[str], incoming: set[str]) -> set[str]:
        return set(base) | set(incoming)

    def merge_available_query_attributes(self, base: set[str], incoming: set[str]) -> set[str]:
        return set(base) | set(incoming)

    def __repr__(self) -> str:
        return f"{type(self).__name__}()"


class MultivaluedAttributeMerger(BaseAdditiveAttributeMerger):
    """
    Назначение:
        Объединение значений: для общего ключа списки конкатенируются,
        новые ключи копируются.

    Входные данные:
        distinct_values: bool
            Убирать дубликаты (строки сравниваются без учёта регистра,
            сохраняется первое вхождение).
    """

    name = "multivalued"

    def __init__(self, distinct_values: bool = False):
        self.distinct_values = distinct_values

    def _merge(self, to_modify, to_consider):
        for key, values in to_consider.items():
            current = to_modify.get(key)
            if values is None:
                to_modify.setdefault(key, current)
                continue
            combined = (current or []) + list(values)
            to_modify[key] = _distinct(combined) if self.distinct_values else combined
        return to_modify

    def __repr__(self) -> str:
        return f"MultivaluedAttributeMerger(distinct_values={self.distinct_values})"


class ReplacingAttributeAdder(BaseAdditiveAttributeMerger):
    """Значения incoming полностью заменяют значения base для того же ключа."""

    name = "replace"

    def _merge(self, to_modify, to_consider):
        for key, values in to_consider.items():
            to_modify[key] = list(values) if values is not None else None
        return to_modify


class NoncollidingAttributeAdder(BaseAdditiveAttributeMerger):
    """Ключ incoming добавляется только если его нет в base; коллизии отбрасываются."""

    name = "noncolliding"

    def _merge(self, to_modify, to_consider):
        for key, values in to_consider.items():
            if key not in to_modify:
                to_modify[key] = list(values) if values is not None else None
        return to_modify


class ReturnChangesAttributeMerger(BaseAdditiveAttributeMerger):
    """Результат мерджа - только атрибуты incoming."""

    name = "return-changes"

    def _merge(self, to_modify, to_consider):
        return _copy_attributes(to_consider)


class ReturnOriginalAttributeMerger(BaseAdditiveAttributeMerger):
    """Результат мерджа - только атрибуты base."""

    name = "return-original"

    def _merge(self, to_modify, to_consider):
        return to_modify


AttributeMerger = BaseAdditiveAttributeMerger

_MERGERS = {
    MultivaluedAttributeMerger.name: MultivaluedAttributeMerger,
    ReplacingAttributeAdder.name: ReplacingAttributeAdder,
    NoncollidingAttributeAdder.name: NoncollidingAttributeAdder,
    ReturnChangesAttributeMerger.name: ReturnChangesAttributeMerger,
    ReturnOriginalAttributeMerger.name: ReturnOriginalAttributeMerger,
}


def merger_by_name(name: str, **options: Any) -> BaseAdditiveAttributeMerger:
    """
    Назначение:
        Создать стратегию мерджа по имени из конфигурации.

    Ошибки/исключения:
        ConfigError, если имя неизвестно.
    """
    key = (name or "").strip().lower()
    merger_cls = _MERGERS.get(key)
    if merger_cls is None:
        raise ConfigError(
            f"Unknown merger: {name}",
            details={"known": sorted(_MERGERS)},
        )
    return merger_cls(**options)


def _copy_attributes(attributes: Mapping[str, Sequence[Any] | None]) -> MutableAttributes:
    return {key: (list(values) if values is not None else None) for key, values in attributes.items()}


def _distinct(values: list) -> list:
    seen: list = []
    for value in values:
        if not any(_same_value(value, other) for other in seen):
            seen.append(value)
    return seen


def _same_value(left: Any, right: Any) -> bool:
    if isinstance(left, str) and isinstance(right, str):
        return left.casefold() == right.casefold()
    return left == right


__all__ = [
    "AttributeMerger",
    "BaseAdditiveAttributeMerger",
    "MultivaluedAttributeMerger",
    "ReplacingAttributeAdder",
    "NoncollidingAttributeAdder",
    "ReturnChangesAttributeMerger",
    "ReturnOriginalAttributeMerger",
    "merger_by_name",
]
