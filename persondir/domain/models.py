from __future__ import annotations

import threading
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Sequence

from persondir.errors import AmbiguousResultError, InvalidArgumentError

# Query в многозначной форме: имя атрибута -> упорядоченные значения-кандидаты.
MultiQuery = Mapping[str, Sequence[Any]]
Attributes = Mapping[str, Sequence[Any] | None]

WILDCARD = "*"


def _freeze_attributes(attributes: Attributes) -> Mapping[str, tuple | None]:
    frozen: dict[str, tuple | None] = {}
    for key, values in attributes.items():
        if values is None:
            frozen[key] = None
        elif isinstance(values, (str, bytes)):
            frozen[key] = (values,)
        else:
            frozen[key] = tuple(values)
    return MappingProxyType(frozen)


@dataclass(frozen=True)
class Person:
    """
    Назначение:
        Результат разрешения одной identity: имя + многозначные атрибуты.
    Инварианты:
        - Неизменяем после создания; attributes отдаётся как read-only view.
        - Равенство и hash определяются только name: множества Person
          дедуплицируются по identity при мердже.
        - Ключ со значением None отличается от отсутствующего ключа.
    """

    name: str | None
    attributes: Mapping[str, tuple | None] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self) -> None:
        if self.attributes is None:
            raise InvalidArgumentError("attributes can not be None")
        object.__setattr__(self, "attributes", _freeze_attributes(self.attributes))

    @classmethod
    def from_attribute(cls, username_attribute: str, attributes: Attributes) -> "Person":
        """
        Назначение:
            Создать Person, имя которого берётся из первого значения атрибута username_attribute.
        """
        values = attributes.get(username_attribute)
        name = None
        if values:
            first = values[0] if not isinstance(values, str) else values
            if first is not None:
                name = str(first)
        return cls(name, attributes)

    def attribute_value(self, name: str) -> Any:
        values = self.attributes.get(name)
        if not values:
            return None
        return values[0]

    def attribute_values(self, name: str) -> tuple | None:
        return self.attributes.get(name)

    def mutable_attributes(self) -> dict[str, list | None]:
        """Копия атрибутов в виде изменяемого dict[str, list] (для мерджа/маппинга)."""
        return {k: (list(v) if v is not None else None) for k, v in self.attributes.items()}


class AdditionalDescriptors:
    """
    Назначение:
        Изменяемый набор атрибутов, добавляемых вызывающей стороной
        (например, атрибуты уровня сессии).
    Ограничения:
        - Единственная изменяемая сущность модели; операции над картой
          атрибутов защищены блокировкой, экземпляр можно разделять между потоками.
        - Равенство по name, как у Person.
    """

    def __init__(self, name: str | None = None, attributes: Attributes | None = None):
        self._lock = threading.RLock()
        self._name = name
        self._attributes: dict[str, list | None] = {}
        if attributes:
            self.add_attributes(attributes)

    @property
    def name(self) -> str | None:
        return self._name

    @name.setter
    def name(self, value: str | None) -> None:
        self._name = value

    @property
    def attributes(self) -> Mapping[str, tuple | None]:
        with self._lock:
            return _freeze_attributes(self._attributes)

    def attribute_value(self, name: str) -> Any:
        with self._lock:
            values = self._attributes.get(name)
            return values[0] if values else None

    def attribute_values(self, name: str) -> tuple | None:
        with self._lock:
            values = self._attributes.get(name)
            return tuple(values) if values is not None else None

    def add_attributes(self, attributes: Attributes) -> None:
        """Добавляет/заменяет перечисленные атрибуты, остальные не трогает."""
        with self._lock:
            for name, values in attributes.items():
                self._attributes[name] = _copy_values(values)

    def set_attributes(self, attributes: Attributes) -> None:
        """Полностью заменяет набор атрибутов."""
        if attributes is None:
            raise InvalidArgumentError("Argument 'attributes' cannot be None")
        replacement = {name: _copy_values(values) for name, values in attributes.items()}
        with self._lock:
            self._attributes = replacement

    def set_attribute_values(self, name: str, values: Sequence[Any] | None) -> list | None:
        if name is None:
            raise InvalidArgumentError("Argument 'name' cannot be None")
        with self._lock:
            previous = self._attributes.get(name)
            self._attributes[name] = _copy_values(values)
            return previous

    def remove_attribute(self, name: str) -> list | None:
        if name is None:
            raise InvalidArgumentError("Argument 'name' cannot be None")
        with self._lock:
            return self._attributes.pop(name, None)

    def to_person(self) -> Person:
        return Person(self._name, self.attributes)

    def __eq__(self, other: object) -> bool:
        if other is self:
            return True
        if isinstance(other, (AdditionalDescriptors, Person)):
            return self._name == other.name
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._name)

    def __repr__(self) -> str:
        return f"AdditionalDescriptors(name={self._name!r}, attributes={dict(self.attributes)!r})"


def _copy_values(values: Sequence[Any] | None) -> list | None:
    if values is None:
        return None
    if isinstance(values, (str, bytes)):
        return [values]
    return list(values)


def to_multivalued(seed: Mapping[str, Any]) -> dict[str, list]:
    """
    Назначение:
        Перевод однозначного seed в многозначную форму.
    Алгоритм:
        - list/tuple значения считаются уже многозначными;
        - скаляр оборачивается в список из одного элемента.
    """
    if seed is None:
        raise InvalidArgumentError("seed can not be None")
    multi: dict[str, list] = {}
    for name, value in seed.items():
        if isinstance(value, (list, tuple)):
            multi[name] = list(value)
        else:
            multi[name] = [value]
    return multi


def flatten(attributes: Attributes | None) -> dict[str, Any] | None:
    """
    Назначение:
        Обратная операция: каждое значение заменяется первым элементом списка
        (None для пустого/отсутствующего списка).
    """
    if attributes is None:
        return None
    flat: dict[str, Any] = {}
    for name, values in attributes.items():
        flat[name] = values[0] if values else None
    return flat


def single_person(people: Iterable[Person] | None) -> Person | None:
    """
    Назначение:
        Извлечь единственный Person из результата многострочного запроса.
    Ошибки/исключения:
        AmbiguousResultError, если найдено больше одного.
    """
    if people is None:
        return None
    items = list(people)
    if not items:
        return None
    if len(items) > 1:
        raise AmbiguousResultError(len(items))
    return items[0]


__all__ = [
    "WILDCARD",
    "MultiQuery",
    "Attributes",
    "Person",
    "AdditionalDescriptors",
    "to_multivalued",
    "flatten",
    "single_person",
]
