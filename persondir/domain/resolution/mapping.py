from __future__ import annotations

from typing import Any, Callable, Iterable, Mapping, Sequence

from persondir.domain.case import (
    DEFAULT_CASE_CANONICALIZATION_MODE,
    DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE,
    CaseCanonicalizationMode,
    ModeMap,
    canonicalize_values,
)
from persondir.domain.models import Person
from persondir.domain.resolution.username import UsernameResolver
from persondir.errors import InvalidArgumentError, InvalidMappingError

AttributeMapping = dict[str, "frozenset[str] | None"]

# Цель маппинга, оканчивающаяся этим суффиксом, означает "скопировать семейство
# ключей '<source>;...' как есть" (например, 'cn;lang-ru').
KEY_FAMILY_MARKER = ";"

QueryAppender = Callable[[Any, str, Sequence[Any]], Any]


def parse_attribute_mapping(mapping: Mapping[str, Any] | None) -> AttributeMapping | None:
    """
    Назначение:
        Нормализовать гибкую карту имён к виду "имя -> множество имён".

    Входные данные:
        mapping: dict, где значение - None, строка или коллекция строк.

    Выходные данные:
        dict[str, frozenset[str] | None] или None, если карта не задана.

    Ошибки/исключения:
        InvalidMappingError:
            - пустой/нестроковый ключ;
            - значение неподдерживаемого типа или нестроковый элемент коллекции.
    """
    if mapping is None:
        return None
    if not isinstance(mapping, Mapping):
        raise InvalidMappingError(f"Attribute mapping must be a mapping, got {type(mapping).__name__}")

    parsed: AttributeMapping = {}
    for key, value in mapping.items():
        if not isinstance(key, str) or not key:
            raise InvalidMappingError(
                "The attribute mapping contains an empty or non-string key",
                details={"key": repr(key)},
            )
        if value is None:
            parsed[key] = None
        elif isinstance(value, str):
            parsed[key] = frozenset([value])
        elif isinstance(value, (list, tuple, set, frozenset)):
            targets = set()
            for item in value:
                if not isinstance(item, str):
                    raise InvalidMappingError(
                        f"Invalid mapping target for '{key}': {item!r}",
                        details={"key": key},
                    )
                targets.add(item)
            parsed[key] = frozenset(targets)
        else:
            raise InvalidMappingError(
                f"Invalid mapping type for key '{key}': {type(value).__name__}",
                details={"key": key},
            )
    return parsed


def flatten_mapping_targets(mapping: AttributeMapping | None) -> set[str] | None:
    """Все целевые имена карты; None-цель означает исходное имя."""
    if mapping is None:
        return None
    names: set[str] = set()
    for key, targets in mapping.items():
        if targets is None:
            names.add(key)
        else:
            names.update(targets)
    return names


def append_to_dict_query(builder: dict[str, list] | None, name: str, values: Sequence[Any]) -> dict[str, list]:
    """Построитель запроса по умолчанию: упорядоченный многозначный dict."""
    if builder is None:
        builder = {}
    builder.setdefault(name, []).extend(values)
    return builder


class AttributeNameMapper:
    """
    Назначение/ответственность:
        Трансляция имён атрибутов между стороной вызывающего и стороной источника:
        - query-имена -> имена запроса провайдера (map_query);
        - сырые имена результата -> имена для вызывающего (map_result);
        - определение username результата.

    Взаимодействия:
        Используется QueryAttributeSource; построение запроса провайдера делегируется
        хуку append (по умолчанию - многозначный dict).

    Ограничения:
        - Некорректная карта отклоняется при конструировании (InvalidMappingError).
        - Маппер не хранит состояния между вызовами.
    """

    def __init__(
        self,
        query_attribute_mapping: Mapping[str, Any] | None = None,
        result_attribute_mapping: Mapping[str, Any] | None = None,
        *,
        username_resolver: UsernameResolver | None = None,
        case_insensitive_query_attributes: ModeMap | None = None,
        case_insensitive_result_attributes: ModeMap | None = None,
        default_case_canonicalization_mode: CaseCanonicalizationMode = DEFAULT_CASE_CANONICALIZATION_MODE,
        case_canonicalization_locale: str | None = None,
        username_case_canonicalization_mode: CaseCanonicalizationMode = DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE,
        username_case_canonicalization_locale: str | None = None,
        require_all_query_attributes: bool = False,
        use_all_query_attributes: bool = True,
        unmapped_username_attribute: str | None = None,
        key_family_passthrough: bool = False,
        append: QueryAppender | None = None,
    ):
        self.query_attribute_mapping = parse_attribute_mapping(query_attribute_mapping)
        self.result_attribute_mapping = parse_attribute_mapping(result_attribute_mapping)
        self.username_resolver = username_resolver or UsernameResolver()
        self.case_insensitive_query_attributes = case_insensitive_query_attributes
        self.case_insensitive_result_attributes = case_insensitive_result_attributes
        self.default_case_canonicalization_mode = default_case_canonicalization_mode
        self.case_canonicalization_locale = case_canonicalization_locale
        self.username_case_canonicalization_mode = username_case_canonicalization_mode
        self.username_case_canonicalization_locale = username_case_canonicalization_locale
        self.require_all_query_attributes = require_all_query_attributes
        self.use_all_query_attributes = use_all_query_attributes
        self.unmapped_username_attribute = unmapped_username_attribute
        self.key_family_passthrough = key_family_passthrough
        self.append = append or append_to_dict_query

    @property
    def requires_query(self) -> bool:
        """
        True, если источник без построенного запроса выполнять нельзя
        (карта query задана либо используются все атрибуты query).
        """
        return self.query_attribute_mapping is not None or self.use_all_query_attributes

    def map_query(self, query: Mapping[str, Sequence[Any]], append: QueryAppender | None = None) -> Any:
        """
        Назначение:
            Построить запрос провайдера из многозначного query.

        Выходные данные:
            Построитель запроса (результат хука append) либо None:
            - не задан ни один подходящий атрибут;
            - require_all_query_attributes и какой-то атрибут карты отсутствует.

        Алгоритм:
            - с картой: для каждого атрибута карты, присутствующего в query,
              значения нормализуются по case_insensitive_query_attributes и
              добавляются под каждым целевым именем (None-цель -> исходное имя);
            - без карты: use_all_query_attributes=True передаёт всё как есть,
              False - ничего.
        """
        if query is None:
            raise InvalidArgumentError("query may not be None")

        append = append or self.append
        builder = None
        if self.query_attribute_mapping is not None:
            for name, targets in self.query_attribute_mapping.items():
                values = query.get(name)
                if values is None:
                    if self.require_all_query_attributes:
                        return None
                    continue
                values = self._canonicalize_query(name, values)
                for target in (targets if targets is not None else (name,)):
                    builder = append(builder, target, values)
        elif self.use_all_query_attributes:
            for name, values in query.items():
                if values is None:
                    continue
                builder = append(builder, name, self._canonicalize_query(name, values))
        return builder

    def map_result(self, person: Person) -> Person:
        """
        Назначение:
            Перевести сырой Person источника в Person с именами вызывающей стороны.

        Алгоритм:
            - без карты результата: атрибуты как есть либо только нормализация регистра;
            - с картой: присутствующий атрибут копируется под каждым целевым именем
              с нормализацией по целевому имени;
            - при key_family_passthrough единственная цель, оканчивающаяся на ';',
              копирует все ключи вида '<source>;*' без переименования;
            - username: имя сырого Person, иначе значение unmapped_username_attribute
              (или атрибута UsernameResolver); затем своя нормализация регистра.
        """
        raw = person.attributes
        if self.result_attribute_mapping is None:
            if self.case_insensitive_result_attributes:
                attributes = {
                    name: self._canonicalize_result(name, values) for name, values in raw.items()
                }
            else:
                attributes = dict(raw)
        else:
            attributes = {}
            for source_name, targets in self.result_attribute_mapping.items():
                targets = targets if targets is not None else frozenset([source_name])
                if self.key_family_passthrough and self._is_key_family(targets):
                    prefix = source_name + KEY_FAMILY_MARKER
                    for raw_name, values in raw.items():
                        if raw_name.startswith(prefix):
                            attributes[raw_name] = values
                elif source_name in raw:
                    values = raw[source_name]
                    for target in sorted(targets):
                        attributes[target] = self._canonicalize_result(target, values)

        return Person(self._map_username(person.name, attributes), attributes)

    def possible_result_attribute_names(self) -> set[str] | None:
        return flatten_mapping_targets(self.result_attribute_mapping)

    def available_query_attributes(self) -> set[str]:
        if self.query_attribute_mapping is None:
            return set()
        return set(self.query_attribute_mapping.keys())

    def username_attribute(self) -> str:
        return self.unmapped_username_attribute or self.username_resolver.username_attribute

    def _map_username(self, raw_name: str | None, attributes: Mapping[str, Sequence[Any] | None]) -> str | None:
        name = raw_name
        if name is None:
            values = attributes.get(self.username_attribute())
            if values:
                first = values[0]
                name = str(first) if first is not None else None
        return self.username_case_canonicalization_mode.canonicalize(name, self.username_case_canonicalization_locale)

    def _canonicalize_query(self, name: str, values: Sequence[Any]) -> list:
        return list(
            canonicalize_values(
                values,
                name,
                self.case_insensitive_query_attributes,
                self.default_case_canonicalization_mode,
                self.case_canonicalization_locale,
            )
        )

    def _canonicalize_result(self, name: str, values: Sequence[Any] | None) -> Sequence[Any] | None:
        return canonicalize_values(
            values,
            name,
            self.case_insensitive_result_attributes,
            self.default_case_canonicalization_mode,
            self.case_canonicalization_locale,
        )

    @staticmethod
    def _is_key_family(targets: Iterable[str]) -> bool:
        targets = list(targets)
        return len(targets) == 1 and targets[0].endswith(KEY_FAMILY_MARKER)


__all__ = [
    "AttributeMapping",
    "KEY_FAMILY_MARKER",
    "AttributeNameMapper",
    "append_to_dict_query",
    "flatten_mapping_targets",
    "parse_attribute_mapping",
]
