from __future__ import annotations

from enum import Enum
from typing import Any, Iterable, Mapping, Sequence

# Языки, для которых регистр i/İ и ı/I отображается иначе, чем по умолчанию Unicode.
_DOTTED_I_LANGUAGES = ("tr", "az")


def _language(locale: str | None) -> str:
    if not locale:
        return ""
    return locale.replace("-", "_").split("_", 1)[0].lower()


def _upper(value: str, locale: str | None) -> str:
    if _language(locale) in _DOTTED_I_LANGUAGES:
        value = value.replace("i", "İ")
    return value.upper()


def _lower(value: str, locale: str | None) -> str:
    if _language(locale) in _DOTTED_I_LANGUAGES:
        value = value.replace("I", "ı").replace("İ", "i")
    return value.lower()


class CaseCanonicalizationMode(str, Enum):
    """
    Назначение:
        Политика нормализации регистра значений атрибутов.
    """

    NONE = "none"
    UPPER = "upper"
    LOWER = "lower"

    def canonicalize(self, value: str | None, locale: str | None = None) -> str | None:
        if value is None or self is CaseCanonicalizationMode.NONE:
            return value
        if self is CaseCanonicalizationMode.UPPER:
            return _upper(value, locale)
        return _lower(value, locale)

    @classmethod
    def parse(cls, value: "str | CaseCanonicalizationMode | None") -> "CaseCanonicalizationMode | None":
        if value is None or isinstance(value, CaseCanonicalizationMode):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unsupported case canonicalization mode: {value}") from None


DEFAULT_CASE_CANONICALIZATION_MODE = CaseCanonicalizationMode.LOWER
DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE = CaseCanonicalizationMode.NONE

ModeMap = Mapping[str, CaseCanonicalizationMode | None]


def canonicalize_values(
    values: Sequence[Any] | None,
    attribute_name: str,
    mode_map: ModeMap | None,
    default_mode: CaseCanonicalizationMode = DEFAULT_CASE_CANONICALIZATION_MODE,
    locale: str | None = None,
) -> Sequence[Any] | None:
    """
    Назначение:
        Нормализует регистр строковых значений одного атрибута.

    Входные данные:
        values: значения атрибута (могут быть None/пустыми)
        attribute_name: имя атрибута для поиска в mode_map
        mode_map: имя -> режим; None в качестве режима означает default_mode
        default_mode: режим по умолчанию (связывается поздно)
        locale: тег языка для регистровых преобразований

    Выходные данные:
        Исходные values, если нормализация не настроена, иначе новый список.
        Нестроковые значения не изменяются.
    """
    if not values or mode_map is None or attribute_name not in mode_map:
        return values
    mode = mode_map.get(attribute_name) or default_mode
    return [mode.canonicalize(v, locale) if isinstance(v, str) else v for v in values]


def modes_from_names(names: Iterable[str] | None) -> dict[str, CaseCanonicalizationMode | None] | None:
    """Коллекция имён атрибутов -> карта с режимом по умолчанию для каждого."""
    if not names:
        return None
    return {name: None for name in names}


def parse_mode_map(raw: Mapping[str, Any] | Iterable[str] | None) -> dict[str, CaseCanonicalizationMode | None] | None:
    """Принимает dict имя->режим (строкой) либо список имён (из YAML-конфига)."""
    if raw is None:
        return None
    if isinstance(raw, Mapping):
        return {name: CaseCanonicalizationMode.parse(mode) for name, mode in raw.items()}
    return modes_from_names(raw)
