from __future__ import annotations

import hashlib
from typing import Any, Iterable, Mapping

from persondir.errors import InvalidArgumentError

OP_RESOLVE_MANY = "resolve_many"
OP_RESOLVE_ONE = "resolve_one"
OP_POSSIBLE_RESULT_ATTRIBUTE_NAMES = "possible_result_attribute_names"
OP_AVAILABLE_QUERY_ATTRIBUTES = "available_query_attributes"

OPERATIONS = frozenset(
    [
        OP_RESOLVE_MANY,
        OP_RESOLVE_ONE,
        OP_POSSIBLE_RESULT_ATTRIBUTE_NAMES,
        OP_AVAILABLE_QUERY_ATTRIBUTES,
    ]
)

DEFAULT_CACHE_KEY_ATTRIBUTES = frozenset(["username"])


def _normalize_values(values: Any) -> list:
    if isinstance(values, (list, tuple)):
        return list(values)
    return [values]


def _is_empty(values: Any) -> bool:
    if values is None:
        return True
    normalized = _normalize_values(values)
    return all(v is None or v == "" for v in normalized)


def hash_values(values: Any) -> str:
    """SHA-512 hex от repr значений атрибута (скаляр приравнивается к списку из одного)."""
    return hashlib.sha512(repr(_normalize_values(values)).encode("utf-8")).hexdigest()


class AttributeBasedCacheKeyGenerator:
    """
    Назначение:
        Генерация ключа кэша из подмножества атрибутов query.

    Входные данные:
        cache_key_attributes: имена атрибутов, участвующих в ключе (по умолчанию {"username"};
            все атрибуты query в ключ попадают только при use_all_attributes=True)
        use_all_attributes: в ключ идут все атрибуты query
        ignore_empty_attributes: атрибуты без значений не участвуют в ключе

    Выходные данные:
        "<operation>|<sha256 hex>" либо None, если ни одного ключевого атрибута нет.

    Инварианты:
        - атрибуты вне набора ключевых не влияют на ключ;
        - ключи разных операций никогда не совпадают (операция - префикс ключа);
        - порядок атрибутов в query на ключ не влияет.
    """

    def __init__(
        self,
        cache_key_attributes: Iterable[str] | None = None,
        use_all_attributes: bool = False,
        ignore_empty_attributes: bool = False,
    ):
        if cache_key_attributes is None:
            cache_key_attributes = DEFAULT_CACHE_KEY_ATTRIBUTES
        self.cache_key_attributes = frozenset(cache_key_attributes)
        self.use_all_attributes = use_all_attributes
        self.ignore_empty_attributes = ignore_empty_attributes

    def generate_key(self, operation: str, query: Mapping[str, Any]) -> str | None:
        if operation not in OPERATIONS:
            raise InvalidArgumentError(f"Unknown cacheable operation: {operation}")
        if query is None:
            raise InvalidArgumentError("query may not be None")

        names = query.keys() if self.use_all_attributes else self.cache_key_attributes
        pairs: list[tuple[str, str]] = []
        for name in sorted(names):
            if name not in query:
                continue
            values = query[name]
            if self.ignore_empty_attributes and _is_empty(values):
                continue
            pairs.append((name, hash_values(values)))

        if not pairs:
            return None

        digest = hashlib.sha256()
        for name, value_hash in pairs:
            digest.update(name.encode("utf-8"))
            digest.update(b"\x00")
            digest.update(value_hash.encode("ascii"))
            digest.update(b"\n")
        return f"{operation}|{digest.hexdigest()}"


__all__ = [
    "AttributeBasedCacheKeyGenerator",
    "DEFAULT_CACHE_KEY_ATTRIBUTES",
    "OPERATIONS",
    "OP_AVAILABLE_QUERY_ATTRIBUTES",
    "OP_POSSIBLE_RESULT_ATTRIBUTE_NAMES",
    "OP_RESOLVE_MANY",
    "OP_RESOLVE_ONE",
    "hash_values",
]
