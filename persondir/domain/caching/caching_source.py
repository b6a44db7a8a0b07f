from __future__ import annotations

import logging
from typing import Any, Mapping, Sequence

from persondir.domain.caching.key_generator import (
    OP_RESOLVE_MANY,
    OP_RESOLVE_ONE,
    AttributeBasedCacheKeyGenerator,
)
from persondir.domain.models import Person
from persondir.domain.ports.cache_store import CacheStore
from persondir.domain.ports.sources import AttributeSource, SourceFilter
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import InvalidArgumentError, NotConfiguredError
from persondir.loggingSetup import logEvent


class _NullResult:
    """Маркер закэшированного None-результата."""

    _instance: "_NullResult | None" = None

    def __new__(cls) -> "_NullResult":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "NULL_RESULTS_MARKER"


NULL_RESULTS_MARKER = _NullResult()


def _frozen(value: Any) -> Any:
    if isinstance(value, (set, frozenset)):
        return frozenset(value)
    return value


def _detached(value: Any) -> Any:
    # наборы Person отдаются копией, чтобы вызывающий не менял закэшированное
    if isinstance(value, (set, frozenset)):
        return set(value)
    return value


class CachingAttributeSource(BaseAttributeSource):
    """
    Назначение/ответственность:
        Декоратор источника: мемоизация resolve_many/resolve_one во внешнем CacheStore.

    Взаимодействия:
        - delegate: оборачиваемый AttributeSource;
        - cache_store: get/put/remove, согласованность обеспечивает хранилище;
        - key_generator: AttributeBasedCacheKeyGenerator.

    Алгоритм resolve_many:
        1) queries += 1; ключ из query (None -> кэш для вызова не используется);
        2) попадание: вернуть значение (маркер -> None);
        3) промах: misses += 1, вызвать delegate, сохранить результат или маркер
           (если cache_null_results).

    Ограничения:
        - Счётчики queries/misses без блокировки и под конкурентной нагрузкой
          могут быть приблизительными.
        - Запросы имён атрибутов не кэшируются и делегируются напрямую.
    """

    component = "cache"

    def __init__(
        self,
        delegate: AttributeSource | None = None,
        cache_store: CacheStore | None = None,
        *,
        key_generator: AttributeBasedCacheKeyGenerator | None = None,
        cache_null_results: bool = False,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.delegate = delegate
        self.cache_store = cache_store
        self.key_generator = key_generator or AttributeBasedCacheKeyGenerator()
        self.cache_null_results = cache_null_results
        self.queries = 0
        self.misses = 0
        self.stats_logger = self.logger.getChild("statistics")

    @property
    def hits(self) -> int:
        return self.queries - self.misses

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        delegate, store = self._require()
        return self._cached(
            OP_RESOLVE_MANY,
            query,
            store,
            lambda: delegate.resolve_many(query, filter),
        )

    def resolve_one(self, uid_or_query: str | Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> Person | None:
        if uid_or_query is None:
            raise InvalidArgumentError("uid may not be None")
        if not self.enabled:
            return None
        delegate, store = self._require()
        query = self._to_query(uid_or_query)
        return self._cached(
            OP_RESOLVE_ONE,
            query,
            store,
            lambda: delegate.resolve_one(uid_or_query, filter),
        )

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        delegate, _ = self._require()
        return delegate.possible_result_attribute_names(filter)

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        delegate, _ = self._require()
        return delegate.available_query_attributes(filter)

    def remove_user_attributes(self, uid_or_seed: str | Mapping[str, Any]) -> None:
        """
        Назначение:
            Явная инвалидация: вычисляет те же ключи, что и запросы, и удаляет их.
        """
        if uid_or_seed is None:
            raise InvalidArgumentError("uid may not be None")
        _, store = self._require()
        query = self._to_query(uid_or_seed)
        for operation in (OP_RESOLVE_MANY, OP_RESOLVE_ONE):
            key = self.key_generator.generate_key(operation, query)
            if key is None:
                self._log(logging.WARNING, f"no cache key generated for {dict(query)!r}, nothing removed")
                return
            store.remove(key)
            self._log(logging.DEBUG, f"removed cache entry key={key}")

    def _cached(self, operation: str, query: Mapping[str, Any], store: CacheStore, call):
        self.queries += 1
        key = self.key_generator.generate_key(operation, query)

        if key is not None:
            cached = store.get(key)
            if cached is not None:
                self._log(logging.DEBUG, f"cache hit key={key}")
                self._log_statistics()
                return None if cached is NULL_RESULTS_MARKER else _detached(cached)
            self._log(logging.DEBUG, f"cache miss key={key}")
        else:
            self._log(logging.DEBUG, f"no cache key generated for {dict(query)!r}, calling delegate")

        self.misses += 1
        result = call()

        if key is not None:
            if result is not None:
                self._store(store, key, _frozen(result))
            elif self.cache_null_results:
                self._store(store, key, NULL_RESULTS_MARKER)

        self._log_statistics()
        return _detached(result)

    def _store(self, store: CacheStore, key: str, value: Any) -> None:
        try:
            store.put(key, value)
        except TypeError as exc:
            # значение не сериализуется хранилищем: результат отдаётся без кэширования
            logEvent(self.logger, logging.WARNING, self.run_id, self.component, f"cache put skipped key={key}: {exc}")

    def _to_query(self, uid_or_query: str | Mapping[str, Any]) -> Mapping[str, Any]:
        if isinstance(uid_or_query, str):
            return self.username_resolver.to_seed(uid_or_query)
        return uid_or_query

    def _require(self) -> tuple[AttributeSource, CacheStore]:
        if self.delegate is None:
            raise NotConfiguredError("delegate must be set", details={"source": self.source_id})
        if self.cache_store is None:
            raise NotConfiguredError("cache_store must be set", details={"source": self.source_id})
        return self.delegate, self.cache_store

    def _log_statistics(self) -> None:
        if self.stats_logger.isEnabledFor(logging.DEBUG):
            logEvent(
                self.stats_logger,
                logging.DEBUG,
                self.run_id,
                self.component,
                f"{self.source_id}: queries={self.queries} hits={self.hits} misses={self.misses}",
            )


__all__ = ["CachingAttributeSource", "NULL_RESULTS_MARKER"]
