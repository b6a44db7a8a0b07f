from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Callable, Mapping

import httpx
import yaml

from persondir.domain.caching.caching_source import CachingAttributeSource
from persondir.domain.caching.key_generator import AttributeBasedCacheKeyGenerator
from persondir.domain.case import CaseCanonicalizationMode, parse_mode_map
from persondir.domain.merge.mergers import BaseAdditiveAttributeMerger, merger_by_name
from persondir.domain.models import AdditionalDescriptors, to_multivalued
from persondir.domain.ports.cache_store import CacheStore
from persondir.domain.ports.sources import AttributeSource
from persondir.domain.resolution.aggregating import MergingResolver
from persondir.domain.resolution.cascading import CascadingResolver
from persondir.domain.resolution.mapping import AttributeNameMapper
from persondir.domain.resolution.username import UsernameResolver
from persondir.errors import AppError, ConfigError
from persondir.infra.cache.memory_store import InMemoryCacheStore
from persondir.infra.sources.additional import AdditionalDescriptorsAttributeSource
from persondir.infra.sources.json_stub import JsonBackedComplexStubAttributeSource
from persondir.infra.sources.regex_gateway import RegexGatewayAttributeSource
from persondir.infra.sources.rest import RestAttributeSource
from persondir.infra.sources.static import ComplexStubAttributeSource, EchoAttributeSource, StubAttributeSource

_MAPPER_KEYS = (
    "query_attribute_mapping",
    "result_attribute_mapping",
    "case_insensitive_query_attributes",
    "case_insensitive_result_attributes",
    "default_case_canonicalization_mode",
    "case_canonicalization_locale",
    "username_case_canonicalization_mode",
    "username_case_canonicalization_locale",
    "require_all_query_attributes",
    "use_all_query_attributes",
    "unmapped_username_attribute",
    "key_family_passthrough",
)


def load_source_document(path: str | Path) -> dict:
    """
    Назначение:
        Прочитать YAML-описание графа источников.

    Ошибки/исключения:
        ConfigError: файла нет, YAML некорректен или корень - не mapping.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Sources file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as exc:
        raise ConfigError(f"Sources file is not valid YAML: {path}", details={"error": str(exc)}) from exc
    if not isinstance(data, dict):
        raise ConfigError(f"Sources file must contain a mapping: {path}")
    return data


class SourceFactory:
    """
    Назначение/ответственность:
        Сборка графа AttributeSource из dict/YAML-описания.

    Формат:
        username_attribute: uid            # необязательно
        root:
          type: merging|cascading|caching|stub|complex_stub|json|echo|regex|rest|additional
          id: ...                          # source_id
          tags: [...]
          enabled: true
          sources: [...]                   # дочерние источники агрегатов
          source: {...}                    # обёрнутый источник (caching, regex)

    Взаимодействия:
        - значения по умолчанию (recover_exceptions, stop_on_success,
          cache_null_results, rest_timeout_seconds) приходят из Settings;
        - cache_store_factory создаёт хранилище для type=caching, store=sqlite.

    Ошибки/исключения:
        ConfigError при неизвестном типе или отсутствующих полях;
        InvalidMappingError из маппера/шлюза пробрасывается как есть.
    """

    def __init__(
        self,
        *,
        username_attribute: str = "username",
        recover_exceptions: bool = True,
        stop_on_success: bool = False,
        cache_null_results: bool = False,
        rest_timeout_seconds: float = 20.0,
        base_dir: str | Path | None = None,
        cache_store_factory: Callable[[str], CacheStore] | None = None,
        rest_transport: httpx.BaseTransport | None = None,
        logger: logging.Logger | None = None,
        run_id: str | None = None,
    ):
        self.username_attribute = username_attribute
        self.recover_exceptions = recover_exceptions
        self.stop_on_success = stop_on_success
        self.cache_null_results = cache_null_results
        self.rest_timeout_seconds = rest_timeout_seconds
        self.base_dir = Path(base_dir) if base_dir is not None else Path(".")
        self.cache_store_factory = cache_store_factory
        self.rest_transport = rest_transport
        self.logger = logger
        self.run_id = run_id
        self._builders: dict[str, Callable[[Mapping[str, Any], UsernameResolver], AttributeSource]] = {
            "merging": self._build_merging,
            "cascading": self._build_cascading,
            "caching": self._build_caching,
            "stub": self._build_stub,
            "complex_stub": self._build_complex_stub,
            "json": self._build_json,
            "echo": self._build_echo,
            "regex": self._build_regex,
            "rest": self._build_rest,
            "additional": self._build_additional,
        }

    @property
    def known_types(self) -> list[str]:
        return sorted(self._builders)

    def build(self, document: Mapping[str, Any]) -> AttributeSource:
        if not isinstance(document, Mapping):
            raise ConfigError("Sources document must be a mapping")
        root = document.get("root")
        if root is None:
            raise ConfigError("Sources document has no 'root' source")
        resolver = UsernameResolver(document.get("username_attribute") or self.username_attribute)
        return self.build_source(root, resolver)

    def build_source(self, definition: Mapping[str, Any], resolver: UsernameResolver) -> AttributeSource:
        if not isinstance(definition, Mapping):
            raise ConfigError(f"Source definition must be a mapping, got {type(definition).__name__}")
        kind = definition.get("type")
        builder = self._builders.get(str(kind).strip().lower()) if kind is not None else None
        if builder is None:
            raise ConfigError(
                f"Unknown source type: {kind}",
                details={"known": self.known_types, "id": definition.get("id")},
            )
        try:
            return builder(definition, resolver)
        except AppError:
            raise
        except (TypeError, ValueError) as exc:
            raise ConfigError(
                f"Invalid definition for source type '{kind}': {exc}",
                details={"id": definition.get("id")},
            ) from exc

    def _common(self, definition: Mapping[str, Any], resolver: UsernameResolver) -> dict[str, Any]:
        return {
            "source_id": definition.get("id"),
            "tags": definition.get("tags") or (),
            "enabled": bool(definition.get("enabled", True)),
            "username_resolver": resolver,
            "logger": self.logger,
            "run_id": self.run_id,
        }

    def _children(self, definition: Mapping[str, Any], resolver: UsernameResolver) -> list[AttributeSource]:
        children = definition.get("sources")
        if not isinstance(children, list) or not children:
            raise ConfigError(
                f"Source '{definition.get('id') or definition.get('type')}' requires a non-empty 'sources' list"
            )
        return [self.build_source(child, resolver) for child in children]

    def _wrapped(self, definition: Mapping[str, Any], resolver: UsernameResolver) -> AttributeSource:
        wrapped = definition.get("source")
        if wrapped is None:
            raise ConfigError(f"Source '{definition.get('id') or definition.get('type')}' requires a 'source' definition")
        return self.build_source(wrapped, resolver)

    def _merger(self, definition: Mapping[str, Any]) -> BaseAdditiveAttributeMerger | None:
        raw = definition.get("merger")
        if raw is None:
            return None
        if isinstance(raw, str):
            return merger_by_name(raw)
        if isinstance(raw, Mapping):
            options = dict(raw)
            name = options.pop("name", None)
            if name is None:
                raise ConfigError("Merger definition requires 'name'")
            return merger_by_name(name, **options)
        raise ConfigError(f"Invalid merger definition: {raw!r}")

    def _mapper(self, definition: Mapping[str, Any], resolver: UsernameResolver) -> AttributeNameMapper:
        options = {key: definition[key] for key in _MAPPER_KEYS if key in definition}
        for key in ("case_insensitive_query_attributes", "case_insensitive_result_attributes"):
            if key in options:
                options[key] = parse_mode_map(options[key])
        for key in ("default_case_canonicalization_mode", "username_case_canonicalization_mode"):
            if key not in options:
                continue
            if options[key] is None:
                raise ConfigError(f"'{key}' must name a mode (none, upper, lower)")
            options[key] = CaseCanonicalizationMode.parse(options[key])
        return AttributeNameMapper(username_resolver=resolver, **options)

    def _aggregate_options(self, definition: Mapping[str, Any]) -> dict[str, Any]:
        return {
            "merger": self._merger(definition),
            "recover_exceptions": bool(definition.get("recover_exceptions", self.recover_exceptions)),
            "stop_on_success": bool(definition.get("stop_on_success", self.stop_on_success)),
        }

    def _build_merging(self, definition, resolver):
        return MergingResolver(
            self._children(definition, resolver),
            **self._aggregate_options(definition),
            **self._common(definition, resolver),
        )

    def _build_cascading(self, definition, resolver):
        return CascadingResolver(
            self._children(definition, resolver),
            stop_if_first_source_returns_null=bool(definition.get("stop_if_first_source_returns_null", False)),
            **self._aggregate_options(definition),
            **self._common(definition, resolver),
        )

    def _build_caching(self, definition, resolver):
        store_kind = str(definition.get("store", "memory")).strip().lower()
        if store_kind == "memory":
            store: CacheStore = InMemoryCacheStore()
        elif store_kind == "sqlite":
            if self.cache_store_factory is None:
                raise ConfigError("store=sqlite requires a cache directory")
            store = self.cache_store_factory(str(definition.get("id") or "default"))
        else:
            raise ConfigError(f"Unknown cache store: {store_kind}", details={"known": ["memory", "sqlite"]})

        key_generator = AttributeBasedCacheKeyGenerator(
            cache_key_attributes=definition.get("cache_key_attributes") or [resolver.username_attribute],
            use_all_attributes=bool(definition.get("use_all_attributes", False)),
            ignore_empty_attributes=bool(definition.get("ignore_empty_attributes", False)),
        )
        return CachingAttributeSource(
            self._wrapped(definition, resolver),
            store,
            key_generator=key_generator,
            cache_null_results=bool(definition.get("cache_null_results", self.cache_null_results)),
            **self._common(definition, resolver),
        )

    def _build_stub(self, definition, resolver):
        return StubAttributeSource(definition.get("backing_map"), **self._common(definition, resolver))

    def _build_complex_stub(self, definition, resolver):
        return ComplexStubAttributeSource(
            definition.get("backing_map"),
            query_attribute_name=definition.get("query_attribute"),
            mapper=self._mapper(definition, resolver),
            **self._common(definition, resolver),
        )

    def _build_json(self, definition, resolver):
        raw_path = definition.get("path")
        if not raw_path:
            raise ConfigError("Source type 'json' requires 'path'")
        path = Path(raw_path)
        if not path.is_absolute():
            path = self.base_dir / path
        return JsonBackedComplexStubAttributeSource(
            path,
            query_attribute_name=definition.get("query_attribute"),
            mapper=self._mapper(definition, resolver),
            **self._common(definition, resolver),
        )

    def _build_echo(self, definition, resolver):
        return EchoAttributeSource(**self._common(definition, resolver))

    def _build_regex(self, definition, resolver):
        patterns = definition.get("patterns")
        if not isinstance(patterns, Mapping):
            raise ConfigError("Source type 'regex' requires a 'patterns' mapping")
        return RegexGatewayAttributeSource(
            self._wrapped(definition, resolver),
            patterns,
            match_all_patterns=bool(definition.get("match_all_patterns", False)),
            match_all_values=bool(definition.get("match_all_values", False)),
            **self._common(definition, resolver),
        )

    def _build_rest(self, definition, resolver):
        url = definition.get("url")
        if not url:
            raise ConfigError("Source type 'rest' requires 'url'")
        username_mode = definition.get("username_case_canonicalization_mode")
        return RestAttributeSource(
            url,
            method=definition.get("method", "GET"),
            principal_id=definition.get("principal_id", "username"),
            parameters=definition.get("parameters"),
            headers=definition.get("headers"),
            basic_auth_username=definition.get("basic_auth_username"),
            basic_auth_password=definition.get("basic_auth_password"),
            timeout_seconds=float(definition.get("timeout_seconds", self.rest_timeout_seconds)),
            retries=int(definition.get("retries", 0)),
            retry_backoff_seconds=float(definition.get("retry_backoff_seconds", 0.5)),
            username_case_canonicalization_mode=CaseCanonicalizationMode.parse(username_mode) or CaseCanonicalizationMode.NONE,
            transport=self.rest_transport,
            **self._common(definition, resolver),
        )

    def _build_additional(self, definition, resolver):
        raw = definition.get("descriptors") or {}
        if not isinstance(raw, Mapping):
            raise ConfigError("Source type 'additional' requires a 'descriptors' mapping")
        descriptors = AdditionalDescriptors(raw.get("name"), to_multivalued(raw.get("attributes") or {}))
        username_mode = definition.get("username_case_canonicalization_mode")
        return AdditionalDescriptorsAttributeSource(
            descriptors,
            username_case_canonicalization_mode=CaseCanonicalizationMode.parse(username_mode) or CaseCanonicalizationMode.NONE,
            possible_user_attribute_names=definition.get("possible_user_attribute_names"),
            **self._common(definition, resolver),
        )


__all__ = ["SourceFactory", "load_source_document"]
