from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence

from persondir.domain.case import DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE, CaseCanonicalizationMode
from persondir.domain.models import AdditionalDescriptors, Person
from persondir.domain.ports.current_user import CurrentUserProvider
from persondir.domain.ports.sources import SourceFilter
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import InvalidArgumentError


class AdditionalDescriptorsAttributeSource(BaseAttributeSource):
    """
    Назначение/ответственность:
        Отдаёт атрибуты, добавленные вызывающей стороной (AdditionalDescriptors),
        если username запроса совпадает с владельцем дескрипторов.

    Алгоритм resolve_many:
        1) username из query; нет -> None;
        2) владелец: descriptors.name, иначе current_user (провайдер, заданный
           при создании); нет -> None с предупреждением;
        3) обе стороны нормализуются username_case_canonicalization_mode;
        4) совпадение -> {Person(владелец, атрибуты дескрипторов)}, иначе None.

    Ограничения:
        "Текущий пользователь" передаётся явно, глобального состояния нет.
    """

    component = "source.additional"

    def __init__(
        self,
        descriptors: AdditionalDescriptors,
        *,
        current_user: CurrentUserProvider | None = None,
        username_case_canonicalization_mode: CaseCanonicalizationMode = DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE,
        username_case_canonicalization_locale: str | None = None,
        possible_user_attribute_names: Iterable[str] | None = None,
        **kwargs: Any,
    ):
        if descriptors is None:
            raise InvalidArgumentError("Argument 'descriptors' cannot be None")
        super().__init__(**kwargs)
        self.descriptors = descriptors
        self.current_user = current_user
        self.username_case_canonicalization_mode = username_case_canonicalization_mode or DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE
        self.username_case_canonicalization_locale = username_case_canonicalization_locale
        self.possible_user_attribute_names = set(possible_user_attribute_names) if possible_user_attribute_names is not None else None

    def resolve_many(
        self,
        query: Mapping[str, Sequence[Any]],
        filter: SourceFilter | None = None,
    ) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        if not self.enabled:
            return None

        uid = self.username_resolver.username_from_query(query)
        if uid is None:
            self._log(logging.DEBUG, "no username attribute found in query, returning None")
            return None
        uid = self._canonicalize(uid)

        target_name = self.descriptors.name
        if target_name is None:
            if self.current_user is not None:
                target_name = self.current_user.current_username()
            if target_name is None:
                self._log(
                    logging.WARNING,
                    f"descriptors have no name and no current user is known, returning None: {self.descriptors!r}",
                )
                return None
        target_name = self._canonicalize(target_name)

        if uid != target_name:
            return None
        self._log(logging.DEBUG, f"adding additional descriptors for {target_name}")
        return {Person(target_name, self.descriptors.attributes)}

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        if self.possible_user_attribute_names is None:
            return None
        return set(self.possible_user_attribute_names)

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return {self.username_resolver.username_attribute}

    def _canonicalize(self, value: str) -> str:
        return self.username_case_canonicalization_mode.canonicalize(value, self.username_case_canonicalization_locale)


__all__ = ["AdditionalDescriptorsAttributeSource"]
