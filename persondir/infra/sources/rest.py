from __future__ import annotations

import logging
import time
from typing import Any, Mapping, Sequence

import httpx

from persondir.domain.case import DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE, CaseCanonicalizationMode
from persondir.domain.models import Person, to_multivalued
from persondir.domain.ports.sources import SourceFilter
from persondir.domain.resolution.base import BaseAttributeSource
from persondir.errors import InvalidArgumentError, SourceError


class RestAttributeSource(BaseAttributeSource):
    """
    Назначение/ответственность:
        Источник атрибутов поверх HTTP: username передаётся query-параметром
        principal_id, JSON-объект ответа становится атрибутами Person.

    Входные данные:
        url: адрес endpoint
        method: GET|POST
        principal_id: имя query-параметра с username
        parameters / headers: дополнительные параметры и заголовки
        basic_auth_username / basic_auth_password: basic auth (оба непустые)
        timeout_seconds, retries, retry_backoff_seconds: сетевые настройки
        transport: httpx transport (для тестов - httpx.MockTransport)

    Контракт (вход/выход):
        - username не найден в query -> None (запрос выполнить нельзя);
        - 404 -> пустое множество (нет совпадений);
        - 200 + JSON-объект -> {Person(username, атрибуты)}.

    Ошибки/исключения:
        SourceError: сетевая ошибка, неожиданный HTTP-статус, не-JSON ответ.
        Агрегирующие резолверы считают её восстанавливаемой.
    """

    component = "source.rest"

    def __init__(
        self,
        url: str,
        *,
        method: str = "GET",
        principal_id: str = "username",
        parameters: Mapping[str, str] | None = None,
        headers: Mapping[str, str] | None = None,
        basic_auth_username: str | None = None,
        basic_auth_password: str | None = None,
        timeout_seconds: float = 20.0,
        retries: int = 0,
        retry_backoff_seconds: float = 0.5,
        username_case_canonicalization_mode: CaseCanonicalizationMode = DEFAULT_USERNAME_CASE_CANONICALIZATION_MODE,
        transport: httpx.BaseTransport | None = None,
        **kwargs: Any,
    ):
        if not url:
            raise InvalidArgumentError("url may not be empty")
        method = (method or "GET").upper()
        if method not in ("GET", "POST"):
            raise InvalidArgumentError(f"Unsupported HTTP method: {method}")
        super().__init__(**kwargs)
        self.url = url
        self.method = method
        self.principal_id = principal_id
        self.parameters = dict(parameters or {})
        self.headers = dict(headers or {})
        self.retries = retries
        self.retry_backoff_seconds = retry_backoff_seconds
        self.retry_attempts = 0
        self.username_case_canonicalization_mode = username_case_canonicalization_mode

        auth = None
        if basic_auth_username and basic_auth_password:
            auth = httpx.BasicAuth(basic_auth_username, basic_auth_password)

        self.client = httpx.Client(timeout=timeout_seconds, auth=auth, transport=transport)

    def close(self) -> None:
        self.client.close()

    def resolve_many(self, query: Mapping[str, Sequence[Any]], filter: SourceFilter | None = None) -> set[Person] | None:
        if query is None:
            raise InvalidArgumentError("query may not be None")
        if not self.enabled:
            return None

        username = self.username_resolver.username_from_query(query)
        if username is None:
            self._log(logging.DEBUG, "no username in query, returning None")
            return None

        response = self._request_with_retry(username)
        if response.status_code == 404:
            return set()

        try:
            data = response.json()
        except ValueError as exc:
            raise SourceError(
                "Invalid JSON response",
                source_id=self.source_id,
                details={"status_code": response.status_code},
            ) from exc
        if not isinstance(data, dict):
            raise SourceError(
                f"Expected a JSON object, got {type(data).__name__}",
                source_id=self.source_id,
            )

        name = self.username_case_canonicalization_mode.canonicalize(username)
        return {Person(name, to_multivalued(data))}

    def possible_result_attribute_names(self, filter: SourceFilter | None = None) -> set[str] | None:
        return set()

    def available_query_attributes(self, filter: SourceFilter | None = None) -> set[str] | None:
        return set()

    def _should_retry(self, resp: httpx.Response) -> bool:
        return resp.status_code == 429 or 500 <= resp.status_code <= 599

    def _sleep_backoff(self, attempt: int) -> None:
        time.sleep(self.retry_backoff_seconds * (2 ** attempt))

    def _request_with_retry(self, username: str) -> httpx.Response:
        """Запрос с ретраями по 429/5xx и сетевым ошибкам; 200/404 возвращаются, иначе SourceError."""
        params = {self.principal_id: username}
        params.update(self.parameters)

        attempt = 0
        while True:
            try:
                if self.method == "GET":
                    resp = self.client.get(self.url, params=params, headers=self.headers)
                else:
                    resp = self.client.post(self.url, params=params, headers=self.headers, content=b"")
            except (httpx.TimeoutException, httpx.TransportError) as exc:
                if attempt >= self.retries:
                    raise SourceError(
                        "Network error",
                        source_id=self.source_id,
                        retryable=True,
                        details={"url": self.url},
                    ) from exc
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            if resp.status_code in (200, 404):
                return resp

            if self._should_retry(resp) and attempt < self.retries:
                self.retry_attempts += 1
                self._sleep_backoff(attempt)
                attempt += 1
                continue

            body_snippet = resp.text[:200] if resp.text else None
            raise SourceError(
                f"HTTP {resp.status_code}",
                source_id=self.source_id,
                retryable=self._should_retry(resp),
                details={"status_code": resp.status_code, "body_snippet": body_snippet},
            )


__all__ = ["RestAttributeSource"]
