from __future__ import annotations

from typing import Mapping, Sequence

from persondir.domain.models import WILDCARD
from persondir.errors import InvalidArgumentError

DEFAULT_USERNAME_ATTRIBUTE = "username"


class UsernameResolver:
    """
    Назначение:
        Определяет атрибут, содержащий username, и извлекает username из query.
    """

    def __init__(self, username_attribute: str = DEFAULT_USERNAME_ATTRIBUTE):
        if username_attribute is None:
            raise InvalidArgumentError("username_attribute can not be None")
        self._username_attribute = username_attribute

    @property
    def username_attribute(self) -> str:
        return self._username_attribute

    def username_from_query(self, query: Mapping[str, Sequence] | None) -> str | None:
        """
        Назначение:
            Извлечь конкретный username из query.

        Алгоритм:
            - значения настроенного атрибута, иначе атрибута по умолчанию;
            - первое значение, str() и trim;
            - пустое значение или содержащее '*' -> None (wildcard-запрос
              означает поиск многих, а не конкретного пользователя).
        """
        if not query:
            return None
        values = query.get(self._username_attribute)
        if values is None and self._username_attribute != DEFAULT_USERNAME_ATTRIBUTE:
            values = query.get(DEFAULT_USERNAME_ATTRIBUTE)
        if not values:
            return None
        first = values[0] if not isinstance(values, str) else values
        if first is None:
            return None
        username = str(first).strip()
        if not username or WILDCARD in username:
            return None
        return username

    def to_seed(self, uid: str) -> dict[str, list]:
        if uid is None:
            raise InvalidArgumentError("uid may not be None")
        return {self._username_attribute: [uid]}

    def __repr__(self) -> str:
        return f"UsernameResolver(username_attribute={self._username_attribute!r})"


__all__ = ["DEFAULT_USERNAME_ATTRIBUTE", "UsernameResolver"]
