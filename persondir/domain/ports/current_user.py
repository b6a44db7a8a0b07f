from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


class CurrentUserProvider(Protocol):
    """
    Назначение:
        Порт, сообщающий имя текущего пользователя запроса (например, из сессии).
    Ограничения:
        Передаётся в источник явно; глобального состояния нет.
    """

    def current_username(self) -> str | None: ...


@dataclass(frozen=True)
class CurrentUserContext:
    """
    Назначение:
        Значение "текущий пользователь" уровня запроса.
    """

    username: str | None

    def current_username(self) -> str | None:
        return self.username


__all__ = ["CurrentUserProvider", "CurrentUserContext"]
