from __future__ import annotations

from typing import Any, Protocol


class CacheStore(Protocol):
    """
    Назначение/ответственность:
        Внешнее key-value хранилище для кэширующего декоратора.
    Ограничения:
        - Требуются только get/put/remove; вытеснение и перечисление ключей
          остаются заботой хранилища.
        - Согласованность при конкурентном доступе обеспечивает хранилище.
    """

    def get(self, key: str) -> Any | None:
        """Вернуть значение или None, если ключ отсутствует."""
        ...

    def put(self, key: str, value: Any) -> None: ...

    def remove(self, key: str) -> None: ...


__all__ = ["CacheStore"]
