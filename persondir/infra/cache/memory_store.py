from __future__ import annotations

import threading
from typing import Any


class InMemoryCacheStore:
    """
    Назначение:
        Потокобезопасное key-value хранилище в памяти процесса для
        CachingAttributeSource. Вытеснения нет.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: dict[str, Any] = {}

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._entries.get(key)

    def put(self, key: str, value: Any) -> None:
        with self._lock:
            self._entries[key] = value

    def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


__all__ = ["InMemoryCacheStore"]
