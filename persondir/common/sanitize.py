from __future__ import annotations

from typing import Any

MASK = "***"

SENSITIVE_KEYS: tuple[str, ...] = (
    "password",
    "basic_auth_password",
    "token",
    "authorization",
    "secret",
)


def maskSecret(value: Any) -> str | None:
    """
    Назначение:
        Заменяет секрет маской для вывода в stdout/логи.
        None остаётся None, чтобы было видно, что значение не задано.
    """
    if value is None:
        return None
    return MASK


def _isSensitive(key: Any, sensitive: set[str]) -> bool:
    name = str(key).lower()
    return name in sensitive or any(name.endswith("_" + s) for s in sensitive)


def maskSecretsInObject(obj: Any, sensitive_keys: tuple[str, ...] = SENSITIVE_KEYS) -> Any:
    """
    Назначение:
        Рекурсивно маскирует значения секретных ключей в описании источников
        (basic_auth_password, заголовки Authorization и т.п.) перед печатью.

    Входные данные:
        obj: dict/list/примитив
        sensitive_keys: имена ключей без учёта регистра; ключ вида
            "<prefix>_<имя>" тоже считается секретным.

    Выходные данные:
        Новая структура; исходная не изменяется.
    """
    sensitive = {key.lower() for key in sensitive_keys}
    if isinstance(obj, dict):
        return {
            k: maskSecret(v) if _isSensitive(k, sensitive) else maskSecretsInObject(v, sensitive_keys)
            for k, v in obj.items()
        }
    if isinstance(obj, (list, tuple)):
        return [maskSecretsInObject(item, sensitive_keys) for item in obj]
    return obj


__all__ = ["MASK", "SENSITIVE_KEYS", "maskSecret", "maskSecretsInObject"]
