from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass(eq=False)
class AppError(Exception):
    """
    Унифицированная ошибка библиотеки.
    """

    category: str
    code: str
    message: str
    retryable: bool = False
    details: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "details": self.details or {},
        }


class NotConfiguredError(AppError):
    """
    Назначение:
        Обязательная конфигурация (список источников, кэш, merger) отсутствует
        в момент вызова. Всегда пробрасывается.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(category="config", code="NOT_CONFIGURED", message=message, details=details or {})


class InvalidArgumentError(AppError, ValueError):
    """
    Назначение:
        None там, где требуется значение (query, имя атрибута и т.п.).
        Не подпадает под recover_exceptions.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(category="argument", code="INVALID_ARGUMENT", message=message, details=details or {})


class InvalidMappingError(AppError):
    """
    Назначение:
        Некорректная конфигурация маппинга имён атрибутов (пустой ключ, неверный тип).
        Возникает на этапе конфигурирования, не во время запроса.
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(category="config", code="INVALID_MAPPING", message=message, details=details or {})


class AmbiguousResultError(AppError):
    """
    Назначение:
        Запрос одной identity вернул больше одного совпадения.
    Инварианты:
        - Никогда не поглощается агрегаторами.
    """

    def __init__(self, count: int, message: str | None = None):
        super().__init__(
            category="data",
            code="AMBIGUOUS_RESULT",
            message=message or f"Expected at most one person, found {count}",
            details={"count": count},
        )
        self.count = count


class SourceError(AppError):
    """
    Назначение:
        Ошибка выполнения конкретного источника атрибутов (транспорт, формат ответа).
        Агрегаторы обрабатывают её по флагу recover_exceptions.
    """

    def __init__(
        self,
        message: str,
        source_id: str | None = None,
        retryable: bool = False,
        details: dict | None = None,
    ):
        merged = dict(details or {})
        if source_id is not None:
            merged["source_id"] = source_id
        super().__init__(category="source", code="SOURCE_ERROR", message=message, retryable=retryable, details=merged)
        self.source_id = source_id


class ConfigError(AppError):
    """
    Назначение:
        Ошибка описания графа источников (неизвестный тип, отсутствующие поля).
    """

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(category="config", code="CONFIG_ERROR", message=message, details=details or {})


# Ошибки, которые агрегатор не поглощает даже при recover_exceptions=True.
NON_RECOVERABLE_ERRORS: tuple[type[Exception], ...] = (
    NotConfiguredError,
    InvalidArgumentError,
    InvalidMappingError,
    AmbiguousResultError,
)


__all__ = [
    "AppError",
    "NotConfiguredError",
    "InvalidArgumentError",
    "InvalidMappingError",
    "AmbiguousResultError",
    "SourceError",
    "ConfigError",
    "NON_RECOVERABLE_ERRORS",
]
