from __future__ import annotations

import logging
from pathlib import Path

ROOT_LOGGER_NAME = "persondir"

LOG_FORMAT = "%(asctime)s %(levelname)s runId=%(runId)s comp=%(component)s msg=%(message)s"
LOG_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S%z"

_LEVELS = {
    "ERROR": logging.ERROR,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


class EnsureFieldsFilter(logging.Filter):
    """
    Назначение:
        Дописывает в запись runId и component, если их не передали через extra.
        Доменные логгеры пишут без runId, команда CLI подставляет свой.
    """

    def __init__(self, runId: str | None, defaultComponent: str = "core"):
        super().__init__()
        self.runId = runId
        self.defaultComponent = defaultComponent

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "runId", None) is None:
            record.runId = self.runId
        if getattr(record, "component", None) is None:
            record.component = self.defaultComponent
        return True


class StdStreamToLogger:
    """
    Назначение:
        File-like объект: накапливает текст и пишет в логгер по одной записи
        на каждую непустую строку. Используется для stdout/stderr команды.
    """

    def __init__(self, logger: logging.Logger, level: int, runId: str, component: str):
        self.logger = logger
        self.level = level
        self.extra = {"runId": runId, "component": component}
        self._pending = ""

    def write(self, s: str) -> int:
        if not s:
            return 0
        self._pending += s
        *lines, self._pending = self._pending.split("\n")
        for line in lines:
            self._emit(line)
        return len(s)

    def flush(self) -> None:
        self._emit(self._pending)
        self._pending = ""

    def _emit(self, line: str) -> None:
        if line.strip():
            self.logger.log(self.level, line.rstrip(), extra=self.extra)


class TeeStream:
    """Пишет одновременно в исходный поток (консоль) и в StdStreamToLogger."""

    def __init__(self, primary, secondary):
        self.primary = primary
        self.secondary = secondary

    def write(self, s: str) -> int:
        written = self.primary.write(s)
        self.secondary.write(s)
        return written

    def flush(self) -> None:
        self.primary.flush()
        self.secondary.flush()


def mapLogLevel(levelName: str) -> int:
    """
    Назначение:
        Уровень из настроек (ERROR|WARN|INFO|DEBUG, без учёта регистра) -> logging level.

    Ошибки/исключения:
        ValueError: неизвестное имя уровня.
    """
    level = _LEVELS.get((levelName or "").strip().upper())
    if level is None:
        raise ValueError(f"Unsupported log level: {levelName}")
    return level


def getComponentLogger(component: str) -> logging.Logger:
    """
    Назначение:
        Логгер по умолчанию для доменных компонентов (persondir.<component>).
        Командный логгер CLI подключает к нему свой file handler.
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{component}")


def createCommandLogger(commandName: str, logDir: str, runId: str, logLevel: str) -> tuple[logging.Logger, str]:
    """
    Назначение:
        Подготовить логирование одной команды CLI.

    Алгоритм:
        - файл <logDir>/<commandName>_<runId>.log;
        - handler вешается на корневой логгер "persondir", поэтому записи
          всех доменных компонентов попадают в тот же файл;
        - прежние handler'ы корневого логгера снимаются (повторный запуск в одном процессе).

    Выходные данные:
        (логгер persondir.cli.<commandName>, путь к log-файлу)
    """
    level = mapLogLevel(logLevel)
    logPath = Path(logDir) / f"{commandName}_{runId}.log"
    logPath.parent.mkdir(parents=True, exist_ok=True)

    handler = logging.FileHandler(logPath, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    handler.addFilter(EnsureFieldsFilter(runId=runId))

    closeCommandLogger()
    rootLogger = logging.getLogger(ROOT_LOGGER_NAME)
    rootLogger.propagate = False
    rootLogger.setLevel(level)
    rootLogger.addHandler(handler)

    commandLogger = rootLogger.getChild(f"cli.{commandName}")
    commandLogger.setLevel(level)
    return commandLogger, str(logPath)


def closeCommandLogger() -> None:
    """Снимает и закрывает handler'ы, подключённые createCommandLogger."""
    rootLogger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(rootLogger.handlers):
        rootLogger.removeHandler(handler)
        handler.close()
    rootLogger.propagate = True


def logEvent(
    logger: logging.Logger,
    level: int,
    runId: str | None,
    component: str,
    message: str,
    exc_info: BaseException | bool | None = None,
) -> None:
    """
    Назначение:
        Единая точка записи событий: runId и component всегда передаются через extra.
    """
    logger.log(level, message, exc_info=exc_info, extra={"runId": runId, "component": component})


__all__ = [
    "EnsureFieldsFilter",
    "StdStreamToLogger",
    "TeeStream",
    "closeCommandLogger",
    "createCommandLogger",
    "getComponentLogger",
    "logEvent",
    "mapLogLevel",
]
