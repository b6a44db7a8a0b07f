from __future__ import annotations

import json
import logging
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any, Callable

import typer

from persondir.common.run_id import generate_run_id
from persondir.common.sanitize import maskSecretsInObject
from persondir.config import Settings, load_settings
from persondir.domain.ports.sources import AttributeSource
from persondir.errors import (
    AmbiguousResultError,
    AppError,
    ConfigError,
    InvalidArgumentError,
    InvalidMappingError,
    NotConfiguredError,
)
from persondir.infra.cache.sqlite_store import SqliteCacheStore
from persondir.infra.factory import SourceFactory, load_source_document
from persondir.loggingSetup import StdStreamToLogger, TeeStream, closeCommandLogger, createCommandLogger, logEvent
from persondir.usecases.resolve_usecase import ResolveUseCase, parse_query_pairs

app = typer.Typer(no_args_is_help=True, add_completion=False)
cacheApp = typer.Typer(no_args_is_help=True)

EXIT_OK = 0
EXIT_NOT_FOUND = 1
EXIT_CONFIG = 2
EXIT_AMBIGUOUS = 3
EXIT_SOURCE = 4

_CONFIG_ERRORS = (ConfigError, InvalidMappingError, NotConfiguredError, InvalidArgumentError)


def ensureDir(path: str) -> None:
    Path(path).mkdir(parents=True, exist_ok=True)


def echoJson(payload: Any) -> None:
    typer.echo(json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True, default=str))


def exitCodeForError(exc: AppError) -> int:
    """
    Назначение:
        Сопоставление ошибки библиотеки с кодом выхода CLI.

    Выходные данные:
        2 - конфигурация/аргументы, 3 - неоднозначный результат,
        4 - непоглощённый сбой источника (и прочие AppError).
    """
    if isinstance(exc, AmbiguousResultError):
        return EXIT_AMBIGUOUS
    if isinstance(exc, _CONFIG_ERRORS):
        return EXIT_CONFIG
    return EXIT_SOURCE


def buildSourceGraph(settings: Settings, logger: logging.Logger, runId: str, opened: list) -> AttributeSource:
    """
    Назначение:
        Построить граф источников из settings.sources_file.

    Входные данные:
        opened: list
            Сюда складываются созданные SQLite-хранилища, чтобы команда закрыла их в finally.

    Ошибки/исключения:
        NotConfiguredError: sources_file не задан.
        ConfigError/InvalidMappingError: ошибки описания источников.
    """
    if not settings.sources_file:
        raise NotConfiguredError("sources_file is not set (use --sources-file or PERSONDIR_SOURCES_FILE)")

    document = load_source_document(settings.sources_file)

    def openStore(cacheId: str) -> SqliteCacheStore:
        store = SqliteCacheStore.in_dir(settings.cache_dir, namespace=cacheId)
        opened.append(store)
        return store

    factory = SourceFactory(
        username_attribute=settings.username_attribute,
        recover_exceptions=settings.recover_exceptions,
        stop_on_success=settings.stop_on_success,
        cache_null_results=settings.cache_null_results,
        rest_timeout_seconds=settings.rest_timeout_seconds,
        base_dir=Path(settings.sources_file).parent,
        cache_store_factory=openStore,
        logger=logger,
        run_id=runId,
    )
    return factory.build(document)


def runCommand(ctx: typer.Context, commandName: str, runner: Callable[[logging.Logger], int]) -> None:
    """
    Назначение:
        Унифицированная обвязка выполнения команд:
        - создаёт логгер команды и log-файл
        - перенаправляет stdout/stderr в лог (tee)
        - переводит AppError в код выхода

    Входные данные:
        ctx: typer.Context
        commandName: str
        runner: callable(logger) -> exit code

    Поведение:
        Код выхода != 0 завершает процесс через typer.Exit.
    """
    runId = ctx.obj["runId"]
    settings: Settings = ctx.obj["settings"]
    sources = ctx.obj["sources"]

    startMonotonic = time.monotonic()

    logger, logFilePath = createCommandLogger(
        commandName=commandName,
        logDir=settings.log_dir,
        runId=runId,
        logLevel=settings.log_level,
    )

    originalStdout = sys.stdout
    originalStderr = sys.stderr

    stdoutLoggerStream = StdStreamToLogger(logger, logging.INFO, runId, "stdout")
    stderrLoggerStream = StdStreamToLogger(logger, logging.ERROR, runId, "stderr")

    sys.stdout = TeeStream(originalStdout, stdoutLoggerStream)
    sys.stderr = TeeStream(originalStderr, stderrLoggerStream)

    exitCode = EXIT_OK

    try:
        logEvent(
            logger,
            logging.INFO,
            runId,
            "core",
            f"Command started command={commandName} sources={sources} "
            f"sources_file={settings.sources_file} log_level={settings.log_level}",
        )
        try:
            exitCode = runner(logger)
        except AppError as exc:
            exitCode = exitCodeForError(exc)
            logEvent(logger, logging.ERROR, runId, "core", f"{exc.code}: {exc.message} details={exc.details}")
            typer.echo(f"ERROR: {exc.message} (see {logFilePath})", err=True)
    finally:
        durationMs = int((time.monotonic() - startMonotonic) * 1000)
        logEvent(logger, logging.INFO, runId, "core", f"Command finished exit_code={exitCode} duration_ms={durationMs}")

        sys.stdout = originalStdout
        sys.stderr = originalStderr
        closeCommandLogger()

    if exitCode != EXIT_OK:
        raise typer.Exit(code=exitCode)


def runResolveCommand(ctx: typer.Context, uid: str | None, queryPairs: list[str], flat: bool) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger) -> int:
        if (uid is None) == (not queryPairs):
            raise InvalidArgumentError("Use exactly one of --uid or --query")
        query = parse_query_pairs(queryPairs) if queryPairs else None

        opened: list[SqliteCacheStore] = []
        try:
            source = buildSourceGraph(settings, logger, runId, opened)
            result = ResolveUseCase(source, logger, runId).resolve(uid=uid, query=query, flat=flat)
        finally:
            for store in opened:
                store.close()

        echoJson(result.to_dict())
        return EXIT_OK if result.found else EXIT_NOT_FOUND

    runCommand(ctx, "resolve", execute)


def runAttributesCommand(ctx: typer.Context) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger) -> int:
        opened: list[SqliteCacheStore] = []
        try:
            source = buildSourceGraph(settings, logger, runId, opened)
            payload = ResolveUseCase(source, logger, runId).attributes()
        finally:
            for store in opened:
                store.close()
        echoJson(payload)
        return EXIT_OK

    runCommand(ctx, "attributes", execute)


def runCheckConfigCommand(ctx: typer.Context) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger) -> int:
        payload: dict[str, Any] = {
            "run_id": runId,
            "config_path": ctx.obj["configPath"],
            "config_sources": ctx.obj["sources"],
            "settings": asdict(settings),
            "sources_document": None,
        }
        if settings.sources_file:
            document = load_source_document(settings.sources_file)
            opened: list[SqliteCacheStore] = []
            try:
                buildSourceGraph(settings, logger, runId, opened)
            finally:
                for store in opened:
                    store.close()
            payload["sources_document"] = maskSecretsInObject(document)
        echoJson(payload)
        return EXIT_OK

    runCommand(ctx, "check-config", execute)


def runCacheStatusCommand(ctx: typer.Context) -> None:
    settings: Settings = ctx.obj["settings"]

    def execute(logger: logging.Logger) -> int:
        store = SqliteCacheStore.in_dir(settings.cache_dir)
        try:
            echoJson(store.status())
        finally:
            store.close()
        return EXIT_OK

    runCommand(ctx, "cache-status", execute)


def runCacheClearCommand(ctx: typer.Context) -> None:
    settings: Settings = ctx.obj["settings"]
    runId = ctx.obj["runId"]

    def execute(logger: logging.Logger) -> int:
        store = SqliteCacheStore.in_dir(settings.cache_dir)
        try:
            removed = store.clear()
        finally:
            store.close()
        logEvent(logger, logging.INFO, runId, "cache", f"Cache cleared removed={removed}")
        echoJson({"removed": removed})
        return EXIT_OK

    runCommand(ctx, "cache-clear", execute)


@app.callback()
def main(
    ctx: typer.Context,
    config: str | None = typer.Option(None, "--config", help="Path to config.yml"),
    runId: str | None = typer.Option(None, "--run-id", help="Run identifier. If omitted, generated."),
    logLevel: str | None = typer.Option(None, "--log-level", help="Log level: ERROR|WARN|INFO|DEBUG"),
    logDir: str | None = typer.Option(None, "--log-dir", help="Directory for logs."),
    cacheDir: str | None = typer.Option(None, "--cache-dir", help="Directory for the SQLite cache."),
    sourcesFile: str | None = typer.Option(None, "--sources-file", help="YAML file describing the source graph"),
    usernameAttribute: str | None = typer.Option(None, "--username-attribute", help="Attribute that carries the username"),
    recoverExceptions: bool | None = typer.Option(
        None,
        "--recover-exceptions/--no-recover-exceptions",
        help="Skip failing child sources instead of aborting",
        show_default=True,
    ),
    stopOnSuccess: bool | None = typer.Option(
        None,
        "--stop-on-success/--no-stop-on-success",
        help="Stop at the first child source that answers without an error",
        show_default=True,
    ),
    cacheNullResults: bool | None = typer.Option(
        None,
        "--cache-null-results/--no-cache-null-results",
        help="Cache 'nothing found' answers",
        show_default=True,
    ),
    restTimeoutSeconds: float | None = typer.Option(None, "--rest-timeout-seconds", help="Default REST source timeout"),
):
    """
    Назначение:
        Глобальная инициализация CLI:
        - генерирует/принимает run_id
        - загружает настройки (CLI > ENV > config > defaults)
        - создаёт каталоги log/cache
        - сохраняет всё в ctx.obj для подкоманд
    """
    if not runId:
        runId = generate_run_id()

    cliOverrides = {
        "username_attribute": usernameAttribute,
        "sources_file": sourcesFile,
        "recover_exceptions": recoverExceptions,
        "stop_on_success": stopOnSuccess,
        "cache_dir": cacheDir,
        "cache_null_results": cacheNullResults,
        "log_dir": logDir,
        "log_level": logLevel,
        "rest_timeout_seconds": restTimeoutSeconds,
    }
    try:
        loaded = load_settings(config_path=config, cli_overrides=cliOverrides)
    except ValueError as exc:
        typer.echo(f"ERROR: invalid settings: {exc}", err=True)
        raise typer.Exit(code=EXIT_CONFIG)

    ensureDir(loaded.settings.log_dir)
    ensureDir(loaded.settings.cache_dir)

    ctx.obj = {
        "runId": runId,
        "settings": loaded.settings,
        "sources": loaded.sources_used,
        "configPath": config,
    }


@app.command()
def resolve(
    ctx: typer.Context,
    uid: str | None = typer.Option(None, "--uid", help="Resolve a single person by username"),
    query: list[str] | None = typer.Option(None, "--query", help="Query attribute as attr=value (repeatable)"),
    flat: bool = typer.Option(False, "--flat", help="Print the first value of each attribute only"),
):
    runResolveCommand(ctx, uid, query or [], flat)


@app.command()
def attributes(ctx: typer.Context):
    runAttributesCommand(ctx)


@app.command("check-config")
def checkConfig(ctx: typer.Context):
    runCheckConfigCommand(ctx)


@cacheApp.command("status")
def cacheStatus(ctx: typer.Context):
    runCacheStatusCommand(ctx)


@cacheApp.command("clear")
def cacheClear(ctx: typer.Context):
    runCacheClearCommand(ctx)


app.add_typer(cacheApp, name="cache")


__all__ = ["app", "exitCodeForError", "buildSourceGraph"]
