from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import yaml

ENV_PREFIX = "PERSONDIR_"


@dataclass(frozen=True)
class Settings:
    # Resolution
    username_attribute: str = "username"
    sources_file: str | None = None
    recover_exceptions: bool = True
    stop_on_success: bool = False

    # Cache
    cache_dir: str = "./cache"
    cache_null_results: bool = False

    # Logging
    log_dir: str = "./logs"
    log_level: str = "INFO"

    # REST sources
    rest_timeout_seconds: float = 20.0


@dataclass(frozen=True)
class LoadedSettings:
    settings: Settings
    sources_used: list[str]


def _read_yaml_config(path: Path) -> dict:
    if not path.exists():
        return {}
    if not path.is_file():
        return {}
    with path.open("r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            return {}
        return data


def _env_get(name: str) -> str | None:
    v = os.getenv(ENV_PREFIX + name)
    if v is None or v.strip() == "":
        return None
    return v.strip()


def parse_bool(v: str | bool | None) -> bool | None:
    if v is None or isinstance(v, bool):
        return v
    vv = str(v).strip().lower()
    if vv in ("1", "true", "yes", "y"):
        return True
    if vv in ("0", "false", "no", "n"):
        return False
    raise ValueError(f"Invalid boolean value: {v}")


def parse_float(v: str | float | None) -> float | None:
    if v is None:
        return None
    return float(v)


_FIELDS: dict[str, object] = {
    "username_attribute": str,
    "sources_file": str,
    "recover_exceptions": parse_bool,
    "stop_on_success": parse_bool,
    "cache_dir": str,
    "cache_null_results": parse_bool,
    "log_dir": str,
    "log_level": str,
    "rest_timeout_seconds": parse_float,
}


def load_settings(
    config_path: str | None,
    cli_overrides: dict,
) -> LoadedSettings:
    """
    Назначение:
        Собрать Settings из нескольких источников.

    Алгоритм:
        Priority: CLI > ENV (PERSONDIR_*) > config (YAML) > defaults.
        sources_used перечисляет реально задействованные источники.

    Ошибки/исключения:
        ValueError: некорректное булево/числовое значение.
    """
    sources: list[str] = []
    defaults = Settings()

    # 1) config file
    cfg: dict = {}
    if config_path:
        cfg = _read_yaml_config(Path(config_path))
        if cfg:
            sources.append("config")

    # 2) env
    env = {name: _env_get(name.upper()) for name in _FIELDS}
    if any(v is not None for v in env.values()):
        sources.append("env")

    merged: dict[str, object] = {}
    for name, parse in _FIELDS.items():
        value = cfg.get(name, getattr(defaults, name))
        if env[name] is not None:
            value = env[name]
        merged[name] = parse(value) if value is not None else None

    # 3) apply CLI overrides (only those explicitly passed)
    if any(v is not None for v in cli_overrides.values()):
        sources.append("cli")

    for k, v in cli_overrides.items():
        if v is None:
            continue
        merged[k] = v

    settings = Settings(
        username_attribute=merged["username_attribute"] or defaults.username_attribute,
        sources_file=merged["sources_file"],
        recover_exceptions=bool(merged["recover_exceptions"]),
        stop_on_success=bool(merged["stop_on_success"]),
        cache_dir=merged["cache_dir"] or defaults.cache_dir,
        cache_null_results=bool(merged["cache_null_results"]),
        log_dir=merged["log_dir"] or defaults.log_dir,
        log_level=merged["log_level"] or defaults.log_level,
        rest_timeout_seconds=merged["rest_timeout_seconds"] or defaults.rest_timeout_seconds,
    )

    return LoadedSettings(settings=settings, sources_used=sources)


__all__ = ["Settings", "LoadedSettings", "load_settings", "parse_bool", "parse_float", "ENV_PREFIX"]
