from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any

from persondir.errors import ConfigError
from persondir.infra.sources.static import ComplexStubAttributeSource


class JsonBackedComplexStubAttributeSource(ComplexStubAttributeSource):
    """
    Назначение:
        ComplexStub, карта которого читается из JSON-файла вида
        {"<uid>": {"<attr>": value | [values]}}.

    Ошибки/исключения:
        ConfigError: файл не найден, не JSON или не той структуры.
    """

    component = "source.json"

    def __init__(self, path: str | Path, **kwargs: Any):
        self.path = Path(path)
        self._reload_lock = threading.Lock()
        super().__init__(None, **kwargs)
        self.reload()

    def reload(self) -> None:
        self._log(logging.INFO, f"loading person attributes from {self.path}")
        backing_map = _read_backing_map(self.path)
        with self._reload_lock:
            self.set_backing_map(backing_map)
        self._log(logging.DEBUG, f"loaded {len(backing_map)} entries")


def _read_backing_map(path: Path) -> dict[str, dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise ConfigError(f"Attributes file not found: {path}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"Attributes file is not valid JSON: {path}", details={"error": str(exc)}) from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Attributes file must contain a JSON object: {path}")
    for uid, attributes in data.items():
        if not isinstance(attributes, dict):
            raise ConfigError(
                f"The structure of the attributes file is not correct: entry '{uid}' is not an object",
                details={"path": str(path)},
            )
    return data


__all__ = ["JsonBackedComplexStubAttributeSource"]
