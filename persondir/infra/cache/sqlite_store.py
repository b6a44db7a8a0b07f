from __future__ import annotations

import json
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator

from persondir.domain.caching.caching_source import NULL_RESULTS_MARKER
from persondir.domain.models import Person

SCHEMA_VERSION = 1


def getCacheDbPath(cacheDir: str) -> str:
    """
    Возвращает путь к файлу кэша атрибутов в указанном каталоге.
    """
    return str(Path(cacheDir) / "persondir_cache.sqlite3")


def openCacheDb(dbPath: str) -> sqlite3.Connection:
    """
    Открывает/создаёт SQLite БД с нужными PRAGMA/timeout.
    Транзакции управляются явно (BEGIN/COMMIT).
    """
    Path(dbPath).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(dbPath, timeout=5.0, isolation_level=None, check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode = WAL")
    conn.execute("PRAGMA synchronous = NORMAL")
    conn.execute("PRAGMA busy_timeout = 5000")
    return conn


def encode_value(value: Any) -> str:
    """
    Назначение:
        Сериализация закэшированного значения в JSON.

    Контракт (вход/выход):
        - NULL_RESULTS_MARKER -> {"kind": "null"}
        - Person -> {"kind": "person", ...}
        - множество Person -> {"kind": "people", "items": [...]}

    Ошибки/исключения:
        TypeError: значение атрибута не представимо в JSON (bytes, datetime и т.п.);
        CachingAttributeSource в этом случае не кэширует результат.
    """
    if value is NULL_RESULTS_MARKER:
        payload: dict[str, Any] = {"kind": "null"}
    elif isinstance(value, Person):
        payload = {"kind": "person", **_person_to_dict(value)}
    elif isinstance(value, (set, frozenset, list, tuple)):
        payload = {"kind": "people", "items": [_person_to_dict(person) for person in value]}
    else:
        raise TypeError(f"Unsupported cache value type: {type(value).__name__}")
    return json.dumps(payload, ensure_ascii=False)


def decode_value(raw: str) -> Any:
    payload = json.loads(raw)
    kind = payload.get("kind")
    if kind == "null":
        return NULL_RESULTS_MARKER
    if kind == "person":
        return _person_from_dict(payload)
    if kind == "people":
        return {_person_from_dict(item) for item in payload.get("items", [])}
    raise ValueError(f"Unknown cache entry kind: {kind}")


def _person_to_dict(person: Person) -> dict[str, Any]:
    return {"name": person.name, "attributes": person.mutable_attributes()}


def _person_from_dict(data: dict[str, Any]) -> Person:
    return Person(data.get("name"), data.get("attributes") or {})


class SqliteCacheStore:
    """
    Назначение/ответственность:
        CacheStore поверх SQLite-файла в cache_dir: переживает перезапуск процесса,
        используется командами CLI (resolve, cache status/clear).

    Ограничения:
        - namespace разделяет записи разных caching-узлов в одном файле.
        - Одно соединение на хранилище, операции сериализуются блокировкой.
        - Значения хранятся JSON-ом (см. encode_value): поддерживаются только
          JSON-представимые значения атрибутов.
    """

    def __init__(self, dbPath: str, namespace: str = "default"):
        self.dbPath = dbPath
        self.namespace = namespace
        self._lock = threading.Lock()
        self.conn = openCacheDb(dbPath)
        with self._lock, self._transaction():
            self._ensure_schema()

    @classmethod
    def in_dir(cls, cacheDir: str, namespace: str = "default") -> "SqliteCacheStore":
        return cls(getCacheDbPath(cacheDir), namespace)

    def get(self, key: str) -> Any | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT value FROM cache_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        if row is None:
            return None
        return decode_value(row["value"])

    def put(self, key: str, value: Any) -> None:
        encoded = encode_value(value)
        now = datetime.now(timezone.utc).isoformat()
        with self._lock, self._transaction():
            self.conn.execute(
                """
                INSERT INTO cache_entries(namespace, key, value, updated_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(namespace, key) DO UPDATE SET value=excluded.value, updated_at=excluded.updated_at
                """,
                (self.namespace, key, encoded, now),
            )

    def remove(self, key: str) -> None:
        with self._lock, self._transaction():
            self.conn.execute("DELETE FROM cache_entries WHERE namespace = ? AND key = ?", (self.namespace, key))

    def clear(self) -> int:
        """Удаляет записи всех namespace в файле (команда `cache clear`)."""
        with self._lock, self._transaction():
            cur = self.conn.execute("DELETE FROM cache_entries")
            return cur.rowcount

    def status(self) -> dict[str, Any]:
        """
        Назначение:
            Сводка для команды `cache status`: версия схемы, число записей
            по операциям, время последнего обновления.
        """
        with self._lock:
            rows = self.conn.execute("SELECT namespace, key, updated_at FROM cache_entries").fetchall()
            version_row = self.conn.execute("SELECT value FROM meta WHERE key='schema_version'").fetchone()
        by_operation: dict[str, int] = {}
        by_namespace: dict[str, int] = {}
        last_updated = None
        for row in rows:
            operation = row["key"].split("|", 1)[0]
            by_operation[operation] = by_operation.get(operation, 0) + 1
            by_namespace[row["namespace"]] = by_namespace.get(row["namespace"], 0) + 1
            if last_updated is None or row["updated_at"] > last_updated:
                last_updated = row["updated_at"]
        return {
            "db_path": self.dbPath,
            "schema_version": int(version_row["value"]) if version_row is not None else None,
            "entries": len(rows),
            "by_operation": by_operation,
            "by_namespace": by_namespace,
            "last_updated": last_updated,
        }

    def close(self) -> None:
        with self._lock:
            self.conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[None]:
        self.conn.execute("BEGIN")
        try:
            yield
            self.conn.execute("COMMIT")
        except Exception:
            self.conn.execute("ROLLBACK")
            raise

    def _ensure_schema(self) -> None:
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS meta (
                key TEXT PRIMARY KEY,
                value TEXT
            )
            """
        )
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS cache_entries (
                namespace TEXT NOT NULL,
                key TEXT NOT NULL,
                value TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                PRIMARY KEY (namespace, key)
            )
            """
        )
        self.conn.execute(
            """
            INSERT INTO meta(key, value)
            VALUES ('schema_version', ?)
            ON CONFLICT(key) DO UPDATE SET value=excluded.value
            """,
            (str(SCHEMA_VERSION),),
        )


__all__ = ["SqliteCacheStore", "getCacheDbPath", "openCacheDb", "encode_value", "decode_value"]
