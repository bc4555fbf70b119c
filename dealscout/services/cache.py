from __future__ import annotations

import json
import logging
import sqlite3
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, Protocol, Tuple, Type, TypeVar, Union

from pydantic import TypeAdapter, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TTL_MINUTES = 24 * 60


class CacheBackend(Protocol):
    """Flat string key/value store. Any method may raise; ResultCache absorbs it."""

    def read(self, key: str) -> Optional[str]: ...

    def write(self, key: str, raw: str, expires_at: float) -> None: ...

    def delete(self, key: str) -> None: ...

    def clear(self) -> None: ...


class MemoryBackend:
    """In-memory store with max size eviction (earliest expiry goes first)."""

    def __init__(self, *, max_size: int = 512) -> None:
        self.max_size = max_size
        self._store: Dict[str, Tuple[str, float]] = {}
        self._lock = threading.Lock()

    def read(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._store.get(key)
        return None if item is None else item[0]

    def write(self, key: str, raw: str, expires_at: float) -> None:
        with self._lock:
            if key not in self._store and len(self._store) >= self.max_size:
                self._evict_oldest()
            self._store[key] = (raw, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._store.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)

    def _evict_oldest(self) -> None:
        if not self._store:
            return
        oldest_key = min(self._store.items(), key=lambda item: item[1][1])[0]
        self._store.pop(oldest_key, None)


class SqliteBackend:
    """Persistent store; survives restarts but nothing relies on that."""

    def __init__(self, db_path: str) -> None:
        self.db_path = db_path
        self.conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self.conn.execute(
            """
            CREATE TABLE IF NOT EXISTS result_cache (
                key TEXT PRIMARY KEY,
                raw TEXT NOT NULL,
                expires_at REAL NOT NULL
            )
            """
        )
        self.conn.commit()

    def read(self, key: str) -> Optional[str]:
        row = self.conn.execute("SELECT raw FROM result_cache WHERE key = ?", (key,)).fetchone()
        return None if row is None else row[0]

    def write(self, key: str, raw: str, expires_at: float) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO result_cache (key, raw, expires_at) VALUES (?, ?, ?)",
            (key, raw, expires_at),
        )
        self.conn.commit()

    def delete(self, key: str) -> None:
        self.conn.execute("DELETE FROM result_cache WHERE key = ?", (key,))
        self.conn.commit()

    def clear(self) -> None:
        self.conn.execute("DELETE FROM result_cache")
        self.conn.commit()

    def close(self) -> None:
        self.conn.close()


class MissReason(str, Enum):
    ABSENT = "absent"
    EXPIRED = "expired"
    INCOMPATIBLE = "incompatible"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class CacheHit(Generic[T]):
    value: T
    expires_at: float


@dataclass(frozen=True)
class CacheMiss:
    reason: MissReason


CacheLookup = Union[CacheHit[T], CacheMiss]


class ResultCache(Generic[T]):
    """Best-effort TTL cache on top of a CacheBackend.

    Never raises: a broken backend looks exactly like an empty one. Entries
    are checked lazily on read (``now >= expires_at`` means gone) and values
    are re-validated against ``value_type``, so a payload written by an older
    schema comes back as an INCOMPATIBLE miss instead of a half-parsed object.
    """

    def __init__(
        self,
        backend: CacheBackend,
        value_type: Type[T],
        *,
        namespace: str = "dealscout",
        schema_version: str = "v1",
    ) -> None:
        self.backend = backend
        self.prefix = f"{namespace}:{schema_version}:"
        self._adapter: TypeAdapter[T] = TypeAdapter(value_type)

    def set(self, key: str, value: T, ttl_minutes: float = DEFAULT_TTL_MINUTES) -> None:
        expires_at = time.time() + ttl_minutes * 60
        try:
            raw = json.dumps(
                {"value": self._adapter.dump_python(value, mode="json"), "expires_at": expires_at},
                separators=(",", ":"),
            )
            self.backend.write(self.prefix + key, raw, expires_at)
        except Exception as e:
            logger.warning("Cache write failed for %s: %s", key, e)

    def get(self, key: str) -> Optional[T]:
        found = self.lookup(key)
        return found.value if isinstance(found, CacheHit) else None

    def lookup(self, key: str) -> CacheLookup:
        full_key = self.prefix + key
        try:
            raw = self.backend.read(full_key)
        except Exception as e:
            logger.warning("Cache read failed for %s: %s", key, e)
            return CacheMiss(MissReason.UNAVAILABLE)
        if raw is None:
            return CacheMiss(MissReason.ABSENT)

        try:
            item: Any = json.loads(raw)
            expires_at = float(item["expires_at"])
            payload = item["value"]
        except (ValueError, TypeError, KeyError):
            self._evict(full_key)
            return CacheMiss(MissReason.INCOMPATIBLE)

        if time.time() >= expires_at:
            self._evict(full_key)
            return CacheMiss(MissReason.EXPIRED)

        try:
            value = self._adapter.validate_python(payload)
        except ValidationError:
            logger.info("Dropping cached %s: payload no longer matches its type", key)
            self._evict(full_key)
            return CacheMiss(MissReason.INCOMPATIBLE)
        return CacheHit(value=value, expires_at=expires_at)

    def remove(self, key: str) -> None:
        self._evict(self.prefix + key)

    def clear(self) -> None:
        try:
            self.backend.clear()
        except Exception as e:
            logger.warning("Cache clear failed: %s", e)

    def _evict(self, full_key: str) -> None:
        try:
            self.backend.delete(full_key)
        except Exception as e:
            logger.warning("Cache evict failed for %s: %s", full_key, e)
