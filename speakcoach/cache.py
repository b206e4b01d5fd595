from __future__ import annotations

import hashlib
import json
import logging
import sqlite3
import threading
import time
from collections.abc import Callable
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Protocol

from .config import ANALYSIS_VERSION, CACHE_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 255


class CacheStore(Protocol):
    def get(self, key: str, ttl: float) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float) -> bool: ...


def content_hash(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


def _context_hash(context: dict[str, Any]) -> str:
    return content_hash(json.dumps(context, sort_keys=True, default=str))


def _normalize_key(key: str) -> str:
    if len(key) <= MAX_KEY_LENGTH:
        return key
    return f"{key[:200]}:{content_hash(key)}"


def analysis_key(text_hash: str, context: dict[str, Any]) -> str:
    return _normalize_key(f"analysis:{text_hash}:{_context_hash(context)}")


def classification_key(issues_hash: str, context: dict[str, Any]) -> str:
    return _normalize_key(f"classification:{issues_hash}:{_context_hash(context)}")


def coaching_key(user_id: str, profile_hash: str, issues_hash: str) -> str:
    return _normalize_key(f"coaching:{user_id}:{profile_hash}:{issues_hash}")


class MemoryCache:
    """Process-local cache. `clock` returns seconds and is injectable for TTL tests."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self.clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}
        self._lock = threading.Lock()

    def get(self, key: str, ttl: float) -> Any | None:
        key = _normalize_key(key)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self.clock() - stored_at > ttl:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl: float) -> bool:
        with self._lock:
            self._entries[_normalize_key(key)] = (self.clock(), value)
        return True

    def delete(self, key: str) -> None:
        with self._lock:
            self._entries.pop(_normalize_key(key), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return True


class SqliteCache:
    """
    Persistent cache backed by a single sqlite table.

    Read and write failures are logged and reported as a miss or a failed write.
    """

    def __init__(self, path: Path | str, timeout: float = CACHE_TIMEOUT_SECONDS) -> None:
        self.path = Path(path)
        self.timeout = timeout
        with self._connection() as conn:
            conn.execute(
                "CREATE TABLE IF NOT EXISTS cache (key TEXT PRIMARY KEY, value TEXT NOT NULL, created_at REAL NOT NULL)"
            )

    @contextmanager
    def _connection(self):
        conn = sqlite3.connect(str(self.path), timeout=self.timeout)
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def get(self, key: str, ttl: float) -> Any | None:
        try:
            with self._connection() as conn:
                row = conn.execute(
                    "SELECT value, created_at FROM cache WHERE key = ?", (_normalize_key(key),)
                ).fetchone()
        except sqlite3.Error as exc:
            logger.warning("Cache read failed for %s: %s", key, exc)
            return None
        if row is None or time.time() - row[1] > ttl:
            return None
        try:
            return json.loads(row[0])["data"]
        except (json.JSONDecodeError, KeyError, TypeError) as exc:
            logger.warning("Discarding unreadable cache entry %s: %s", key, exc)
            return None

    def set(self, key: str, value: Any, ttl: float) -> bool:
        payload = json.dumps({"data": value, "cached_at": time.time(), "version": ANALYSIS_VERSION}, default=str)
        try:
            with self._connection() as conn:
                conn.execute(
                    "INSERT OR REPLACE INTO cache (key, value, created_at) VALUES (?, ?, ?)",
                    (_normalize_key(key), payload, time.time()),
                )
        except sqlite3.Error as exc:
            logger.warning("Cache write failed for %s: %s", key, exc)
            return False
        return True

    def clear_expired(self, ttl: float) -> int:
        with self._connection() as conn:
            cursor = conn.execute("DELETE FROM cache WHERE created_at < ?", (time.time() - ttl,))
            return cursor.rowcount

    def stats(self) -> dict[str, Any]:
        with self._connection() as conn:
            count, oldest = conn.execute("SELECT COUNT(*), MIN(created_at) FROM cache").fetchone()
        return {"entries": count, "oldest_entry_age_s": round(time.time() - oldest, 1) if oldest else None}
