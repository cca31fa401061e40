"""
Namespaced TTL cache on SQLite.

Entries are stored as {"data", "timestamp" (epoch ms), "version"}. Every row
carries its namespace, so clearing a namespace never touches keys owned by
someone else sharing the same database file.
"""
import json
import logging
import sqlite3
import threading
import time
from typing import Callable, Dict, Optional

from errors import CacheCorrupt

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 30 * 60
DEFAULT_VERSION = "1.0.0"

CACHE_KEYS = {
    "RUN_CLUBS": "runclubs-data",
}

CACHE_OPTIONS = {
    "RUN_CLUBS": {"ttl_seconds": 30 * 60, "version": "1.0.0"},
}


class CacheStore:
    def __init__(self, path: str = ":memory:", namespace: str = "runclubs", clock: Callable[[], float] = time.time):
        self.path = path
        self.namespace = namespace
        self.clock = clock
        self.lock = threading.Lock()
        self.conn = sqlite3.connect(path, check_same_thread=False)
        self.conn.row_factory = sqlite3.Row
        self._init_schema()

    def _init_schema(self) -> None:
        with self.lock:
            self.conn.execute("""
                CREATE TABLE IF NOT EXISTS cache_entries (
                    namespace TEXT NOT NULL,
                    key TEXT NOT NULL,
                    payload TEXT NOT NULL,
                    timestamp_ms INTEGER NOT NULL,
                    version TEXT NOT NULL,
                    PRIMARY KEY (namespace, key)
                )
            """)
            self.conn.execute("CREATE INDEX IF NOT EXISTS idx_cache_entries_namespace ON cache_entries(namespace)")
            self.conn.commit()

    def now_ms(self) -> int:
        return int(self.clock() * 1000)

    def _decode(self, key: str, payload: str) -> object:
        try:
            entry = json.loads(payload)
        except json.JSONDecodeError as e:
            raise CacheCorrupt(f"Cache entry {key} is not valid JSON: {e}") from e
        if not isinstance(entry, dict) or "data" not in entry:
            raise CacheCorrupt(f"Cache entry {key} has no data")
        return entry["data"]

    def get(self, key: str, ttl_seconds: int = DEFAULT_TTL_SECONDS, version: str = DEFAULT_VERSION) -> Optional[object]:
        """Return cached data, or None on miss. Stale, mismatched or corrupt entries are purged."""
        with self.lock:
            row = self.conn.execute(
                "SELECT payload, timestamp_ms, version FROM cache_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        if not row:
            logger.debug(f"Cache miss: {key}")
            return None

        if row["version"] != version:
            logger.info(f"Cache version mismatch for {key}: {row['version']} -> {version}")
            self.remove(key)
            return None

        age_ms = self.now_ms() - int(row["timestamp_ms"])
        if age_ms > ttl_seconds * 1000:
            logger.info(f"Cache expired for {key} (age: {round(age_ms / 60000)} min)")
            self.remove(key)
            return None

        try:
            data = self._decode(key, row["payload"])
        except CacheCorrupt as e:
            logger.warning(f"{e}; purging")
            self.remove(key)
            return None

        logger.debug(f"Cache hit: {key} (age: {round(age_ms / 60000)} min)")
        return data

    def set(self, key: str, data: object, version: str = DEFAULT_VERSION) -> None:
        timestamp = self.now_ms()
        payload = json.dumps({"data": data, "timestamp": timestamp, "version": version})
        with self.lock:
            self.conn.execute(
                "INSERT OR REPLACE INTO cache_entries (namespace, key, payload, timestamp_ms, version) VALUES (?, ?, ?, ?, ?)",
                (self.namespace, key, payload, timestamp, version),
            )
            self.conn.commit()
        logger.debug(f"Cache saved: {key} ({len(payload)} chars)")

    def has(self, key: str, ttl_seconds: int = DEFAULT_TTL_SECONDS, version: str = DEFAULT_VERSION) -> bool:
        return self.get(key, ttl_seconds, version) is not None

    def remove(self, key: str) -> None:
        with self.lock:
            self.conn.execute("DELETE FROM cache_entries WHERE namespace = ? AND key = ?", (self.namespace, key))
            self.conn.commit()

    def clear(self) -> int:
        """Remove every entry in this namespace. Returns the number removed."""
        with self.lock:
            cur = self.conn.execute("DELETE FROM cache_entries WHERE namespace = ?", (self.namespace,))
            self.conn.commit()
        removed = cur.rowcount if cur.rowcount is not None else 0
        logger.info(f"Cleared {removed} cache entr{'y' if removed == 1 else 'ies'} in {self.namespace}")
        return removed

    def clear_expired(self, ttl_seconds: int = DEFAULT_TTL_SECONDS) -> int:
        cutoff = self.now_ms() - ttl_seconds * 1000
        with self.lock:
            cur = self.conn.execute(
                "DELETE FROM cache_entries WHERE namespace = ? AND timestamp_ms < ?",
                (self.namespace, cutoff),
            )
            self.conn.commit()
        return cur.rowcount or 0

    def age_seconds(self, key: str) -> Optional[float]:
        with self.lock:
            row = self.conn.execute(
                "SELECT timestamp_ms FROM cache_entries WHERE namespace = ? AND key = ?",
                (self.namespace, key),
            ).fetchone()
        if not row:
            return None
        return (self.now_ms() - int(row["timestamp_ms"])) / 1000.0

    def stats(self) -> Dict:
        with self.lock:
            rows = self.conn.execute(
                "SELECT key, LENGTH(payload) AS size, timestamp_ms FROM cache_entries WHERE namespace = ? ORDER BY timestamp_ms ASC",
                (self.namespace,),
            ).fetchall()
        total_size = sum(int(r["size"]) for r in rows)
        oldest = None
        if rows:
            age_min = round((self.now_ms() - int(rows[0]["timestamp_ms"])) / 60000)
            oldest = f"{rows[0]['key']} ({age_min} min)"
        return {
            "total_items": len(rows),
            "total_size": f"{total_size / 1024:.2f} KB",
            "oldest_cache": oldest,
        }

    def close(self) -> None:
        with self.lock:
            self.conn.close()
