#!/usr/bin/env python3
"""
Cache Stores
============
Key/value backends for the analysis cache.

Every record carries the fingerprint it was computed for together with the
payload, so a write is one atomic operation per key.

- MemoryStore: lock-protected dict, lives for the process
- SqliteStore: persistent SQLite file, ``INSERT OR REPLACE`` per key
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

logger = logging.getLogger("api_scanner.cache.stores")


@dataclass
class CacheRecord:
    """One cached analysis: fingerprint + payload, written together."""
    fingerprint: str
    payload: Dict[str, Any]
    created_at: int
    ttl: int = 0                 # seconds, 0 = no expiry
    metadata: Dict[str, Any] = field(default_factory=dict)

    def expired(self, now: int) -> bool:
        return self.ttl > 0 and now - self.created_at > self.ttl


class CacheStore(ABC):
    """Storage interface used by the CacheManager."""

    @abstractmethod
    def get(self, key: str) -> Optional[CacheRecord]:
        pass

    @abstractmethod
    def set(self, key: str, record: CacheRecord) -> None:
        pass

    @abstractmethod
    def delete(self, key: str) -> bool:
        pass

    @abstractmethod
    def clear(self) -> int:
        pass

    @abstractmethod
    def keys(self) -> List[str]:
        pass

    def size_bytes(self) -> int:
        return 0

    def close(self) -> None:
        pass


class MemoryStore(CacheStore):
    """In-process store. Safe to share with the file watcher thread."""

    def __init__(self):
        self._records: Dict[str, CacheRecord] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[CacheRecord]:
        with self._lock:
            return self._records.get(key)

    def set(self, key: str, record: CacheRecord) -> None:
        with self._lock:
            self._records[key] = record

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._records.pop(key, None) is not None

    def clear(self) -> int:
        with self._lock:
            count = len(self._records)
            self._records.clear()
            return count

    def keys(self) -> List[str]:
        with self._lock:
            return sorted(self._records)

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)


class SqliteStore(CacheStore):
    """
    Persistent store backed by a SQLite file.

    Usage:
        store = SqliteStore(".api-doc-cache.db")
        store.set("app/views.py", CacheRecord(fingerprint, payload, int(time.time())))
        record = store.get("app/views.py")
    """

    def __init__(self, db_path: str = ".api-doc-cache.db"):
        """
        Initialize the store.

        Args:
            db_path: Path of the database file (parent directories are created)
        """
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self.db_path))

    def _init_db(self):
        """Initialize SQLite database schema."""
        conn = self._connect()
        cursor = conn.cursor()

        cursor.execute("""
            CREATE TABLE IF NOT EXISTS cache (
                key TEXT PRIMARY KEY,
                fingerprint TEXT NOT NULL,
                value TEXT NOT NULL,
                created_at INTEGER NOT NULL,
                ttl INTEGER NOT NULL DEFAULT 0,
                metadata TEXT
            )
        """)

        # Index for TTL-based cleanup
        cursor.execute("""
            CREATE INDEX IF NOT EXISTS idx_created_at ON cache(created_at)
        """)

        conn.commit()
        conn.close()

        logger.info(f"Cache database initialized at {self.db_path}")

    def get(self, key: str) -> Optional[CacheRecord]:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("""
                SELECT fingerprint, value, created_at, ttl, metadata
                FROM cache
                WHERE key = ?
            """, (key,))
            row = cursor.fetchone()
            conn.close()

        if row is None:
            return None

        fingerprint, value_json, created_at, ttl, metadata_json = row
        try:
            payload = json.loads(value_json)
            metadata = json.loads(metadata_json) if metadata_json else {}
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding corrupt cache record {key}: {e}")
            self.delete(key)
            return None
        return CacheRecord(fingerprint, payload, created_at, ttl, metadata)

    def set(self, key: str, record: CacheRecord) -> None:
        value_json = json.dumps(record.payload, sort_keys=True)
        metadata_json = json.dumps(record.metadata) if record.metadata else None

        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("""
                INSERT OR REPLACE INTO cache (key, fingerprint, value, created_at, ttl, metadata)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (key, record.fingerprint, value_json, record.created_at, record.ttl, metadata_json))
            conn.commit()
            conn.close()

    def delete(self, key: str) -> bool:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("DELETE FROM cache WHERE key = ?", (key,))
            deleted = cursor.rowcount > 0
            conn.commit()
            conn.close()
        return deleted

    def clear(self) -> int:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("SELECT COUNT(*) FROM cache")
            count = cursor.fetchone()[0]
            cursor.execute("DELETE FROM cache")
            conn.commit()
            conn.close()
        return count

    def keys(self) -> List[str]:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("SELECT key FROM cache ORDER BY key")
            rows = cursor.fetchall()
            conn.close()
        return [row[0] for row in rows]

    def size_bytes(self) -> int:
        with self._lock:
            conn = self._connect()
            cursor = conn.cursor()
            cursor.execute("SELECT SUM(LENGTH(value)) FROM cache")
            total = cursor.fetchone()[0]
            conn.close()
        return total or 0
