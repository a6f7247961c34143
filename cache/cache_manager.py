#!/usr/bin/env python3
"""
Cache Manager
=============
Per-file analysis cache keyed by (path, fingerprint).

Each tracked path moves through the states::

    unknown → fresh → cached → stale → cached

- fresh:  fingerprint looked up, nothing stored for the path yet
- cached: a result is stored for the current fingerprint (served or just written)
- stale:  the stored fingerprint no longer matches, or the entry was
          invalidated; a stale entry is never served

A miss is a signal to re-analyze, never an error.

State and statistics are guarded by the manager's lock, since the file
watcher invalidates entries from its observer thread.
"""

import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional
import logging

from .stores import CacheRecord, CacheStore, MemoryStore, SqliteStore

logger = logging.getLogger("api_scanner.cache")


class EntryState(Enum):
    UNKNOWN = "unknown"
    FRESH = "fresh"
    CACHED = "cached"
    STALE = "stale"


class CacheManager:
    """
    Cache of per-file analysis payloads.

    Cache Strategy:
    - Key: source path relative to the scanned root
    - Record: fingerprint + payload + created_at + ttl (one write)
    - TTL: Configurable (0 = entries never expire)
    - Invalidation: fingerprint mismatch, explicit invalidate(), or reset()

    Usage:
        cache = CacheManager(MemoryStore())

        payload = cache.get("app/views.py", fingerprint)
        if payload is None:
            payload = analyze(...)
            cache.set("app/views.py", fingerprint, payload)
    """

    def __init__(self, store: Optional[CacheStore] = None, ttl_seconds: int = 0,
                 clock: Callable[[], float] = time.time):
        """
        Initialize cache manager.

        Args:
            store: Backing store (default: in-memory)
            ttl_seconds: Time-to-live in seconds (0 = no expiry)
            clock: Time source, replaceable in tests
        """
        self.store = store if store is not None else MemoryStore()
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self.states: Dict[str, EntryState] = {}
        self._lock = threading.Lock()

        # Statistics
        self.stats = {"hits": 0, "misses": 0, "sets": 0, "evictions": 0, "invalidations": 0}

    @classmethod
    def for_backend(cls, backend: str, path: str = ".api-doc-cache.db",
                    ttl_seconds: int = 0) -> Optional["CacheManager"]:
        """
        Build a manager for a configured backend name.

        Returns:
            None for the ``none`` backend
        """
        if backend == "none":
            return None
        if backend == "sqlite":
            return cls(SqliteStore(path), ttl_seconds)
        return cls(MemoryStore(), ttl_seconds)

    def _now(self) -> int:
        return int(self.clock())

    def state(self, path: str) -> EntryState:
        with self._lock:
            return self.states.get(path, EntryState.UNKNOWN)

    def get(self, path: str, fingerprint: str) -> Optional[Dict[str, Any]]:
        """
        Retrieve the payload stored for ``path`` at ``fingerprint``.

        Args:
            path: Source path
            fingerprint: Current fingerprint of the file

        Returns:
            Cached payload, or None if missing, expired or stale
        """
        with self._lock:
            record = self.store.get(path)

            if record is None:
                self.stats["misses"] += 1
                # A stale path stays stale until its re-analysis is stored
                if self.states.get(path) is not EntryState.STALE:
                    self.states[path] = EntryState.FRESH
                return None

            if record.expired(self._now()):
                self.store.delete(path)
                self.stats["misses"] += 1
                self.stats["evictions"] += 1
                self.states[path] = EntryState.STALE
                logger.debug(f"Cache entry expired: {path}")
                return None

            if record.fingerprint != fingerprint:
                self.stats["misses"] += 1
                self.states[path] = EntryState.STALE
                logger.debug(f"Cache entry stale: {path}")
                return None

            self.stats["hits"] += 1
            self.states[path] = EntryState.CACHED
            logger.debug(f"Cache hit: {path}")
            return record.payload

    def set(self, path: str, fingerprint: str, payload: Dict[str, Any],
            metadata: Optional[Dict[str, Any]] = None) -> None:
        """
        Store the analysis of ``path`` at ``fingerprint``.

        Args:
            path: Source path
            fingerprint: Fingerprint the payload was computed from
            payload: JSON-serializable analysis result
            metadata: Optional metadata about the entry
        """
        record = CacheRecord(fingerprint, payload, self._now(), self.ttl_seconds, dict(metadata or {}))
        with self._lock:
            self.store.set(path, record)
            self.states[path] = EntryState.CACHED
            self.stats["sets"] += 1
        logger.debug(f"Cache set: {path}")

    def invalidate(self, path: str) -> bool:
        """
        Mark ``path`` stale and drop its record.

        Returns:
            True if a record was removed
        """
        with self._lock:
            removed = self.store.delete(path)
            self.states[path] = EntryState.STALE
            self.stats["invalidations"] += 1
        logger.debug(f"Cache entry invalidated: {path}")
        return removed

    def clear_expired(self) -> int:
        """
        Remove expired entries from the store.

        Returns:
            Number of entries removed
        """
        now = self._now()
        count = 0
        with self._lock:
            for key in self.store.keys():
                record = self.store.get(key)
                if record is not None and record.expired(now):
                    self.store.delete(key)
                    self.states[key] = EntryState.STALE
                    count += 1
            self.stats["evictions"] += count

        logger.info(f"Cleared {count} expired cache entries")
        return count

    def reset(self) -> int:
        """
        Clear the entire cache.

        Returns:
            Number of entries removed
        """
        with self._lock:
            count = self.store.clear()
            self.states.clear()
        logger.info("Cleared all cache entries")
        return count

    def get_stats(self) -> Dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache statistics including hit rate
        """
        with self._lock:
            stats = dict(self.stats)
            entries = len(self.store.keys())
            size = self.store.size_bytes()
        lookups = stats["hits"] + stats["misses"]
        return {
            **stats,
            "entries": entries,
            "total_size_bytes": size,
            "hit_rate": stats["hits"] / lookups if lookups > 0 else 0.0,
        }

    def close(self) -> None:
        self.store.close()
