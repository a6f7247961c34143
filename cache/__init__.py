"""
Incremental Analysis Cache
==========================

Fingerprint source files and keep their per-file analysis between builds,
so unchanged files are not re-analyzed.

Usage:
    from cache import CacheManager, ChangeDetector, MemoryStore

    cache = CacheManager(MemoryStore())
    detector = ChangeDetector("./app")

    for path in detector.discover():
        source = detector.read(path)
        payload = cache.get(source.relative, source.fingerprint)
"""

__version__ = "1.0.0"

from .cache_manager import CacheManager, EntryState
from .change_detector import ChangeDetector, SourceFile
from .file_watcher import CacheInvalidationHandler, SourceWatcher
from .stores import CacheRecord, CacheStore, MemoryStore, SqliteStore

__all__ = [
    "CacheManager",
    "EntryState",
    "ChangeDetector",
    "SourceFile",
    "CacheInvalidationHandler",
    "SourceWatcher",
    "CacheRecord",
    "CacheStore",
    "MemoryStore",
    "SqliteStore",
]
