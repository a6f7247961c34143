#!/usr/bin/env python3
"""
File Watcher
============
Invalidate cache entries as source files change on disk.

The watcher runs on watchdog's observer thread and does nothing but mark
entries stale; rebuilding stays with the caller (``main.py --watch`` polls
``get_pending_changes()`` and runs a new build).
"""

import threading
import time
from pathlib import Path
from typing import Iterable, Optional, Set, Tuple
import logging

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from .cache_manager import CacheManager

logger = logging.getLogger("api_scanner.cache.file_watcher")


class CacheInvalidationHandler(FileSystemEventHandler):
    """Event handler that invalidates the cache entry of every changed source file."""

    def __init__(self, root: str, cache: Optional[CacheManager], extensions: Iterable[str] = ('.py',),
                 ignore_dirs: Iterable[str] = ()):
        """
        Args:
            root: Scanned root; cache keys are paths relative to it
            cache: Cache to invalidate (None only records changes)
            extensions: Source file extensions to track
            ignore_dirs: Directory names to ignore
        """
        super().__init__()
        self.root = Path(root).resolve()
        self.cache = cache
        self.extensions = {e.lower() for e in extensions}
        self.ignore_dirs = set(ignore_dirs)

        # Track pending changes
        self.changed: Set[str] = set()
        self.last_change_time = 0.0
        self._lock = threading.Lock()

    def _relative(self, file_path: str) -> Optional[str]:
        path = Path(file_path)
        if path.suffix.lower() not in self.extensions:
            return None
        try:
            relative = path.resolve().relative_to(self.root)
        except ValueError:
            return None
        if any(part in self.ignore_dirs for part in relative.parts):
            return None
        return relative.as_posix()

    def _invalidate(self, file_path: str, action: str) -> None:
        relative = self._relative(file_path)
        if relative is None:
            return
        logger.debug(f"File {action}: {relative}")
        if self.cache is not None:
            self.cache.invalidate(relative)
        with self._lock:
            self.changed.add(relative)
            self.last_change_time = time.time()

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._invalidate(event.src_path, "modified")

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._invalidate(event.src_path, "created")

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._invalidate(event.src_path, "deleted")

    def on_moved(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # Treat as delete + create
        self._invalidate(event.src_path, "moved from")
        dest_path = getattr(event, "dest_path", None)
        if dest_path:
            self._invalidate(dest_path, "moved to")

    def get_pending_changes(self) -> Set[str]:
        """Get changed paths and clear the buffer."""
        with self._lock:
            changed = set(self.changed)
            self.changed.clear()
        return changed

    def has_pending_changes(self) -> bool:
        with self._lock:
            return bool(self.changed)

    def time_since_last_change(self) -> float:
        return time.time() - self.last_change_time


class SourceWatcher:
    """
    File system watcher bound to one cache.

    Usage:
        with SourceWatcher("./app", cache) as watcher:
            while True:
                changed = watcher.wait_for_changes()
                rebuild()
    """

    def __init__(self, watch_path: str, cache: Optional[CacheManager], extensions: Iterable[str] = ('.py',),
                 ignore_dirs: Iterable[str] = (), debounce_seconds: float = 1.0):
        self.watch_path = Path(watch_path)
        self.debounce_seconds = debounce_seconds
        self.event_handler = CacheInvalidationHandler(str(watch_path), cache, extensions, ignore_dirs)
        self.observer = Observer()
        self.observer.schedule(self.event_handler, str(self.watch_path), recursive=True)
        self._running = False

        logger.info(f"Initialized file watcher for: {self.watch_path}")

    def start(self) -> None:
        """Start watching for file changes."""
        if not self._running:
            self.observer.start()
            self._running = True
            logger.info(f"Started watching: {self.watch_path}")

    def stop(self) -> None:
        """Stop watching for file changes."""
        if self._running:
            self.observer.stop()
            self.observer.join(timeout=5.0)
            self._running = False
            logger.info("Stopped file watcher")

    def is_running(self) -> bool:
        return self._running

    def wait_for_changes(self, poll_seconds: float = 0.5, timeout: Optional[float] = None) -> Set[str]:
        """
        Block until changes settle for ``debounce_seconds``.

        Returns:
            Changed relative paths (empty on timeout)
        """
        started = time.time()
        handler = self.event_handler
        while self._running:
            if handler.has_pending_changes() and handler.time_since_last_change() >= self.debounce_seconds:
                changed = handler.get_pending_changes()
                logger.info(f"Processing changes: {len(changed)} files")
                return changed
            if timeout is not None and time.time() - started >= timeout:
                break
            time.sleep(poll_seconds)
        return set()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
