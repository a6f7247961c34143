#!/usr/bin/env python3
"""
Change Detector
===============
Enumerate source files in a stable order and fingerprint them.

Fingerprint = SHA-256 of the file content (plus the modification time when
``use_mtime`` is set, plus an optional salt describing the analysis settings).
Two builds over the same files therefore see the same fingerprints, and a one
byte change produces a new one.
"""

import hashlib
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Set, Tuple
import logging

from analyzers.diagnostics import DiagnosticCollector, ParseFailure, Severity

logger = logging.getLogger("api_scanner.cache.change_detector")


@dataclass(frozen=True)
class SourceFile:
    """A discovered file with its decoded text and fingerprint."""
    path: Path
    relative: str
    text: str
    fingerprint: str


class ChangeDetector:
    """
    Discover files under a root and track their fingerprints between builds.

    Usage:
        detector = ChangeDetector("./app", extensions=[".py"])
        files = [f for f in map(detector.read, detector.discover()) if f]
        changed, unchanged = detector.get_changed_files(files)
    """

    def __init__(self, root: str, extensions: Iterable[str] = ('.py',), ignore_dirs: Iterable[str] = (),
                 max_file_size_mb: float = 10, use_mtime: bool = False, salt: str = "",
                 diagnostics: Optional[DiagnosticCollector] = None):
        self.root = Path(root)
        self.extensions = {e.lower() for e in extensions}
        self.ignore_dirs: Set[str] = set(ignore_dirs)
        self.max_file_size_mb = max_file_size_mb
        self.use_mtime = use_mtime
        self.salt = salt
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.previous: Dict[str, str] = {}
        self.stats = {"files_found": 0, "files_skipped": 0, "files_errored": 0}

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def should_ignore(self, path: Path) -> bool:
        """Check if path should be ignored."""
        for part in Path(self.relative(path)).parts:
            if part in self.ignore_dirs or part.endswith('.egg-info'):
                return True
        return False

    def discover(self) -> List[Path]:
        """
        Collect all scannable files, sorted by relative path.

        Files over the size limit are skipped with a diagnostic.
        """
        found = []
        self.stats = {"files_found": 0, "files_skipped": 0, "files_errored": 0}

        for root, dirs, files in os.walk(self.root):
            # Modify dirs in-place to skip ignored directories
            dirs[:] = [d for d in dirs if d not in self.ignore_dirs and not d.endswith('.egg-info')]

            for f in files:
                fp = Path(root) / f
                if fp.suffix.lower() not in self.extensions or self.should_ignore(fp):
                    self.stats["files_skipped"] += 1
                    continue

                try:
                    file_size_mb = fp.stat().st_size / (1024 * 1024)
                except OSError as e:
                    self._failed(fp, f"Cannot stat file: {e}")
                    continue
                if file_size_mb > self.max_file_size_mb:
                    self.stats["files_skipped"] += 1
                    self.diagnostics.record(
                        ParseFailure(f"Skipping large file: {file_size_mb:.1f}MB > {self.max_file_size_mb}MB",
                                     path=self.relative(fp)),
                        Severity.WARNING,
                    )
                    continue
                found.append(fp)

        found.sort(key=self.relative)
        self.stats["files_found"] = len(found)
        logger.info(f"Discovered {len(found)} source files under {self.root}")
        return found

    def _failed(self, path: Path, message: str) -> None:
        self.stats["files_errored"] += 1
        self.diagnostics.record(ParseFailure(message, path=self.relative(path)))

    def fingerprint(self, content: bytes, mtime_ns: Optional[int] = None) -> str:
        """SHA-256 fingerprint of ``content`` (and ``mtime_ns`` when mtime tracking is on)."""
        digest = hashlib.sha256()
        if self.salt:
            digest.update(self.salt.encode('utf-8'))
            digest.update(b'\0')
        digest.update(content)
        if self.use_mtime and mtime_ns is not None:
            digest.update(b'\0')
            digest.update(str(mtime_ns).encode('ascii'))
        return digest.hexdigest()

    def read(self, path: Path) -> Optional[SourceFile]:
        """
        Read and fingerprint one file.

        Returns:
            SourceFile, or None (with a diagnostic) if the file cannot be read
            or is not valid UTF-8
        """
        try:
            content = path.read_bytes()
            mtime_ns = path.stat().st_mtime_ns if self.use_mtime else None
        except OSError as e:
            self._failed(path, f"File read error: {e}")
            return None

        try:
            text = content.decode('utf-8-sig')
        except UnicodeDecodeError as e:
            self._failed(path, f"File is not valid UTF-8: {e}")
            return None

        return SourceFile(path, self.relative(path), text, self.fingerprint(content, mtime_ns))

    def get_changed_files(self, files: List[SourceFile]) -> Tuple[List[SourceFile], List[SourceFile]]:
        """
        Identify new or modified files since the previous call.

        Returns:
            (changed_files, unchanged_files)
        """
        changed = []
        unchanged = []
        current: Dict[str, str] = {}

        for source in files:
            current[source.relative] = source.fingerprint
            if self.previous.get(source.relative) != source.fingerprint:
                changed.append(source)
            else:
                unchanged.append(source)

        self.previous = current
        logger.info(f"Incremental scan: {len(changed)} changed, {len(unchanged)} unchanged")
        return changed, unchanged
