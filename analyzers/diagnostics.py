"""
Diagnostics and failure taxonomy for the scanner.

Every recoverable failure (a file that does not parse, a relation that points
nowhere, a route without a handler) becomes a Diagnostic. Only configuration
failures abort a build.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

logger = logging.getLogger("api_scanner.diagnostics")


class Severity(Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class FailureKind(Enum):
    PARSE = "parse"
    RESOLUTION = "resolution"
    CONFIGURATION = "configuration"
    EXPORT = "export"
    TYPE_CONFLICT = "type_conflict"


class ScannerError(Exception):
    """Base class for all scanner failures."""

    kind = FailureKind.PARSE

    def __init__(self, message: str, path: Optional[str] = None, declaration: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.path = path
        self.declaration = declaration


class ParseFailure(ScannerError):
    """A file's structure could not be derived."""

    kind = FailureKind.PARSE


class ResolutionFailure(ScannerError):
    """A relation, type or route binding could not be resolved."""

    kind = FailureKind.RESOLUTION


class ConfigurationFailure(ScannerError):
    """A required external input is missing or unreadable. Fatal."""

    kind = FailureKind.CONFIGURATION


class ExportFailure(ScannerError):
    """Unsupported or unwritable export target."""

    kind = FailureKind.EXPORT


@dataclass(frozen=True)
class Diagnostic:
    """Structured record of a recoverable failure."""
    kind: FailureKind
    severity: Severity
    message: str
    path: Optional[str] = None
    declaration: Optional[str] = None
    line: Optional[int] = None

    @classmethod
    def from_error(cls, error: ScannerError, severity: Severity = Severity.ERROR,
                   line: Optional[int] = None) -> "Diagnostic":
        return cls(
            kind=error.kind,
            severity=severity,
            message=error.message,
            path=error.path,
            declaration=error.declaration,
            line=line,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "severity": self.severity.value,
            "message": self.message,
            "path": self.path,
            "declaration": self.declaration,
            "line": self.line,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Diagnostic":
        return cls(
            kind=FailureKind(data["kind"]),
            severity=Severity(data["severity"]),
            message=data["message"],
            path=data.get("path"),
            declaration=data.get("declaration"),
            line=data.get("line"),
        )


DiagnosticSink = Callable[[Diagnostic], None]

_LOG_LEVELS = {
    Severity.ERROR: logging.ERROR,
    Severity.WARNING: logging.WARNING,
    Severity.INFO: logging.INFO,
}


class DiagnosticCollector:
    """
    Aggregates diagnostics for one build.

    An optional external sink receives every diagnostic as it is emitted; the
    collector never formats them for display. A collector created with
    ``log=False`` only buffers (used for per-file analysis that is replayed
    into the build collector).
    """

    def __init__(self, sink: Optional[DiagnosticSink] = None, log: bool = True):
        self.sink = sink
        self.log = log
        self.diagnostics: List[Diagnostic] = []

    def emit(self, diagnostic: Diagnostic) -> None:
        self.diagnostics.append(diagnostic)
        if self.log:
            logger.log(
                _LOG_LEVELS[diagnostic.severity],
                f"[{diagnostic.kind.value}] {diagnostic.path or '-'}"
                f"{'::' + diagnostic.declaration if diagnostic.declaration else ''}: {diagnostic.message}",
            )
        if self.sink:
            self.sink(diagnostic)

    def report(self, kind: FailureKind, message: str, path: Optional[str] = None,
               declaration: Optional[str] = None, severity: Severity = Severity.WARNING,
               line: Optional[int] = None) -> Diagnostic:
        diagnostic = Diagnostic(kind, severity, message, path, declaration, line)
        self.emit(diagnostic)
        return diagnostic

    def record(self, error: ScannerError, severity: Severity = Severity.ERROR,
               line: Optional[int] = None) -> Diagnostic:
        diagnostic = Diagnostic.from_error(error, severity, line)
        self.emit(diagnostic)
        return diagnostic

    def extend(self, diagnostics: List[Diagnostic]) -> None:
        for diagnostic in diagnostics:
            self.emit(diagnostic)

    def of_kind(self, kind: FailureKind) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.kind is kind]

    def __len__(self) -> int:
        return len(self.diagnostics)

    def __bool__(self) -> bool:
        # An empty collector is still a live sink.
        return True

    def __iter__(self):
        return iter(self.diagnostics)
