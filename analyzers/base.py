"""
Shared data models for the static analyzers.

All analyzers import from this module. Declarations are immutable once parsed
and carry only source text, so a parsed SourceUnit can be cached as JSON and
rebuilt without re-reading the file.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


# =============================================================================
# ENUMS
# =============================================================================

class DeclarationKind(Enum):
    CLASS = "class"
    METHOD = "method"
    FUNCTION = "function"
    PROPERTY = "property"


class Visibility(Enum):
    PUBLIC = "public"
    PROTECTED = "protected"
    PRIVATE = "private"

    @classmethod
    def from_name(cls, name: str) -> "Visibility":
        if name.startswith("__") and not name.endswith("__"):
            return cls.PRIVATE
        if name.startswith("_") and not name.endswith("__"):
            return cls.PROTECTED
        return cls.PUBLIC


class ArgumentKind(Enum):
    POSITIONAL = "positional"
    KEYWORD_ONLY = "keyword_only"
    VAR_POSITIONAL = "var_positional"
    VAR_KEYWORD = "var_keyword"


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class SourceRange:
    start_line: int
    start_column: int
    end_line: int
    end_column: int

    def to_list(self) -> List[int]:
        return [self.start_line, self.start_column, self.end_line, self.end_column]

    @classmethod
    def from_list(cls, data: List[int]) -> "SourceRange":
        return cls(*data)


@dataclass(frozen=True)
class Argument:
    """One parameter of a function signature, kept as source text."""
    name: str
    annotation: Optional[str] = None
    default: Optional[str] = None
    kind: ArgumentKind = ArgumentKind.POSITIONAL

    @property
    def has_default(self) -> bool:
        return self.default is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "annotation": self.annotation,
            "default": self.default,
            "kind": self.kind.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Argument":
        return cls(
            name=data["name"],
            annotation=data.get("annotation"),
            default=data.get("default"),
            kind=ArgumentKind(data.get("kind", "positional")),
        )


@dataclass(frozen=True)
class Declaration:
    """A class, method, function or class attribute found in a source file."""
    name: str
    qualname: str
    kind: DeclarationKind
    range: SourceRange
    visibility: Visibility = Visibility.PUBLIC
    doc: Optional[str] = None
    decorators: Tuple[str, ...] = ()
    annotation: Optional[str] = None    # property annotation or return annotation
    value: Optional[str] = None         # assigned value of a property
    arguments: Tuple[Argument, ...] = ()
    bases: Tuple[str, ...] = ()
    returns: Tuple[str, ...] = ()       # return expressions of a function body
    children: Tuple["Declaration", ...] = ()
    is_async: bool = False

    def child(self, name: str) -> Optional["Declaration"]:
        for child in self.children:
            if child.name == name:
                return child
        return None

    def children_of_kind(self, kind: DeclarationKind) -> List["Declaration"]:
        return [c for c in self.children if c.kind is kind]

    @property
    def methods(self) -> List["Declaration"]:
        return self.children_of_kind(DeclarationKind.METHOD)

    @property
    def properties(self) -> List["Declaration"]:
        return self.children_of_kind(DeclarationKind.PROPERTY)

    def walk(self) -> Iterator["Declaration"]:
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "qualname": self.qualname,
            "kind": self.kind.value,
            "range": self.range.to_list(),
            "visibility": self.visibility.value,
            "doc": self.doc,
            "decorators": list(self.decorators),
            "annotation": self.annotation,
            "value": self.value,
            "arguments": [a.to_dict() for a in self.arguments],
            "bases": list(self.bases),
            "returns": list(self.returns),
            "children": [c.to_dict() for c in self.children],
            "is_async": self.is_async,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Declaration":
        return cls(
            name=data["name"],
            qualname=data["qualname"],
            kind=DeclarationKind(data["kind"]),
            range=SourceRange.from_list(data["range"]),
            visibility=Visibility(data.get("visibility", "public")),
            doc=data.get("doc"),
            decorators=tuple(data.get("decorators", [])),
            annotation=data.get("annotation"),
            value=data.get("value"),
            arguments=tuple(Argument.from_dict(a) for a in data.get("arguments", [])),
            bases=tuple(data.get("bases", [])),
            returns=tuple(data.get("returns", [])),
            children=tuple(cls.from_dict(c) for c in data.get("children", [])),
            is_async=data.get("is_async", False),
        )


@dataclass(frozen=True)
class SourceUnit:
    """One analyzed file."""
    path: str
    fingerprint: str
    module: str
    declarations: Tuple[Declaration, ...] = ()
    doc: Optional[str] = None

    def classes(self) -> List[Declaration]:
        return [d for d in self.declarations if d.kind is DeclarationKind.CLASS]

    def functions(self) -> List[Declaration]:
        return [d for d in self.declarations if d.kind is DeclarationKind.FUNCTION]

    def walk(self) -> Iterator[Declaration]:
        for declaration in self.declarations:
            yield from declaration.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.path,
            "fingerprint": self.fingerprint,
            "module": self.module,
            "doc": self.doc,
            "declarations": [d.to_dict() for d in self.declarations],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceUnit":
        return cls(
            path=data["path"],
            fingerprint=data["fingerprint"],
            module=data["module"],
            doc=data.get("doc"),
            declarations=tuple(Declaration.from_dict(d) for d in data.get("declarations", [])),
        )


@dataclass
class DeclarationIndex:
    """
    Static registry of every declaration discovered in a build.

    Built once per build from the parsed SourceUnits, before any route or
    model analysis runs. Lookups accept dotted qualified names
    (``app.controllers.user.UserController.show``) as well as short
    ``Class.method`` forms.
    """
    entries: Dict[str, Tuple[SourceUnit, Declaration, Optional[Declaration]]] = field(default_factory=dict)
    _short: Dict[str, List[str]] = field(default_factory=dict)

    def add_unit(self, unit: SourceUnit) -> None:
        for declaration in unit.declarations:
            self._add(unit, declaration, None)
            if declaration.kind is DeclarationKind.CLASS:
                for child in declaration.children:
                    if child.kind is DeclarationKind.METHOD:
                        self._add(unit, child, declaration)

    def _add(self, unit: SourceUnit, declaration: Declaration, owner: Optional[Declaration]) -> None:
        full = f"{unit.module}.{declaration.qualname}" if unit.module else declaration.qualname
        self.entries[full] = (unit, declaration, owner)
        self._short.setdefault(declaration.qualname, []).append(full)

    def lookup(self, name: str) -> Optional[Tuple[SourceUnit, Declaration, Optional[Declaration]]]:
        if name in self.entries:
            return self.entries[name]
        candidates = self._short.get(name, [])
        if not candidates:
            # Accept a partially qualified name such as "controllers.user.UserController.show"
            candidates = sorted(k for k in self.entries if k.endswith("." + name))
        if candidates:
            return self.entries[sorted(candidates)[0]]
        return None

    def classes(self) -> Iterator[Tuple[SourceUnit, Declaration]]:
        for key in sorted(self.entries):
            unit, declaration, owner = self.entries[key]
            if declaration.kind is DeclarationKind.CLASS:
                yield unit, declaration

    def find_class(self, name: str) -> Optional[Tuple[SourceUnit, Declaration]]:
        short = name.strip("'\"").rsplit(".", 1)[-1]
        for unit, declaration in self.classes():
            if declaration.name == short:
                return unit, declaration
        return None
