"""
Canonical type representation produced by the type inference engine.

The set of variants is closed: scalar, array, object, union, nullable and
unknown. All variants are frozen dataclasses, so equality and hashing are
structural and unions can deduplicate their members with a frozenset.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, Optional


class TypeRef:
    """Base class of every inferred type."""

    def describe(self) -> str:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @property
    def is_unknown(self) -> bool:
        return False

    def strip_nullable(self) -> "TypeRef":
        return self

    def __str__(self) -> str:
        return self.describe()


@dataclass(frozen=True)
class ScalarType(TypeRef):
    kind: str                       # integer, number, string, boolean
    format: Optional[str] = None    # date-time, uuid, binary, email, ...

    def describe(self) -> str:
        return f"{self.kind}<{self.format}>" if self.format else self.kind

    def to_dict(self) -> Dict[str, Any]:
        return {"t": "scalar", "kind": self.kind, "format": self.format}


@dataclass(frozen=True)
class ArrayType(TypeRef):
    element: TypeRef

    def describe(self) -> str:
        return f"array<{self.element.describe()}>"

    def to_dict(self) -> Dict[str, Any]:
        return {"t": "array", "element": self.element.to_dict()}


@dataclass(frozen=True)
class ObjectType(TypeRef):
    ref: Optional[str] = None                # named schema (model) or None for a free-form object
    additional: Optional[TypeRef] = None     # value type of a mapping

    def describe(self) -> str:
        if self.ref:
            return self.ref
        if self.additional is not None:
            return f"object<{self.additional.describe()}>"
        return "object"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "t": "object",
            "ref": self.ref,
            "additional": self.additional.to_dict() if self.additional is not None else None,
        }


@dataclass(frozen=True)
class UnionType(TypeRef):
    members: FrozenSet[TypeRef]

    def ordered(self):
        return sorted(self.members, key=lambda m: m.describe())

    def describe(self) -> str:
        return "|".join(m.describe() for m in self.ordered())

    def to_dict(self) -> Dict[str, Any]:
        return {"t": "union", "members": [m.to_dict() for m in self.ordered()]}


@dataclass(frozen=True)
class NullableType(TypeRef):
    inner: TypeRef

    def describe(self) -> str:
        return f"?{self.inner.describe()}"

    def strip_nullable(self) -> TypeRef:
        return self.inner

    def to_dict(self) -> Dict[str, Any]:
        return {"t": "nullable", "inner": self.inner.to_dict()}


@dataclass(frozen=True)
class UnknownType(TypeRef):

    def describe(self) -> str:
        return "unknown"

    @property
    def is_unknown(self) -> bool:
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"t": "unknown"}


UNKNOWN = UnknownType()
NULL = object()   # marker for a null member while building a union


def make_union(members: Iterable[Any]) -> TypeRef:
    """
    Build a normalized union.

    Nested unions are flattened, members deduplicated structurally, and any
    null member (``NULL``) or nullable member turns the result into
    ``NullableType(base)`` instead of a union member named null. Unknown
    members are kept, so no information is discarded.
    """
    flat = set()
    nullable = False
    pending = list(members)
    while pending:
        member = pending.pop()
        if member is NULL:
            nullable = True
        elif isinstance(member, NullableType):
            nullable = True
            pending.append(member.inner)
        elif isinstance(member, UnionType):
            pending.extend(member.members)
        else:
            flat.add(member)

    if not flat:
        base: TypeRef = UNKNOWN
    elif len(flat) == 1:
        base = next(iter(flat))
    else:
        base = UnionType(frozenset(flat))

    return NullableType(base) if nullable else base


def make_nullable(inner: TypeRef) -> TypeRef:
    if isinstance(inner, NullableType):
        return inner
    return make_union([inner, NULL])


def from_dict(data: Dict[str, Any]) -> TypeRef:
    tag = data.get("t")
    if tag == "scalar":
        return ScalarType(data["kind"], data.get("format"))
    if tag == "array":
        return ArrayType(from_dict(data["element"]))
    if tag == "object":
        additional = data.get("additional")
        return ObjectType(data.get("ref"), from_dict(additional) if additional else None)
    if tag == "union":
        return UnionType(frozenset(from_dict(m) for m in data["members"]))
    if tag == "nullable":
        return NullableType(from_dict(data["inner"]))
    return UNKNOWN
