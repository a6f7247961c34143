#!/usr/bin/env python3
"""
Schema Generator
================
Convert TypeRefs and Models into OpenAPI 3.0 schema objects.

- scalar → {"type": "integer"} (+ format)
- array → {"type": "array", "items": ...}
- model reference → {"$ref": "#/components/schemas/User"}
- union → {"oneOf": [...]}
- nullable → {"nullable": true} ({"allOf": [$ref], "nullable": true} for references)
- unknown → {}

Named component schemas are registered once. Anonymous fragments (request
bodies) are deduplicated by a structural hash of their canonical JSON, so
identical bodies share one component.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Set

from analyzers.diagnostics import DiagnosticCollector, ResolutionFailure, Severity
from analyzers.model_analyzer import Model, ModelField, Relation, RelationKind
from analyzers.relation_analyzer import ModelRegistry
from analyzers.types import (
    ArrayType,
    NullableType,
    ObjectType,
    ScalarType,
    TypeRef,
    UnionType,
)

logger = logging.getLogger("api_scanner.generators.schema_generator")

REF_PREFIX = "#/components/schemas/"


@dataclass(frozen=True)
class SchemaFragment:
    """A named, referenceable component schema."""
    name: str
    schema: Dict[str, Any]
    digest: str

    @property
    def ref(self) -> Dict[str, str]:
        return {"$ref": REF_PREFIX + self.name}


def structural_hash(schema: Dict[str, Any]) -> str:
    canonical = json.dumps(schema, sort_keys=True, separators=(',', ':'), ensure_ascii=False)
    return hashlib.sha256(canonical.encode('utf-8')).hexdigest()


def ref_to(name: str) -> Dict[str, str]:
    return {"$ref": REF_PREFIX + name}


class SchemaGenerator:
    """
    Build schema objects for one document.

    Holds the component table of the build; create one generator per build.
    """

    def __init__(self, registry: ModelRegistry, diagnostics: Optional[DiagnosticCollector] = None,
                 flatten: bool = False):
        self.registry = registry
        self.diagnostics = diagnostics if diagnostics is not None else registry.diagnostics
        self.flatten = flatten
        self.fragments: Dict[str, SchemaFragment] = {}
        self._by_digest: Dict[str, str] = {}
        self._building: Set[str] = set()
        self._unresolved: Set[str] = set()

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def type_schema(self, t: TypeRef, visited: Optional[Set[str]] = None) -> Dict[str, Any]:
        """
        Schema of a TypeRef.

        Args:
            t: Inferred type
            visited: Models already inlined on the current path (flatten mode only)
        """
        if isinstance(t, ScalarType):
            schema: Dict[str, Any] = {"type": t.kind}
            if t.format:
                schema["format"] = t.format
            return schema

        if isinstance(t, ArrayType):
            return {"type": "array", "items": self.type_schema(t.element, visited)}

        if isinstance(t, ObjectType):
            if t.ref:
                return self.model_ref(t.ref, visited)
            if t.additional is not None and not t.additional.is_unknown:
                return {"type": "object", "additionalProperties": self.type_schema(t.additional, visited)}
            return {"type": "object"}

        if isinstance(t, UnionType):
            return {"oneOf": [self.type_schema(m, visited) for m in t.ordered()]}

        if isinstance(t, NullableType):
            inner = self.type_schema(t.inner, visited)
            if "$ref" in inner:
                return {"allOf": [inner], "nullable": True}
            return {**inner, "nullable": True}

        return {}

    def model_ref(self, name: str, visited: Optional[Set[str]] = None) -> Dict[str, Any]:
        """Reference to a model component (inlined on first encounter in flatten mode)."""
        model = self.registry.get(name)
        if model is None:
            if name not in self._unresolved:
                self._unresolved.add(name)
                self.diagnostics.record(
                    ResolutionFailure(f"Type '{name}' does not name a known model; documented as unknown",
                                      declaration=name),
                    Severity.WARNING,
                )
            return {}

        # visited is only passed during a flatten walk
        if visited is not None and model.name not in visited:
            return self.flatten_model(model.name, visited)

        self.register_model(model)
        return ref_to(model.name)

    def schema_for(self, t: TypeRef) -> Dict[str, Any]:
        """Schema used inside operations: model references, or inlined models when flattening."""
        return self.type_schema(t, set() if self.flatten else None)

    # ------------------------------------------------------------------
    # Models
    # ------------------------------------------------------------------

    def register_model(self, model: Model) -> str:
        """Add ``model`` to the component table (once) and return its name."""
        if model.name in self.fragments or model.name in self._building:
            return model.name
        self._building.add(model.name)
        try:
            schema = self.model_schema(model)
        finally:
            self._building.discard(model.name)
        self.fragments[model.name] = SchemaFragment(model.name, schema, structural_hash(schema))
        logger.debug(f"Registered model schema {model.name}")
        return model.name

    def model_schema(self, model: Model, visited: Optional[Set[str]] = None) -> Dict[str, Any]:
        """Object schema of a model; relations are references unless flattening."""
        properties: Dict[str, Any] = {}
        required: List[str] = []

        for model_field in model.visible_fields():
            properties[model_field.name] = self.field_schema(model_field, visited)
            if model_field.required:
                required.append(model_field.name)

        for relation in model.relations:
            if relation.name in model.hidden or relation.name in properties:
                continue
            properties[relation.name] = self.relation_schema(relation, visited)

        schema: Dict[str, Any] = {"type": "object", "title": model.name}
        if model.description:
            schema["description"] = model.description
        schema["properties"] = properties
        if required:
            schema["required"] = required
        if model.table:
            schema["x-table"] = model.table
        return schema

    def field_schema(self, model_field: ModelField, visited: Optional[Set[str]] = None) -> Dict[str, Any]:
        schema = self.type_schema(model_field.type, visited)
        if "$ref" in schema and (model_field.description or model_field.read_only):
            schema = {"allOf": [schema]}
        if model_field.description:
            schema["description"] = model_field.description
        if model_field.read_only:
            schema["readOnly"] = True
        for key, value in model_field.constraints.items():
            schema.setdefault(key, value)
        return schema

    def relation_schema(self, relation: Relation, visited: Optional[Set[str]] = None) -> Dict[str, Any]:
        if not relation.resolved:
            return {"description": f"Unresolved relation to {relation.target}"}
        target = self.model_ref(relation.target, visited)
        if relation.kind.is_collection:
            return {"type": "array", "items": target}
        if relation.kind is RelationKind.BELONGS_TO and "$ref" in target:
            return {"allOf": [target], "nullable": True}
        return target

    def flatten_model(self, name: str, visited: Optional[Set[str]] = None) -> Dict[str, Any]:
        """
        Inline schema of ``name`` with related models inlined on first encounter.

        A model met again on the same walk is emitted as a ``$ref`` (and
        registered as a component), so cyclic relations terminate.

        Example:
            >>> # User.posts → Post, Post.author → User
            >>> generator.flatten_model("User")["properties"]["posts"]["items"]["properties"]["author"]
            {'$ref': '#/components/schemas/User'}
        """
        model = self.registry.get(name)
        if model is None:
            return self.model_ref(name)
        visited = set() if visited is None else visited
        if model.name in visited:
            self.register_model(model)
            return ref_to(model.name)
        visited.add(model.name)
        return self.model_schema(model, visited)

    # ------------------------------------------------------------------
    # Fragments
    # ------------------------------------------------------------------

    def fragment(self, name: str, schema: Dict[str, Any]) -> Dict[str, str]:
        """
        Register an anonymous schema under ``name`` and return a reference.

        A structurally identical schema registered earlier is reused; a name
        clash with a different schema gets a numeric suffix.
        """
        digest = structural_hash(schema)
        if digest in self._by_digest:
            return ref_to(self._by_digest[digest])

        unique = name
        counter = 2
        while unique in self.fragments or unique in self._building or self.registry.get(unique) is not None:
            unique = f"{name}{counter}"
            counter += 1
        self.fragments[unique] = SchemaFragment(unique, schema, digest)
        self._by_digest[digest] = unique
        return ref_to(unique)

    def components(self) -> Dict[str, Dict[str, Any]]:
        """Component schemas sorted by name."""
        return {name: self.fragments[name].schema for name in sorted(self.fragments)}
