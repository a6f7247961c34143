#!/usr/bin/env python3
"""
Type Inference Engine
======================
Resolve the type of a parameter, attribute or return value from the signals
available in source code, without executing it.

Precedence:
1. explicit annotation (``id: int``), when present and not ``Any``
2. docstring type tag (``:type id: int|null``)
3. kind of the default literal (``limit=20`` → integer)
4. unknown

When the annotation and the docstring disagree, the annotation wins and a
type-conflict diagnostic is emitted. A difference in nullability alone is not
a conflict.
"""

import ast
import logging
import re
from typing import List, Optional

from .base import Argument, Declaration
from .diagnostics import DiagnosticCollector, FailureKind, Severity
from .docblock_parser import DocBlock
from .types import (
    NULL,
    UNKNOWN,
    ArrayType,
    ObjectType,
    ScalarType,
    TypeRef,
    UnionType,
    make_nullable,
    make_union,
)

logger = logging.getLogger("api_scanner.analyzers.type_inference")

_INT = ScalarType('integer')
_NUMBER = ScalarType('number')
_STRING = ScalarType('string')
_BOOL = ScalarType('boolean')


class TypeInferenceEngine:
    """
    Convert annotations, docstring type tags and default literals into TypeRefs.

    Uses the Python AST module for static analysis (no code execution needed).
    """

    # Python type name → canonical type
    TYPE_MAPPINGS = {
        # Built-in types
        'int': _INT,
        'float': _NUMBER,
        'complex': _NUMBER,
        'str': _STRING,
        'bool': _BOOL,
        'bytes': ScalarType('string', 'binary'),
        'bytearray': ScalarType('string', 'binary'),

        # Common aliases and docstring spellings
        'integer': _INT,
        'Integer': _INT,
        'long': ScalarType('integer', 'int64'),
        'number': _NUMBER,
        'double': _NUMBER,
        'Float': _NUMBER,
        'string': _STRING,
        'String': _STRING,
        'text': _STRING,
        'boolean': _BOOL,
        'Boolean': _BOOL,
        'Decimal': ScalarType('number', 'decimal'),

        # datetime types
        'datetime': ScalarType('string', 'date-time'),
        'date': ScalarType('string', 'date'),
        'time': ScalarType('string', 'time'),
        'timedelta': ScalarType('string', 'duration'),

        # UUID
        'UUID': ScalarType('string', 'uuid'),
        'uuid': ScalarType('string', 'uuid'),

        # Email / URL
        'EmailStr': ScalarType('string', 'email'),
        'HttpUrl': ScalarType('string', 'uri'),
        'AnyUrl': ScalarType('string', 'uri'),

        # File
        'UploadFile': ScalarType('string', 'binary'),
        'FileStorage': ScalarType('string', 'binary'),
        'File': ScalarType('string', 'binary'),
    }

    # Containers that map to an array of their first type argument
    ARRAY_CONTAINERS = {
        'List', 'list', 'Sequence', 'MutableSequence', 'Set', 'set', 'FrozenSet',
        'frozenset', 'Iterable', 'Iterator', 'Collection', 'Tuple', 'tuple', 'Generator',
    }
    MAPPING_CONTAINERS = {'Dict', 'dict', 'Mapping', 'MutableMapping', 'DefaultDict', 'OrderedDict'}
    # Wrappers whose first argument is the real type
    PASSTHROUGH = {'Annotated', 'Mapped', 'Final', 'ClassVar', 'Required', 'NotRequired', 'Body', 'Query'}
    UNTYPED_ARRAYS = {'list', 'List', 'tuple', 'set', 'array', 'Sequence'}
    UNTYPED_OBJECTS = {'dict', 'Dict', 'object', 'Mapping', 'Response', 'JSONResponse'}
    NULL_NAMES = {'None', 'NoneType', 'null', 'nil'}
    ANY_NAMES = {'Any', 'mixed', 'any', 'object?'}

    def __init__(self, diagnostics: Optional[DiagnosticCollector] = None):
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()

    # ------------------------------------------------------------------
    # Annotations
    # ------------------------------------------------------------------

    def parse_annotation(self, text: Optional[str]) -> TypeRef:
        """
        Convert a Python annotation expression to a TypeRef.

        Handles:
        - Simple types: int, str, bool, custom classes
        - Generic types: List[str], Dict[str, int], Optional[int]
        - Union types: Union[str, int], str | None
        - Forward references: "User"
        """
        if not text or not text.strip():
            return UNKNOWN
        try:
            node = ast.parse(text.strip(), mode='eval').body
        except SyntaxError:
            logger.debug(f"Unparseable annotation: {text}")
            return UNKNOWN
        return self._convert(node)

    def _convert(self, node: ast.expr) -> TypeRef:
        # Simple name (e.g., int, str, MyModel)
        if isinstance(node, ast.Name):
            return self._named(node.id)

        # Attribute (e.g., typing.List, datetime.datetime, models.User)
        if isinstance(node, ast.Attribute):
            return self._named(node.attr)

        # Constant: None, or a forward reference string
        if isinstance(node, ast.Constant):
            if node.value is None:
                return make_union([NULL])
            if isinstance(node.value, str):
                return self.parse_annotation(node.value)
            return UNKNOWN

        # X | Y (PEP 604)
        if isinstance(node, ast.BinOp) and isinstance(node.op, ast.BitOr):
            return make_union([self._member(node.left), self._member(node.right)])

        # Subscript (e.g., List[str], Optional[int])
        if isinstance(node, ast.Subscript):
            return self._subscript(node)

        logger.debug(f"Unknown annotation node: {ast.dump(node)}")
        return UNKNOWN

    def _member(self, node: ast.expr):
        if isinstance(node, ast.Constant) and node.value is None:
            return NULL
        return self._convert(node)

    def _named(self, name: str) -> TypeRef:
        if name in self.NULL_NAMES:
            return make_union([NULL])
        if name in self.ANY_NAMES:
            return UNKNOWN
        if name in self.TYPE_MAPPINGS:
            return self.TYPE_MAPPINGS[name]
        if name in self.UNTYPED_ARRAYS:
            return ArrayType(UNKNOWN)
        if name in self.UNTYPED_OBJECTS:
            return ObjectType()
        # Capitalized names are taken as references to a model/schema; the
        # schema generator reports the ones that never resolve.
        if name[:1].isupper():
            return ObjectType(ref=name)
        return UNKNOWN

    def _subscript(self, node: ast.Subscript) -> TypeRef:
        if isinstance(node.value, ast.Name):
            container = node.value.id
        elif isinstance(node.value, ast.Attribute):
            container = node.value.attr
        else:
            return UNKNOWN

        params = node.slice.elts if isinstance(node.slice, ast.Tuple) else [node.slice]

        if container == 'Optional':
            return make_nullable(self._convert(params[0]))

        if container == 'Union':
            return make_union([self._member(p) for p in params])

        if container in self.PASSTHROUGH:
            return self._convert(params[0])

        if container == 'Literal':
            values = []
            for p in params:
                if isinstance(p, ast.Constant):
                    values.append(NULL if p.value is None else self._literal_kind(p.value))
            return make_union(values)

        if container in self.ARRAY_CONTAINERS:
            # Tuple[int, ...] and Tuple[int, str] both become arrays
            elements = [p for p in params if not (isinstance(p, ast.Constant) and p.value is Ellipsis)]
            if not elements:
                return ArrayType(UNKNOWN)
            return ArrayType(make_union([self._convert(e) for e in elements]))

        if container in self.MAPPING_CONTAINERS:
            value = self._convert(params[1]) if len(params) >= 2 else UNKNOWN
            return ObjectType(additional=value)

        # Generic user class, e.g. Page[User]: keep the outer reference
        return self._named(container)

    # ------------------------------------------------------------------
    # Docstring type tags
    # ------------------------------------------------------------------

    def parse_doc_type(self, text: Optional[str]) -> TypeRef:
        """
        Parse a docstring type expression.

        Accepts ``int|null``, ``int or None``, ``?int``, ``int[]``,
        ``list of str``, ``array<int>``, ``Optional[int]`` and ``List[User]``.
        """
        if not text or not text.strip():
            return UNKNOWN
        members = _split_top_level(text.strip())
        if len(members) > 1:
            return make_union([self._doc_member(m) for m in members])
        return self._doc_single(members[0])

    def _doc_member(self, text: str):
        if text.strip() in self.NULL_NAMES:
            return NULL
        return self._doc_single(text)

    def _doc_single(self, text: str) -> TypeRef:
        text = text.strip().rstrip('.')
        text = re.sub(r',\s*optional$', '', text)
        if not text:
            return UNKNOWN
        if text.startswith('?'):
            return make_nullable(self._doc_single(text[1:]))
        if text.endswith('[]'):
            return ArrayType(self._doc_single(text[:-2]))
        match = re.match(r'^(?:list|array|sequence|set|iterable)\s+of\s+(.+)$', text, re.IGNORECASE)
        if match:
            return ArrayType(self.parse_doc_type(match.group(1)))
        match = re.match(r'^(?:list|array)\s*<(.+)>$', text, re.IGNORECASE)
        if match:
            return ArrayType(self.parse_doc_type(match.group(1)))
        if text in self.NULL_NAMES:
            return make_union([NULL])
        if re.match(r'^[\w.]+$', text):
            return self._named(text.rsplit('.', 1)[-1])
        return self.parse_annotation(text)

    # ------------------------------------------------------------------
    # Default literals
    # ------------------------------------------------------------------

    def literal_type(self, text: Optional[str]) -> TypeRef:
        """Type of a default-value literal such as ``20``, ``'asc'`` or ``[]``."""
        if text is None:
            return UNKNOWN
        try:
            value = ast.literal_eval(text)
        except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
            return UNKNOWN
        if value is None:
            return make_nullable(UNKNOWN)
        return self._literal_kind(value)

    def _literal_kind(self, value) -> TypeRef:
        # bool before int: True is an int
        if isinstance(value, bool):
            return _BOOL
        if isinstance(value, int):
            return _INT
        if isinstance(value, float):
            return _NUMBER
        if isinstance(value, (str, bytes)):
            return _STRING if isinstance(value, str) else ScalarType('string', 'binary')
        if isinstance(value, (list, tuple, set, frozenset)):
            if not value:
                return ArrayType(UNKNOWN)
            return ArrayType(make_union([NULL if v is None else self._literal_kind(v) for v in value]))
        if isinstance(value, dict):
            return ObjectType()
        return UNKNOWN

    # ------------------------------------------------------------------
    # Unification
    # ------------------------------------------------------------------

    def infer(self, declared: Optional[str] = None, doc_type: Optional[str] = None,
              default: Optional[str] = None, path: Optional[str] = None,
              declaration: Optional[str] = None) -> TypeRef:
        """
        Unify the available signals into one TypeRef.

        Args:
            declared: Explicit annotation source text
            doc_type: Type text from a docstring tag
            default: Default value source text
            path: File path (for diagnostics)
            declaration: Declaration name (for diagnostics)
        """
        explicit = self.parse_annotation(declared) if declared else UNKNOWN
        documented = self.parse_doc_type(doc_type) if doc_type else UNKNOWN

        if declared and not _unresolved(explicit):
            if doc_type and not _unresolved(documented) and _conflicts(explicit, documented):
                self.diagnostics.report(
                    FailureKind.TYPE_CONFLICT,
                    f"Annotation '{declared}' conflicts with documented type '{doc_type}'; using the annotation",
                    path=path,
                    declaration=declaration,
                    severity=Severity.WARNING,
                )
            return explicit

        if doc_type and not _unresolved(documented):
            return documented

        if default is not None:
            literal = self.literal_type(default)
            if not _unresolved(literal):
                return literal

        # Keep whatever partial information exists (e.g. Optional[Any])
        for candidate in (explicit, documented):
            if not candidate.is_unknown:
                return candidate
        return UNKNOWN

    def infer_argument(self, argument: Argument, doc: DocBlock, path: Optional[str] = None,
                       owner: Optional[str] = None) -> TypeRef:
        name = f"{owner}({argument.name})" if owner else argument.name
        return self.infer(argument.annotation, doc.param_type(argument.name),
                          _literal_default(argument.default), path, name)

    def infer_return(self, declaration: Declaration, doc: DocBlock, path: Optional[str] = None) -> TypeRef:
        return self.infer(declaration.annotation, doc.return_type, None, path, declaration.qualname)

    def infer_property(self, declaration: Declaration, doc_type: Optional[str],
                       path: Optional[str] = None) -> TypeRef:
        return self.infer(declaration.annotation, doc_type, declaration.value, path, declaration.qualname)


# =============================================================================
# HELPERS
# =============================================================================

def _unresolved(t: TypeRef) -> bool:
    """True when the type carries no concrete information (unknown or ?unknown)."""
    return t.strip_nullable().is_unknown


def _conflicts(explicit: TypeRef, documented: TypeRef) -> bool:
    a, b = explicit.strip_nullable(), documented.strip_nullable()
    if a == b:
        return False
    # An untyped container is compatible with its typed form
    if isinstance(a, ArrayType) and isinstance(b, ArrayType):
        return not (a.element.is_unknown or b.element.is_unknown) and a.element != b.element
    if isinstance(a, ObjectType) and isinstance(b, ObjectType):
        return bool(a.ref and b.ref and a.ref != b.ref)
    if isinstance(a, ScalarType) and isinstance(b, ScalarType):
        return a.kind != b.kind
    if isinstance(a, UnionType) and not isinstance(b, UnionType):
        return b not in a.members
    return True


def _literal_default(default: Optional[str]) -> Optional[str]:
    """Defaults like Query(20) or Field(default=1) carry the literal inside the call."""
    if default is None:
        return None
    try:
        node = ast.parse(default, mode='eval').body
    except SyntaxError:
        return default
    if isinstance(node, ast.Call):
        for keyword in node.keywords:
            if keyword.arg == 'default':
                return ast.unparse(keyword.value)
        if node.args and not (isinstance(node.args[0], ast.Constant) and node.args[0].value is Ellipsis):
            return ast.unparse(node.args[0])
        return None
    return default


def _split_top_level(text: str) -> List[str]:
    """Split on ``|`` and the word ``or`` outside brackets."""
    parts, depth, current = [], 0, ''
    i = 0
    while i < len(text):
        ch = text[i]
        if ch in '[(<{':
            depth += 1
        elif ch in '])>}':
            depth -= 1
        if depth == 0 and ch == '|':
            parts.append(current)
            current = ''
            i += 1
            continue
        if depth == 0 and text[i:i + 4] == ' or ':
            parts.append(current)
            current = ''
            i += 4
            continue
        current += ch
        i += 1
    parts.append(current)
    return [p.strip() for p in parts if p.strip()]
