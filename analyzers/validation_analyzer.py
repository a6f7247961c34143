#!/usr/bin/env python3
"""
Validation-Rule Analyzer
=========================
Parse validation declarations into per-field constraint lists and map them
onto JSON schema keywords.

Rule grammar (string form):
    "required|string|max:25"
    "in:draft,published"
    "between:1,120"
    "regex:/^[a-z]+$/"         (the rest of the string belongs to the pattern)

Rule sources:
- Validator classes: ``rules = {...}`` with optional ``message(s)`` and
  ``scene(s)`` dicts, or a ``rules()`` method returning a dict literal
- Inline decorators: ``@validate({"name": "required|string"})``

Field keys may carry a label: ``"name|User name": "required"``.
Multiple constraints on one field are conjunctive.
"""

import ast
import logging
import math
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import Declaration, DeclarationKind, SourceUnit
from .diagnostics import DiagnosticCollector, ResolutionFailure, Severity
from .types import UNKNOWN, ArrayType, ObjectType, ScalarType, TypeRef

logger = logging.getLogger("api_scanner.analyzers.validation_analyzer")

DEFAULT_VALIDATOR_BASES = ('Validate', 'Validator', 'FormRequest')


class ConstraintKind(Enum):
    REQUIRED = "required"
    TYPE = "type"
    FORMAT = "format"
    ENUM = "enum"
    MIN = "min"
    MAX = "max"
    LENGTH = "length"
    BETWEEN = "between"
    PATTERN = "pattern"
    OPAQUE = "opaque"


# Rule name → constraint kind
RULE_KINDS = {
    'required': ConstraintKind.REQUIRED,
    'require': ConstraintKind.REQUIRED,
    'in': ConstraintKind.ENUM,
    'min': ConstraintKind.MIN,
    'gte': ConstraintKind.MIN,
    'egt': ConstraintKind.MIN,
    'max': ConstraintKind.MAX,
    'lte': ConstraintKind.MAX,
    'elt': ConstraintKind.MAX,
    'length': ConstraintKind.LENGTH,
    'size': ConstraintKind.LENGTH,
    'between': ConstraintKind.BETWEEN,
    'regex': ConstraintKind.PATTERN,
    'pattern': ConstraintKind.PATTERN,
}

# Type rules → (schema type, format)
TYPE_RULES = {
    'string': ('string', None),
    'str': ('string', None),
    'integer': ('integer', None),
    'int': ('integer', None),
    'number': ('integer', None),
    'numeric': ('number', None),
    'float': ('number', None),
    'decimal': ('number', None),
    'boolean': ('boolean', None),
    'bool': ('boolean', None),
    'array': ('array', None),
    'list': ('array', None),
    'dict': ('object', None),
    'object': ('object', None),
    'file': ('string', 'binary'),
    'image': ('string', 'binary'),
}

# Format rules → (schema type, format)
FORMAT_RULES = {
    'email': ('string', 'email'),
    'url': ('string', 'uri'),
    'activeUrl': ('string', 'uri'),
    'date': ('string', 'date'),
    'dateFormat': ('string', 'date-time'),
    'date_format': ('string', 'date-time'),
    'datetime': ('string', 'date-time'),
    'uuid': ('string', 'uuid'),
    'ip': ('string', 'ipv4'),
    'ipv6': ('string', 'ipv6'),
}

# Character-class rules expressed as patterns
PATTERN_RULES = {
    'alpha': '^[A-Za-z]+$',
    'alphaNum': '^[A-Za-z0-9]+$',
    'alpha_num': '^[A-Za-z0-9]+$',
    'alphaDash': '^[A-Za-z0-9_-]+$',
    'alpha_dash': '^[A-Za-z0-9_-]+$',
    'mobile': '^1[3-9]\\d{9}$',
}

_REGEX_DELIMITED = re.compile(r'^/(.*)/[a-zA-Z]*$', re.DOTALL)


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass(frozen=True)
class Constraint:
    kind: ConstraintKind
    name: str                        # rule name as written
    params: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "name": self.name, "params": list(self.params)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Constraint":
        return cls(ConstraintKind(data["kind"]), data["name"], tuple(data.get("params", [])))


@dataclass
class ValidationRule:
    field: str
    constraints: List[Constraint] = field(default_factory=list)
    label: Optional[str] = None
    messages: Dict[str, str] = field(default_factory=dict)    # rule name → message

    @property
    def required(self) -> bool:
        return any(c.kind is ConstraintKind.REQUIRED for c in self.constraints)

    def of_kind(self, kind: ConstraintKind) -> List[Constraint]:
        return [c for c in self.constraints if c.kind is kind]

    def type_ref(self) -> TypeRef:
        """TypeRef implied by type/format rules (last one wins), or unknown."""
        result: TypeRef = UNKNOWN
        for constraint in self.constraints:
            if constraint.kind is ConstraintKind.TYPE:
                kind, fmt = TYPE_RULES[constraint.name]
            elif constraint.kind is ConstraintKind.FORMAT:
                kind, fmt = FORMAT_RULES[constraint.name]
            else:
                continue
            if kind == 'array':
                result = ArrayType(UNKNOWN)
            elif kind == 'object':
                result = ObjectType()
            else:
                result = ScalarType(kind, fmt)
        return result

    def describe(self) -> Optional[str]:
        parts = [self.label] if self.label else []
        parts.extend(self.messages[k] for k in sorted(self.messages))
        return ". ".join(parts) or None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "field": self.field,
            "constraints": [c.to_dict() for c in self.constraints],
            "label": self.label,
            "messages": dict(self.messages),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ValidationRule":
        return cls(
            field=data["field"],
            constraints=[Constraint.from_dict(c) for c in data.get("constraints", [])],
            label=data.get("label"),
            messages=dict(data.get("messages", {})),
        )


@dataclass
class RuleSet:
    """All rules of one validator (or one inline declaration), keyed by field."""
    name: str
    rules: Dict[str, ValidationRule] = field(default_factory=dict)
    scenes: Dict[str, List[str]] = field(default_factory=dict)
    module: str = ""
    path: str = ""

    def fields(self) -> List[str]:
        return list(self.rules)

    def for_scene(self, scene: Optional[str]) -> "RuleSet":
        """Rules restricted to the fields of ``scene``; unknown scenes keep every field."""
        if not scene or scene not in self.scenes:
            return self
        wanted = self.scenes[scene]
        return RuleSet(
            name=f"{self.name}.{scene}",
            rules={f: r for f, r in self.rules.items() if f in wanted},
            module=self.module,
            path=self.path,
        )

    def merge(self, other: "RuleSet") -> "RuleSet":
        """Conjunctive merge: fields are united, constraints of shared fields concatenated."""
        merged: Dict[str, ValidationRule] = {}
        for source in (self, other):
            for name, rule in source.rules.items():
                target = merged.get(name)
                if target is None:
                    merged[name] = ValidationRule(name, list(rule.constraints), rule.label, dict(rule.messages))
                    continue
                for constraint in rule.constraints:
                    if constraint not in target.constraints:
                        target.constraints.append(constraint)
                target.label = target.label or rule.label
                for key, message in rule.messages.items():
                    target.messages.setdefault(key, message)
        scenes = dict(other.scenes)
        scenes.update(self.scenes)
        return RuleSet(name=self.name or other.name, rules=merged, scenes=scenes,
                       module=self.module, path=self.path)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "module": self.module,
            "path": self.path,
            "rules": [r.to_dict() for r in self.rules.values()],
            "scenes": {k: list(v) for k, v in self.scenes.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RuleSet":
        rules = [ValidationRule.from_dict(r) for r in data.get("rules", [])]
        return cls(
            name=data["name"],
            rules={r.field: r for r in rules},
            scenes={k: list(v) for k, v in data.get("scenes", {}).items()},
            module=data.get("module", ""),
            path=data.get("path", ""),
        )


# =============================================================================
# ANALYZER
# =============================================================================

class ValidationAnalyzer:
    """Find validator classes and parse their rule declarations."""

    def __init__(self, diagnostics: Optional[DiagnosticCollector] = None,
                 validator_bases: Iterable[str] = DEFAULT_VALIDATOR_BASES):
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.validator_bases = set(validator_bases)

    def is_validator(self, declaration: Declaration) -> bool:
        if declaration.kind is not DeclarationKind.CLASS:
            return False
        for base in declaration.bases:
            if base in self.validator_bases or base.rsplit('.', 1)[-1] in self.validator_bases:
                return True
        rules = declaration.child('rules')
        return rules is not None and rules.kind is DeclarationKind.PROPERTY and _is_dict_source(rules.value)

    def analyze(self, unit: SourceUnit) -> List[RuleSet]:
        result = []
        for declaration in unit.classes():
            if self.is_validator(declaration):
                rule_set = self.analyze_class(declaration, unit)
                if rule_set is not None:
                    result.append(rule_set)
        return result

    def analyze_class(self, declaration: Declaration, unit: Optional[SourceUnit] = None) -> Optional[RuleSet]:
        path = unit.path if unit else ""
        rules = self._class_dict(declaration, ('rules',))
        if rules is None:
            self.diagnostics.record(
                ResolutionFailure("Validator declares no literal rules dict", path=path,
                                  declaration=declaration.name),
                Severity.INFO,
            )
            return None

        messages = self._class_dict(declaration, ('message', 'messages')) or {}
        scenes = self._class_dict(declaration, ('scene', 'scenes')) or {}
        rule_set = self.parse_rules(rules, name=declaration.name, messages=messages, scenes=scenes,
                                    path=path, module=unit.module if unit else "")
        logger.debug(f"Validator {declaration.name}: {len(rule_set.rules)} fields, {len(rule_set.scenes)} scenes")
        return rule_set

    def parse_rules(self, rules: Dict[Any, Any], name: str = "", messages: Optional[Dict[str, Any]] = None,
                    scenes: Optional[Dict[str, Any]] = None, path: str = "", module: str = "") -> RuleSet:
        """
        Parse a rules mapping.

        Example:
            >>> rule_set = ValidationAnalyzer().parse_rules({"name": "required|string", "age": "integer"})
            >>> rule_set.rules["name"].required, rule_set.rules["age"].required
            (True, False)
        """
        rule_set = RuleSet(name=name, path=path, module=module)
        for key, value in rules.items():
            field_name, _, label = str(key).partition('|')
            field_name = field_name.strip()
            constraints = self.parse_rule(value, path=path, declaration=f"{name}.{field_name}" if name else field_name)
            rule = ValidationRule(field=field_name, constraints=constraints, label=label.strip() or None)
            existing = rule_set.rules.get(field_name)
            if existing is not None:
                existing.constraints.extend(c for c in constraints if c not in existing.constraints)
            else:
                rule_set.rules[field_name] = rule

        for key, message in (messages or {}).items():
            field_name, _, rule_name = str(key).partition('.')
            if field_name in rule_set.rules and isinstance(message, str):
                rule_set.rules[field_name].messages[rule_name or '*'] = message

        for scene, fields in (scenes or {}).items():
            if isinstance(fields, (list, tuple)):
                rule_set.scenes[str(scene)] = [str(f) for f in fields]
        return rule_set

    def parse_rule(self, value: Any, path: str = "", declaration: Optional[str] = None) -> List[Constraint]:
        """Constraints of one field's rule value (string, list or dict form)."""
        if isinstance(value, str):
            return parse_rule_string(value)
        if isinstance(value, (list, tuple)):
            constraints: List[Constraint] = []
            for item in value:
                for constraint in self.parse_rule(item, path, declaration):
                    if constraint not in constraints:
                        constraints.append(constraint)
            return constraints
        if isinstance(value, dict):
            constraints = []
            for rule_name, param in value.items():
                if param is True:
                    constraints.append(make_constraint(str(rule_name), ''))
                elif isinstance(param, (list, tuple)):
                    constraints.append(make_constraint(str(rule_name), ','.join(str(p) for p in param)))
                elif param is not False and param is not None:
                    constraints.append(make_constraint(str(rule_name), str(param)))
            return constraints

        self.diagnostics.record(
            ResolutionFailure(f"Unsupported rule value: {value!r}", path=path, declaration=declaration),
            Severity.INFO,
        )
        return [Constraint(ConstraintKind.OPAQUE, str(value))]

    # ------------------------------------------------------------------
    # Class attributes
    # ------------------------------------------------------------------

    @staticmethod
    def _class_dict(declaration: Declaration, names: Tuple[str, ...]) -> Optional[Dict[Any, Any]]:
        for name in names:
            child = declaration.child(name)
            if child is None:
                continue
            if child.kind is DeclarationKind.PROPERTY:
                value = _literal(child.value)
            elif child.kind is DeclarationKind.METHOD:
                # def rules(self): return {...}
                value = next((v for v in map(_literal, child.returns) if isinstance(v, dict)), None)
            else:
                value = None
            if isinstance(value, dict):
                return value
        return None


# =============================================================================
# RULE STRINGS
# =============================================================================

def parse_rule_string(text: str) -> List[Constraint]:
    """
    Split a ``|``-separated rule string into constraints.

    A ``regex:``/``pattern:`` rule consumes the remainder of the string, so
    patterns may contain ``|``.
    """
    constraints: List[Constraint] = []
    remaining = text.strip()
    while remaining:
        head, sep, tail = remaining.partition('|')
        rule_name, _, param = head.partition(':')
        if RULE_KINDS.get(rule_name.strip()) is ConstraintKind.PATTERN:
            head, tail = remaining, ''
            rule_name, _, param = head.partition(':')
        rule_name = rule_name.strip()
        if rule_name:
            constraint = make_constraint(rule_name, param)
            if constraint not in constraints:
                constraints.append(constraint)
        remaining = tail.strip()
    return constraints


def make_constraint(rule_name: str, param: str) -> Constraint:
    if rule_name in TYPE_RULES:
        return Constraint(ConstraintKind.TYPE, rule_name)
    if rule_name in FORMAT_RULES:
        return Constraint(ConstraintKind.FORMAT, rule_name, (param,) if param else ())
    if rule_name in PATTERN_RULES:
        return Constraint(ConstraintKind.PATTERN, rule_name, (PATTERN_RULES[rule_name],))

    kind = RULE_KINDS.get(rule_name, ConstraintKind.OPAQUE)
    if kind is ConstraintKind.PATTERN:
        return Constraint(kind, rule_name, (param,))
    if kind is ConstraintKind.REQUIRED:
        return Constraint(kind, rule_name)
    params = tuple(p.strip() for p in param.split(',')) if param else ()
    return Constraint(kind, rule_name, params)


# =============================================================================
# SCHEMA MAPPING
# =============================================================================

def apply_to_schema(rule: ValidationRule, schema: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """
    Apply a field's constraints to a JSON schema (a new dict is returned).

    Type and format rules are applied first so that ``min``/``max`` pick the
    right keyword regardless of rule order:
        string → minLength/maxLength, array → minItems/maxItems,
        anything else → minimum/maximum.
    """
    result = dict(schema) if schema else {}
    if not result.get('type') and '$ref' not in result and 'allOf' not in result:
        result['type'] = 'string'

    for constraint in rule.constraints:
        if constraint.kind is ConstraintKind.TYPE:
            kind, fmt = TYPE_RULES[constraint.name]
            result['type'] = kind
            if fmt:
                result['format'] = fmt
            else:
                result.pop('format', None)
        elif constraint.kind is ConstraintKind.FORMAT:
            kind, fmt = FORMAT_RULES[constraint.name]
            result['type'] = kind
            result['format'] = fmt

    schema_type = result.get('type')
    for constraint in rule.constraints:
        params = constraint.params
        if constraint.kind is ConstraintKind.MIN and params:
            _set_bound(result, _bound_keyword(schema_type, 'min'), params[0])
        elif constraint.kind is ConstraintKind.MAX and params:
            _set_bound(result, _bound_keyword(schema_type, 'max'), params[0])
        elif constraint.kind is ConstraintKind.LENGTH and params:
            key_min, key_max = ('minItems', 'maxItems') if schema_type == 'array' else ('minLength', 'maxLength')
            _set_bound(result, key_min, params[0])
            _set_bound(result, key_max, params[1] if len(params) > 1 else params[0])
        elif constraint.kind is ConstraintKind.BETWEEN and len(params) >= 2:
            _set_bound(result, _bound_keyword(schema_type, 'min'), params[0])
            _set_bound(result, _bound_keyword(schema_type, 'max'), params[1])
        elif constraint.kind is ConstraintKind.ENUM and params:
            result['enum'] = [_enum_value(p, schema_type) for p in params]
        elif constraint.kind is ConstraintKind.PATTERN and params:
            result['pattern'] = _strip_delimiters(params[0])

    description = rule.describe()
    if description and 'description' not in result:
        result['description'] = description
    return result


# =============================================================================
# HELPERS
# =============================================================================

def _bound_keyword(schema_type: Optional[str], bound: str) -> str:
    if schema_type == 'string':
        return 'minLength' if bound == 'min' else 'maxLength'
    if schema_type == 'array':
        return 'minItems' if bound == 'min' else 'maxItems'
    return 'minimum' if bound == 'min' else 'maximum'


_COUNT_KEYWORDS = ('minLength', 'maxLength', 'minItems', 'maxItems')


def _number(text: str):
    """Finite int or float parsed from ``text``; None when it is not one."""
    try:
        return int(text)
    except ValueError:
        pass
    try:
        value = float(text)
    except ValueError:
        return None
    return value if math.isfinite(value) else None


def _set_bound(result: Dict[str, Any], keyword: str, text: str) -> None:
    """Set a numeric bound; a parameter that is not a usable number leaves the constraint opaque."""
    value = _number(text)
    if value is None:
        return
    if keyword in _COUNT_KEYWORDS:
        if value < 0 or value != int(value):
            return
        value = int(value)
    result[keyword] = value


def _enum_value(text: str, schema_type: Optional[str]):
    if schema_type in ('integer', 'number'):
        value = _number(text)
        return value if value is not None and str(value) == text else text
    return text


def _strip_delimiters(pattern: str) -> str:
    """``/^[a-z]+$/i`` → ``^[a-z]+$``"""
    match = _REGEX_DELIMITED.match(pattern)
    return match.group(1) if match else pattern


def _literal(text: Optional[str]) -> Any:
    if text is None:
        return None
    try:
        return ast.literal_eval(text)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return None


def _is_dict_source(text: Optional[str]) -> bool:
    return isinstance(_literal(text), dict)
