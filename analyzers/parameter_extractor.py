#!/usr/bin/env python3
"""
Parameter Extractor
===================
Build the parameter list of one operation from three sources:

1. Path variables of the route template (always required)
   - typed by the handler argument of the same name when it has a type,
     else by the template converter (<int:id>, {id:uuid}), else string
2. Handler arguments, typed by the type inference engine
   - ``Query()``, ``Path()``, ``Body()``, ``Header()``, ``Cookie()``,
     ``Form()``/``File()`` defaults select the location
   - object-typed arguments go to the request body
3. Validation rules attached with ``@validate(...)`` on the handler or its class
   - fields without a matching argument go to the body, except for
     GET/DELETE/HEAD where they become query parameters
   - a ``required`` rule always makes the parameter required
"""

import ast
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .annotation_parser import Annotation, AnnotationKind
from .base import Argument, ArgumentKind
from .diagnostics import DiagnosticCollector, ResolutionFailure, Severity
from .docblock_parser import DocBlock, DocBlockParser
from .route_analyzer import Route
from .type_inference import TypeInferenceEngine
from .types import ArrayType, NullableType, ObjectType, ScalarType, TypeRef
from .validation_analyzer import RuleSet, ValidationAnalyzer, ValidationRule

logger = logging.getLogger("api_scanner.analyzers.parameter_extractor")


class ParameterLocation(Enum):
    PATH = "path"
    QUERY = "query"
    HEADER = "header"
    COOKIE = "cookie"
    BODY = "body"


@dataclass
class Parameter:
    name: str
    location: ParameterLocation
    type: TypeRef
    required: bool = False
    description: Optional[str] = None
    default: Any = None
    rule: Optional[ValidationRule] = None
    constraints: Dict[str, Any] = field(default_factory=dict)
    media_type: Optional[str] = None    # multipart/form-data for Form()/File()


# Default call → location
LOCATION_CALLS = {
    'Query': ParameterLocation.QUERY,
    'Path': ParameterLocation.PATH,
    'Body': ParameterLocation.BODY,
    'Header': ParameterLocation.HEADER,
    'Cookie': ParameterLocation.COOKIE,
    'Form': ParameterLocation.BODY,
    'File': ParameterLocation.BODY,
}

# Arguments that are framework plumbing, not API parameters
SKIPPED_ARGUMENTS = {'self', 'cls', 'request', 'req', 'response', 'res', 'db', 'session', 'background_tasks'}
SKIPPED_ANNOTATIONS = {'Request', 'HttpRequest', 'Response', 'Session', 'AsyncSession', 'BackgroundTasks', 'WebSocket'}
SKIPPED_DEFAULTS = {'Depends', 'Security'}

BODYLESS_METHODS = {'GET', 'DELETE', 'HEAD', 'OPTIONS'}

# Template converter → (type, format)
TYPE_MAPPINGS = {
    # Python types
    'int': ('integer', None),
    'integer': ('integer', None),
    'float': ('number', None),
    'str': ('string', None),
    'string': ('string', None),
    'bool': ('boolean', None),
    'boolean': ('boolean', None),
    'uuid': ('string', 'uuid'),
    'path': ('string', None),
    'slug': ('string', None),

    # ASP.NET-style constraints
    'guid': ('string', 'uuid'),
    'long': ('integer', 'int64'),
    'decimal': ('number', None),
    'datetime': ('string', 'date-time'),

    # Regex constraints
    r'\d+': ('integer', None),
    '[0-9]+': ('integer', None),
}


class ParameterExtractor:
    """Extract operation parameters for a bound route."""

    def __init__(self, type_engine: Optional[TypeInferenceEngine] = None,
                 diagnostics: Optional[DiagnosticCollector] = None):
        self.type_engine = type_engine or TypeInferenceEngine(diagnostics)
        self.diagnostics = diagnostics if diagnostics is not None else self.type_engine.diagnostics
        self.validation = ValidationAnalyzer(self.diagnostics)

    def extract(self, route: Route, rule_sets: Optional[Mapping[str, RuleSet]] = None) -> List[Parameter]:
        """
        All parameters of ``route``, path variables first.

        Args:
            route: Bound route
            rule_sets: Validator rule sets of the build, keyed by class name

        Returns:
            Ordered list of Parameter (unique by name)

        Example:
            >>> # def show(self, id: int) bound to GET /items/{id}
            >>> [(p.name, p.location.value, str(p.type), p.required) for p in extractor.extract(route)]
            [('id', 'path', 'integer', True)]
        """
        doc = DocBlockParser.parse(route.handler.doc)
        path = route.source_path
        owner = route.handler.qualname

        arguments = [a for a in route.handler.arguments if not _skipped(a)]
        typed = {a.name: self.type_engine.infer_argument(a, doc, path, owner) for a in arguments}

        parameters: Dict[str, Parameter] = {}

        # 1. Path variables
        for name in route.path_variables:
            declared = typed.get(name)
            if declared is not None and not declared.strip_nullable().is_unknown:
                param_type = declared.strip_nullable()
            else:
                param_type = template_type(route.path_hints.get(name))
            parameters[name] = Parameter(
                name=name,
                location=ParameterLocation.PATH,
                type=param_type,
                required=True,
                description=doc.param_description(name) or generate_description(name, param_type),
            )

        # 2. Handler arguments
        for argument in arguments:
            if argument.name in parameters:
                continue
            parameter = self._argument(argument, typed[argument.name], doc)
            if parameter.location is ParameterLocation.PATH:
                # Path() on a variable the template does not declare
                self.diagnostics.record(
                    ResolutionFailure(f"Path parameter '{parameter.name}' is not in template {route.path}",
                                      path=path, declaration=owner),
                    Severity.WARNING,
                )
                parameter.location = ParameterLocation.QUERY
            parameters[parameter.name] = parameter

        # 3. Validation rules
        rule_set = self.collect_rules(route, rule_sets or {})
        if rule_set is not None:
            default_location = (ParameterLocation.QUERY if route.method in BODYLESS_METHODS
                                else ParameterLocation.BODY)
            for name, rule in rule_set.rules.items():
                existing = parameters.get(name)
                if existing is not None:
                    existing.rule = rule
                    existing.required = existing.required or rule.required
                    continue
                rule_type = rule.type_ref()
                parameters[name] = Parameter(
                    name=name,
                    location=default_location,
                    type=rule_type if not rule_type.is_unknown else ScalarType('string'),
                    required=rule.required,
                    description=rule.label,
                    rule=rule,
                )

        result = list(parameters.values())
        if result:
            logger.debug(f"Extracted {len(result)} parameters for {route.method} {route.path}")
        return result

    def _argument(self, argument: Argument, param_type: TypeRef, doc: DocBlock) -> Parameter:
        call = _default_call(argument.default)
        call_name = _call_name(call) if call is not None else None
        location = LOCATION_CALLS.get(call_name) if call_name else None
        media_type = 'multipart/form-data' if call_name in ('Form', 'File') else None

        name = argument.name
        description = doc.param_description(argument.name)
        constraints: Dict[str, Any] = {}
        if call is not None and location is not None:
            required = _call_required(call)
            alias = _keyword_literal(call, 'alias')
            if isinstance(alias, str):
                name = alias
            description = description or _keyword_literal(call, 'description')
            constraints = _call_constraints(call)
        else:
            required = not argument.has_default
        if isinstance(param_type, NullableType):
            required = False

        if location is None:
            location = ParameterLocation.BODY if _is_object(param_type) else ParameterLocation.QUERY

        return Parameter(
            name=name,
            location=location,
            type=param_type,
            required=required,
            description=description,
            default=_default_value(argument.default, call),
            constraints=constraints,
            media_type=media_type,
        )

    # ------------------------------------------------------------------
    # Validation rules
    # ------------------------------------------------------------------

    def collect_rules(self, route: Route, rule_sets: Mapping[str, RuleSet]) -> Optional[RuleSet]:
        """
        Rules declared by ``@validate`` on the route's class and handler, merged.

        Accepts ``@validate(UserValidate)``, ``@validate("User.create")`` (scene
        after the dot), ``@validate(UserValidate, scene="create")`` and inline
        ``@validate({"name": "required"})``.
        """
        merged: Optional[RuleSet] = None
        for annotation in list(route.owner_annotations) + list(route.annotations):
            if annotation.kind is not AnnotationKind.VALIDATE:
                continue
            rule_set = self._annotation_rules(annotation, rule_sets, route)
            if rule_set is None:
                continue
            merged = rule_set if merged is None else merged.merge(rule_set)
        return merged

    def _annotation_rules(self, annotation: Annotation, rule_sets: Mapping[str, RuleSet],
                          route: Route) -> Optional[RuleSet]:
        target = annotation.get('rules', 0)
        if target is None:
            target = annotation.get('validator')
        scene = annotation.get('scene')

        if isinstance(target, dict):
            return self.validation.parse_rules(target, name=f"{route.handler.qualname}.inline",
                                               path=route.source_path)
        if not isinstance(target, str):
            return None

        name = target
        rule_set = _find_rule_set(rule_sets, name)
        if rule_set is None and '.' in name:
            # "User.create": validator name plus scene
            name, _, dotted_scene = name.rpartition('.')
            rule_set = _find_rule_set(rule_sets, name)
            scene = scene or dotted_scene
        if rule_set is None:
            self.diagnostics.record(
                ResolutionFailure(f"Unknown validator '{target}'", path=route.source_path,
                                  declaration=route.handler.qualname),
                Severity.WARNING,
            )
            return None
        return rule_set.for_scene(scene if isinstance(scene, str) else None)


# =============================================================================
# HELPERS
# =============================================================================

def template_type(hint: Optional[str]) -> TypeRef:
    """TypeRef of a template converter such as ``int`` or ``uuid``; string when absent."""
    if not hint:
        return ScalarType('string')
    kind, fmt = TYPE_MAPPINGS.get(hint.lower(), TYPE_MAPPINGS.get(hint, ('string', None)))
    return ScalarType(kind, fmt)


def generate_description(param_name: str, param_type: TypeRef) -> str:
    """
    Generate basic description for parameter.

    Converts snake_case to Title Case and names identifiers as such.
    """
    readable_name = param_name.replace('_', ' ').title()
    lower = param_name.lower()
    kind = param_type.kind if isinstance(param_type, ScalarType) else None

    if 'uuid' in lower or (isinstance(param_type, ScalarType) and param_type.format == 'uuid'):
        return f"UUID for {readable_name}"
    if kind == 'integer' or lower == 'id' or lower.endswith('_id'):
        return f"{readable_name} identifier"
    if kind == 'boolean':
        return f"Flag indicating {readable_name.lower()}"
    return readable_name


def _skipped(argument: Argument) -> bool:
    if argument.kind in (ArgumentKind.VAR_POSITIONAL, ArgumentKind.VAR_KEYWORD):
        return True
    if argument.name in SKIPPED_ARGUMENTS:
        return True
    if argument.annotation and argument.annotation.rsplit('.', 1)[-1] in SKIPPED_ANNOTATIONS:
        return True
    call = _default_call(argument.default)
    return call is not None and _call_name(call) in SKIPPED_DEFAULTS


def _is_object(t: TypeRef) -> bool:
    inner = t.strip_nullable()
    if isinstance(inner, ArrayType):
        inner = inner.element.strip_nullable()
    return isinstance(inner, ObjectType)


def _find_rule_set(rule_sets: Mapping[str, RuleSet], name: str) -> Optional[RuleSet]:
    short = name.strip("'\"").rsplit('.', 1)[-1]
    for candidate in (name, short, f"{short}Validate", f"{short}Validator"):
        if candidate in rule_sets:
            return rule_sets[candidate]
    return None


def _default_call(default: Optional[str]) -> Optional[ast.Call]:
    if not default:
        return None
    try:
        node = ast.parse(default, mode='eval').body
    except SyntaxError:
        return None
    return node if isinstance(node, ast.Call) else None


def _call_name(call: ast.Call) -> Optional[str]:
    if isinstance(call.func, ast.Name):
        return call.func.id
    if isinstance(call.func, ast.Attribute):
        return call.func.attr
    return None


def _keyword_literal(call: ast.Call, name: str) -> Any:
    for keyword in call.keywords:
        if keyword.arg == name:
            try:
                return ast.literal_eval(keyword.value)
            except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
                return None
    return None


def _call_required(call: ast.Call) -> bool:
    """``Query(...)`` / ``Query()`` / ``Query(default=...)`` mark a required parameter."""
    default = None
    if call.args:
        default = call.args[0]
    for keyword in call.keywords:
        if keyword.arg == 'default':
            default = keyword.value
        elif keyword.arg == 'default_factory':
            return False
    if default is None:
        return True
    return isinstance(default, ast.Constant) and default.value is Ellipsis


def _call_constraints(call: ast.Call) -> Dict[str, Any]:
    mapping = {
        'ge': 'minimum', 'le': 'maximum', 'gt': 'exclusiveMinimum', 'lt': 'exclusiveMaximum',
        'min_length': 'minLength', 'max_length': 'maxLength', 'pattern': 'pattern', 'regex': 'pattern',
    }
    constraints = {}
    for keyword, schema_key in mapping.items():
        value = _keyword_literal(call, keyword)
        if value is not None:
            constraints[schema_key] = value
    return constraints


def _default_value(default: Optional[str], call: Optional[ast.Call]) -> Any:
    if default is None:
        return None
    if call is not None:
        candidates: List[ast.expr] = list(call.args[:1])
        candidates += [k.value for k in call.keywords if k.arg == 'default']
        for node in candidates:
            try:
                value = ast.literal_eval(node)
            except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
                continue
            return None if value is Ellipsis else value
        return None
    try:
        return ast.literal_eval(default)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return None


def split_by_location(parameters: List[Parameter]) -> Tuple[List[Parameter], List[Parameter]]:
    """(non-body parameters, body fields)"""
    plain = [p for p in parameters if p.location is not ParameterLocation.BODY]
    body = [p for p in parameters if p.location is ParameterLocation.BODY]
    return plain, body
