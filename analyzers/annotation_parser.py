#!/usr/bin/env python3
"""
Decorator Analyzer
===================
Parse decorator syntax attached to classes and functions into structured
annotations using AST.

Recognizes common decorator families:
- @app.get("/users") / @router.route("/x", methods=["POST"]) → route
- @jwt_required / @login_required / @require_api_key → auth
- @permission_required("admin") → permission
- @middleware("auth") → middleware
- @validate(UserValidate) / @validate({"name": "required"}) → validation
- @deprecated → deprecation
- @responds(200, User) / @marshal_with(User) → response
- @tags("users") → tag

Unknown decorators pass through as opaque annotations. Arguments are read with
``ast.literal_eval``; names and attributes become dotted strings and anything
else falls back to its raw source text.
"""

import ast
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger("api_scanner.analyzers.annotation_parser")


class AnnotationKind(Enum):
    ROUTE = "route"
    AUTH = "auth"
    PERMISSION = "permission"
    MIDDLEWARE = "middleware"
    VALIDATE = "validate"
    DEPRECATED = "deprecated"
    RESPONSE = "response"
    TAG = "tag"
    OPAQUE = "opaque"


@dataclass(frozen=True)
class RawValue:
    """An argument that could not be read as a literal; keeps its source text."""
    source: str

    def __str__(self) -> str:
        return self.source


@dataclass
class Annotation:
    name: str                           # full dotted decorator name, e.g. "app.get"
    kind: AnnotationKind
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)
    raw: str = ""

    @property
    def short_name(self) -> str:
        return self.name.rsplit(".", 1)[-1]

    def get(self, key: str, position: Optional[int] = None, default: Any = None) -> Any:
        if key in self.kwargs:
            return self.kwargs[key]
        if position is not None and position < len(self.args):
            return self.args[position]
        return default


# Decorator short name → HTTP method for route decorators
ROUTE_METHODS = {
    'get': 'GET',
    'post': 'POST',
    'put': 'PUT',
    'patch': 'PATCH',
    'delete': 'DELETE',
    'head': 'HEAD',
    'options': 'OPTIONS',
    'route': None,       # methods come from the "methods" argument
    'api_route': None,
    'add_route': None,
}

# Auth decorator → security scheme (name is the component key)
AUTH_PATTERNS = {
    # JWT / Bearer token
    'jwt_required': {'type': 'http', 'scheme': 'bearer', 'bearerFormat': 'JWT', 'name': 'bearerAuth'},
    'jwt': {'type': 'http', 'scheme': 'bearer', 'bearerFormat': 'JWT', 'name': 'bearerAuth'},
    'requires_jwt': {'type': 'http', 'scheme': 'bearer', 'bearerFormat': 'JWT', 'name': 'bearerAuth'},
    'token_required': {'type': 'http', 'scheme': 'bearer', 'name': 'bearerAuth'},
    'authorize': {'type': 'http', 'scheme': 'bearer', 'name': 'bearerAuth'},
    'protected': {'type': 'http', 'scheme': 'bearer', 'name': 'bearerAuth'},
    'require_auth': {'type': 'http', 'scheme': 'bearer', 'name': 'bearerAuth'},

    # Session / Cookie
    'login_required': {'type': 'apiKey', 'in': 'cookie', 'name': 'cookieAuth'},
    'auth_required': {'type': 'apiKey', 'in': 'cookie', 'name': 'cookieAuth'},
    'authenticated': {'type': 'apiKey', 'in': 'cookie', 'name': 'cookieAuth'},

    # API Key
    'api_key_required': {'type': 'apiKey', 'in': 'header', 'name': 'apiKeyAuth'},
    'require_api_key': {'type': 'apiKey', 'in': 'header', 'name': 'apiKeyAuth'},
    'apikey': {'type': 'apiKey', 'in': 'header', 'name': 'apiKeyAuth'},

    # OAuth2
    'oauth_required': {'type': 'oauth2', 'name': 'oauth2'},
    'oauth2': {'type': 'oauth2', 'name': 'oauth2'},

    # Basic Auth
    'basic_auth': {'type': 'http', 'scheme': 'basic', 'name': 'basicAuth'},
    'http_basic': {'type': 'http', 'scheme': 'basic', 'name': 'basicAuth'},
}

PERMISSION_PATTERNS = [
    'permission_required',
    'require_permission',
    'role_required',
    'require_role',
    'has_role',
    'has_permission',
    'requires_roles',
]

KIND_BY_NAME = {
    'middleware': AnnotationKind.MIDDLEWARE,
    'use_middleware': AnnotationKind.MIDDLEWARE,
    'validate': AnnotationKind.VALIDATE,
    'validator': AnnotationKind.VALIDATE,
    'validate_with': AnnotationKind.VALIDATE,
    'expects': AnnotationKind.VALIDATE,
    'deprecated': AnnotationKind.DEPRECATED,
    'response': AnnotationKind.RESPONSE,
    'responds': AnnotationKind.RESPONSE,
    'returns': AnnotationKind.RESPONSE,
    'marshal_with': AnnotationKind.RESPONSE,
    'tags': AnnotationKind.TAG,
    'tag': AnnotationKind.TAG,
    'api_tag': AnnotationKind.TAG,
}

# Class-level decorators that set a path prefix for every method route
PREFIX_DECORATORS = {'route_prefix', 'prefix', 'group', 'controller'}


class AnnotationParser:
    """
    Parse decorator source text into structured annotations.

    Works on the decorator strings recorded by the source parser, so it
    never needs the original file.
    """

    @staticmethod
    def parse_all(decorators: Iterable[str]) -> List[Annotation]:
        """
        Parse every decorator of a declaration, preserving order.

        Example:
            >>> AnnotationParser.parse_all(['app.get("/users/{id}")', 'jwt_required'])
            [Annotation(name='app.get', kind=<AnnotationKind.ROUTE: 'route'>, args=['/users/{id}'], ...),
             Annotation(name='jwt_required', kind=<AnnotationKind.AUTH: 'auth'>, ...)]
        """
        return [AnnotationParser.parse(d) for d in decorators]

    @staticmethod
    def parse(source: str) -> Annotation:
        """Parse a single decorator expression (without the leading ``@``)."""
        text = source.strip().lstrip('@')
        try:
            node = ast.parse(text, mode='eval').body
        except SyntaxError:
            logger.debug(f"Unparseable decorator kept opaque: {text}")
            return Annotation(name=text, kind=AnnotationKind.OPAQUE, raw=text)

        call = node if isinstance(node, ast.Call) else None
        target = call.func if call else node
        name = _dotted_name(target) or ast.unparse(target)

        args: List[Any] = []
        kwargs: Dict[str, Any] = {}
        if call:
            args = [_literal(a) for a in call.args]
            for keyword in call.keywords:
                if keyword.arg is None:
                    # **options: keep as raw source under a reserved key
                    kwargs.setdefault('**', []).append(ast.unparse(keyword.value))
                else:
                    kwargs[keyword.arg] = _literal(keyword.value)

        annotation = Annotation(name=name, kind=AnnotationParser.classify(name), args=args, kwargs=kwargs, raw=text)
        logger.debug(f"Parsed decorator @{name} as {annotation.kind.value}")
        return annotation

    @staticmethod
    def classify(name: str) -> AnnotationKind:
        short = name.rsplit('.', 1)[-1]
        lower = short.lower()

        # "route" must be qualified (app.route, bp.route) or a bare "route"
        if lower in ROUTE_METHODS and ('.' in name or lower in ('route', 'api_route')):
            return AnnotationKind.ROUTE
        if lower in AUTH_PATTERNS:
            return AnnotationKind.AUTH
        if any(pattern in lower for pattern in PERMISSION_PATTERNS):
            return AnnotationKind.PERMISSION
        if lower in KIND_BY_NAME:
            return KIND_BY_NAME[lower]
        return AnnotationKind.OPAQUE

    @staticmethod
    def route_info(annotation: Annotation) -> Optional[Dict[str, Any]]:
        """
        Route details of a ROUTE annotation.

        Returns:
            {"path": str, "methods": [str, ...]} or None if no path literal was found
        """
        if annotation.kind is not AnnotationKind.ROUTE:
            return None
        path = annotation.get('path', 0)
        if path is None:
            path = annotation.get('rule')
        if not isinstance(path, str):
            return None

        method = ROUTE_METHODS.get(annotation.short_name.lower())
        if method:
            methods = [method]
        else:
            declared = annotation.get('methods', 1)
            if isinstance(declared, str):
                methods = [declared.upper()]
            elif isinstance(declared, (list, tuple)):
                methods = [str(m).upper() for m in declared]
            else:
                methods = ['GET']
        return {"path": path, "methods": methods}

    @staticmethod
    def prefix(annotations: Iterable[Annotation]) -> str:
        """Path prefix from a class-level prefix decorator, or ''."""
        for annotation in annotations:
            if annotation.short_name.lower() in PREFIX_DECORATORS:
                value = annotation.get('prefix', 0)
                if isinstance(value, str):
                    return value
        return ''

    @staticmethod
    def security(annotations: Iterable[Annotation]) -> Dict[str, Any]:
        """
        Security schemes and requirements declared by auth decorators.

        Returns:
            {"security_schemes": {...}, "security": [...], "permissions": [...]}
        """
        schemes: Dict[str, Dict[str, Any]] = {}
        security: List[Dict[str, List[str]]] = []
        permissions: List[str] = []

        for annotation in annotations:
            if annotation.kind is AnnotationKind.AUTH:
                info = dict(AUTH_PATTERNS[annotation.short_name.lower()])
                scheme_name = info.pop('name')
                if info.get('type') == 'apiKey' and 'in' in info:
                    info.setdefault('name', 'X-API-Key' if info['in'] == 'header' else 'session')
                schemes[scheme_name] = info
                if {scheme_name: []} not in security:
                    security.append({scheme_name: []})
            elif annotation.kind is AnnotationKind.PERMISSION:
                value = annotation.get('permission', 0)
                if isinstance(value, str):
                    permissions.append(value)

        result: Dict[str, Any] = {}
        if schemes:
            result['security_schemes'] = schemes
        if security:
            result['security'] = security
        if permissions:
            result['permissions'] = permissions
        return result

    @staticmethod
    def middleware(annotations: Iterable[Annotation]) -> List[str]:
        names = []
        for annotation in annotations:
            if annotation.kind is AnnotationKind.MIDDLEWARE:
                for value in annotation.args:
                    items = value if isinstance(value, (list, tuple)) else [value]
                    names.extend(str(v) for v in items)
        return names


# =============================================================================
# HELPERS
# =============================================================================

def _dotted_name(node: ast.expr) -> Optional[str]:
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        parent = _dotted_name(node.value)
        return f"{parent}.{node.attr}" if parent else node.attr
    return None


def _literal(node: ast.expr) -> Any:
    """Literal value of an argument node, recursing into containers."""
    try:
        return ast.literal_eval(node)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        pass

    if isinstance(node, ast.Dict):
        result = {}
        for key, value in zip(node.keys, node.values):
            if key is None:
                continue
            k = _literal(key)
            result[k if isinstance(k, (str, int, float, bool)) else str(k)] = _literal(value)
        return result
    if isinstance(node, (ast.List, ast.Tuple, ast.Set)):
        return [_literal(e) for e in node.elts]

    dotted = _dotted_name(node)
    if dotted:
        return dotted
    return RawValue(ast.unparse(node))
