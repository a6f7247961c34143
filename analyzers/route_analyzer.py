#!/usr/bin/env python3
"""
Route Analyzer
==============
Bind HTTP routes to handler declarations.

Routes come from two places:
- External bindings ``(method, path, handler, middleware)`` loaded from
  configuration, e.g. ``("GET", "/users/<int:id>", "UserController@show", [])``
- Decorator-declared routes (``@app.get("/users/{id}")``,
  ``@router.route("/x", methods=["POST"])``) with an optional class-level
  ``@route_prefix("/api")``

Handlers are looked up in the declaration index; nothing is imported.

Path templates are normalized to ``{name}`` variables:
- Flask/Django: /users/<int:id> → /users/{id}
- Express: /users/:id → /users/{id}
- Optional: /users/{id?} → /users/{id}
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .annotation_parser import Annotation, AnnotationKind, AnnotationParser
from .base import Declaration, DeclarationIndex, DeclarationKind, SourceUnit
from .diagnostics import DiagnosticCollector, ResolutionFailure, Severity

logger = logging.getLogger("api_scanner.analyzers.route_analyzer")

HTTP_METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE', 'HEAD', 'OPTIONS')
DEFAULT_ANY_METHODS = ('GET', 'POST', 'PUT', 'PATCH', 'DELETE')

# Resource (REST) bindings expand to these controller actions
RESOURCE_ACTIONS = (
    ('index', 'GET', ''),
    ('create', 'GET', '/create'),
    ('store', 'POST', ''),
    ('show', 'GET', '/{id}'),
    ('edit', 'GET', '/{id}/edit'),
    ('update', 'PUT', '/{id}'),
    ('delete', 'DELETE', '/{id}'),
    ('destroy', 'DELETE', '/{id}'),
)

_FLASK_VARIABLE = re.compile(r'<(?:(\w+):)?(\w+)>')
_BRACE_VARIABLE = re.compile(r'\{(\w+)\??(?::([^}]+))?\}')
_EXPRESS_VARIABLE = re.compile(r'(?<=/):(\w+)\??')
_VARIABLE = re.compile(r'\{(\w+)\}')


@dataclass(frozen=True)
class RouteBinding:
    """One externally declared route."""
    method: str
    path: str
    handler: str
    middleware: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> List["RouteBinding"]:
        """
        Bindings described by a dict; ``methods`` may list several verbs.

        Example:
            >>> RouteBinding.from_dict({"methods": ["GET", "POST"], "path": "/x", "handler": "x"})
            [RouteBinding(method='GET', ...), RouteBinding(method='POST', ...)]
        """
        methods = data.get('methods') or [data.get('method', 'GET')]
        if isinstance(methods, str):
            methods = [methods]
        middleware = data.get('middleware') or ()
        if isinstance(middleware, str):
            middleware = (middleware,)
        return [
            cls(str(m).upper(), str(data['path']), str(data['handler']), tuple(str(x) for x in middleware))
            for m in methods
        ]


@dataclass
class Route:
    method: str
    path: str                                   # normalized template
    handler: Declaration
    unit: SourceUnit
    owner: Optional[Declaration] = None         # controller class for methods
    middleware: List[str] = field(default_factory=list)
    path_hints: Dict[str, str] = field(default_factory=dict)    # variable → converter ("int", "uuid", ...)
    annotations: List[Annotation] = field(default_factory=list)
    owner_annotations: List[Annotation] = field(default_factory=list)
    source: str = "binding"                     # "binding" or "decorator"

    @property
    def source_path(self) -> str:
        return self.unit.path

    @property
    def handler_name(self) -> str:
        return f"{self.unit.module}.{self.handler.qualname}" if self.unit.module else self.handler.qualname

    @property
    def operation_id(self) -> str:
        base = self.handler.qualname.replace('.', '_')
        return f"{base}_{self.method.lower()}"

    @property
    def tag(self) -> str:
        if self.owner is not None:
            name = re.sub(r'(Controller|View|ViewSet|Resource|Handler|API|Api)$', '', self.owner.name)
            return name or self.owner.name
        return self.unit.module.rsplit('.', 1)[-1] if self.unit.module else 'default'

    @property
    def path_variables(self) -> List[str]:
        return _VARIABLE.findall(self.path)

    def specificity(self) -> Tuple[int, int]:
        """(static characters, wildcard count) of the path template."""
        wildcards = len(self.path_variables)
        static = len(_VARIABLE.sub('', self.path))
        return static, wildcards

    def shape(self) -> str:
        return _VARIABLE.sub('{}', self.path)

    def sort_key(self):
        static, wildcards = self.specificity()
        return (-static, wildcards, self.path, self.method)


class RouteAnalyzer:
    """Produce the deduplicated, ordered route list of a build."""

    def __init__(self, index: DeclarationIndex, diagnostics: Optional[DiagnosticCollector] = None,
                 any_methods: Iterable[str] = DEFAULT_ANY_METHODS, decorator_routes: bool = True):
        self.index = index
        self.diagnostics = diagnostics if diagnostics is not None else DiagnosticCollector()
        self.any_methods = [m.upper() for m in any_methods]
        self.decorator_routes = decorator_routes

    def analyze(self, bindings: Iterable[RouteBinding] = (), units: Iterable[SourceUnit] = ()) -> List[Route]:
        routes = self.bind(bindings)
        if self.decorator_routes:
            routes.extend(self.discover(units))
        result = self.deduplicate(routes)
        logger.info(f"Route analysis: {len(result)} routes ({len(routes) - len(result)} duplicates dropped)")
        return result

    # ------------------------------------------------------------------
    # External bindings
    # ------------------------------------------------------------------

    def bind(self, bindings: Iterable[RouteBinding]) -> List[Route]:
        routes = []
        for binding in bindings:
            method = binding.method.upper()
            if method == 'RESOURCE':
                routes.extend(self._resource(binding))
                continue

            found = self.resolve_handler(binding.handler)
            if found is None:
                self.diagnostics.record(
                    ResolutionFailure(
                        f"Cannot bind {method} {binding.path}: handler '{binding.handler}' not found",
                        declaration=binding.handler,
                    ),
                    Severity.WARNING,
                )
                continue

            unit, handler, owner = found
            path, hints = normalize_path(binding.path)
            for verb in self._expand(method):
                routes.append(self._route(verb, path, hints, handler, unit, owner, list(binding.middleware)))
        return routes

    def resolve_handler(self, handler: str) -> Optional[Tuple[SourceUnit, Declaration, Optional[Declaration]]]:
        """
        Find the declaration a handler identifier names.

        Accepts ``pkg.mod.Class.method``, ``Class.method``, ``Class@method``,
        ``pkg.mod:func`` and ``func``.
        """
        name = handler.strip().replace('@', '.').replace(':', '.').replace('\\', '.')
        found = self.index.lookup(name)
        if found is None:
            return None
        unit, declaration, owner = found
        if declaration.kind is DeclarationKind.CLASS:
            # A class-based view: bind its __call__/dispatch if present
            for candidate in ('__call__', 'dispatch', 'handle'):
                method = declaration.child(candidate)
                if method is not None and method.kind is DeclarationKind.METHOD:
                    return unit, method, declaration
            return None
        return found

    def _resource(self, binding: RouteBinding) -> List[Route]:
        found = self.index.find_class(binding.handler)
        if found is None:
            self.diagnostics.record(
                ResolutionFailure(f"Cannot bind resource {binding.path}: controller '{binding.handler}' not found",
                                  declaration=binding.handler),
                Severity.WARNING,
            )
            return []
        unit, controller = found
        routes = []
        for action, verb, suffix in RESOURCE_ACTIONS:
            method = controller.child(action)
            if method is None or method.kind is not DeclarationKind.METHOD:
                continue
            path, hints = normalize_path(binding.path.rstrip('/') + suffix)
            routes.append(self._route(verb, path, hints, method, unit, controller, list(binding.middleware)))
        return routes

    def _expand(self, method: str) -> List[str]:
        if method in ('ANY', '*'):
            return list(self.any_methods)
        return [method]

    # ------------------------------------------------------------------
    # Decorator routes
    # ------------------------------------------------------------------

    def discover(self, units: Iterable[SourceUnit]) -> List[Route]:
        routes = []
        for unit in units:
            for declaration in unit.declarations:
                if declaration.kind is DeclarationKind.FUNCTION:
                    routes.extend(self._decorated(declaration, unit, None, [], ''))
                elif declaration.kind is DeclarationKind.CLASS:
                    owner_annotations = AnnotationParser.parse_all(declaration.decorators)
                    prefix = AnnotationParser.prefix(owner_annotations)
                    for method in declaration.methods:
                        routes.extend(self._decorated(method, unit, declaration, owner_annotations, prefix))
        return routes

    def _decorated(self, handler: Declaration, unit: SourceUnit, owner: Optional[Declaration],
                   owner_annotations: List[Annotation], prefix: str) -> List[Route]:
        annotations = AnnotationParser.parse_all(handler.decorators)
        routes = []
        for annotation in annotations:
            info = AnnotationParser.route_info(annotation)
            if info is None:
                if annotation.kind is AnnotationKind.ROUTE:
                    self.diagnostics.record(
                        ResolutionFailure(f"Route decorator @{annotation.name} has no literal path",
                                          path=unit.path, declaration=handler.qualname),
                        Severity.WARNING,
                    )
                continue
            path, hints = normalize_path(_join_paths(prefix, info['path']))
            middleware = AnnotationParser.middleware(owner_annotations) + AnnotationParser.middleware(annotations)
            for method in info['methods']:
                for verb in self._expand(method.upper()):
                    route = self._route(verb, path, hints, handler, unit, owner, middleware, source='decorator')
                    routes.append(route)
        return routes

    def _route(self, method, path, hints, handler, unit, owner, middleware, source='binding') -> Route:
        return Route(
            method=method,
            path=path,
            handler=handler,
            unit=unit,
            owner=owner,
            middleware=list(middleware),
            path_hints=dict(hints),
            annotations=AnnotationParser.parse_all(handler.decorators),
            owner_annotations=AnnotationParser.parse_all(owner.decorators) if owner is not None else [],
            source=source,
        )

    # ------------------------------------------------------------------
    # Ordering
    # ------------------------------------------------------------------

    @staticmethod
    def deduplicate(routes: List[Route]) -> List[Route]:
        """
        Keep one route per (method, path shape), preferring the most specific:
        a template with typed variables (``<int:id>``) beats an untyped one.

        Ties keep the earlier route, so external bindings win over decorators.
        The result is ordered most specific first, then by path and method.
        """
        chosen: Dict[Tuple[str, str], Route] = {}
        for route in routes:
            key = (route.method, route.shape())
            current = chosen.get(key)
            if current is None or len(route.path_hints) > len(current.path_hints):
                chosen[key] = route
        return sorted(chosen.values(), key=Route.sort_key)


# =============================================================================
# HELPERS
# =============================================================================

def normalize_path(path: str) -> Tuple[str, Dict[str, str]]:
    """
    Normalize a path template and collect converter hints.

    Example:
        >>> normalize_path("users/<int:user_id>/posts/:slug")
        ('/users/{user_id}/posts/{slug}', {'user_id': 'int'})
    """
    hints: Dict[str, str] = {}

    def flask(match):
        if match.group(1):
            hints[match.group(2)] = match.group(1)
        return '{' + match.group(2) + '}'

    def brace(match):
        if match.group(2):
            hints[match.group(1)] = match.group(2)
        return '{' + match.group(1) + '}'

    result = _FLASK_VARIABLE.sub(flask, path.strip())
    result = _BRACE_VARIABLE.sub(brace, result)
    result = _EXPRESS_VARIABLE.sub(lambda m: '{' + m.group(1) + '}', result)
    result = re.sub(r'/{2,}', '/', '/' + result.lstrip('/'))
    if len(result) > 1:
        result = result.rstrip('/')
    return result, hints


def _join_paths(prefix: str, path: str) -> str:
    if not prefix:
        return path
    return prefix.rstrip('/') + '/' + path.lstrip('/')
