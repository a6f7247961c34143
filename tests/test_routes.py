"""Tests for route binding, path normalization and parameter extraction."""

from typing import Dict, List

import pytest

from analyzers.base import DeclarationIndex
from analyzers.diagnostics import DiagnosticCollector, FailureKind, Severity
from analyzers.parameter_extractor import (
    ParameterExtractor,
    ParameterLocation,
    generate_description,
    split_by_location,
    template_type,
)
from analyzers.route_analyzer import Route, RouteAnalyzer, RouteBinding, normalize_path
from analyzers.type_inference import TypeInferenceEngine
from analyzers.types import NullableType, ObjectType, ScalarType
from analyzers.validation_analyzer import ValidationAnalyzer

from tests.conftest import VALIDATORS, VIEWS, parse

CONTROLLERS = '''\
@middleware("auth")
class UserController:
    def index(self):
        return []

    def show(self, id: int):
        return {}

    def store(self, request):
        return {}


class PingView:
    def __call__(self):
        return "pong"


def health():
    return "ok"
'''

PREFIXED = '''\
@route_prefix("/api/v1")
@middleware("auth")
class ItemController:
    @route("/items", methods=["GET", "POST"])
    def items(self):
        return []

    @app.get(PREFIX + "/hidden")
    def hidden(self):
        return []
'''

UPLOADS = '''\
@app.post("/upload/{folder}")
def upload(folder: str, limit: int = Query(10, le=100), token: str = Header(..., alias="X-Token"),
           file: bytes = File(...), payload: Item = None, db: Session = Depends(get_db)):
    return None


@app.get("/search")
@validate({"q": "required|string"})
def search():
    return []


@app.get("/broken")
@validate(Missing)
def broken():
    return []


@app.get("/misplaced")
def misplaced(x: int = Path(...)):
    return None
'''


@pytest.fixture
def collector() -> DiagnosticCollector:
    return DiagnosticCollector(log=False)


def analyzer_for(collector: DiagnosticCollector, files: Dict[str, str]):
    index = DeclarationIndex()
    units = [parse(text, path) for path, text in files.items()]
    for unit in units:
        index.add_unit(unit)
    return RouteAnalyzer(index, collector), units


def summary(routes: List[Route]):
    return [(r.method, r.path) for r in routes]


class TestNormalizePath:
    @pytest.mark.parametrize("raw,expected", [
        ("users/<int:user_id>/posts/:slug", ("/users/{user_id}/posts/{slug}", {"user_id": "int"})),
        ("/files/{id:uuid}/", ("/files/{id}", {"id": "uuid"})),
        ("/users/{id?}", ("/users/{id}", {})),
        ("//a//b/", ("/a/b", {})),
        ("/", ("/", {})),
    ])
    def test_normalize(self, raw, expected) -> None:
        assert normalize_path(raw) == expected


class TestBindings:
    def test_bind_controller_method(self, collector) -> None:
        analyzer, _ = analyzer_for(collector, {"app/controllers.py": CONTROLLERS})
        [route] = analyzer.bind([RouteBinding("GET", "/users/<int:id>", "UserController@show")])
        assert route.path == "/users/{id}"
        assert route.path_hints == {"id": "int"}
        assert route.owner.name == "UserController"
        assert route.tag == "User"
        assert route.operation_id == "UserController_show_get"
        assert route.handler_name == "app.controllers.UserController.show"

    def test_module_colon_function_handler(self, collector) -> None:
        analyzer, _ = analyzer_for(collector, {"app/controllers.py": CONTROLLERS})
        [route] = analyzer.bind([RouteBinding("GET", "/health", "app.controllers:health")])
        assert route.handler.name == "health"
        assert route.tag == "controllers"

    def test_class_based_view(self, collector) -> None:
        analyzer, _ = analyzer_for(collector, {"app/controllers.py": CONTROLLERS})
        [route] = analyzer.bind([RouteBinding("GET", "/ping", "PingView")])
        assert route.handler.name == "__call__"

    def test_unknown_handler_is_a_diagnostic(self, collector) -> None:
        analyzer, _ = analyzer_for(collector, {"app/controllers.py": CONTROLLERS})
        assert analyzer.bind([RouteBinding("GET", "/x", "Nope@missing")]) == []
        [diagnostic] = collector.diagnostics
        assert diagnostic.kind is FailureKind.RESOLUTION
        assert diagnostic.severity is Severity.WARNING
        assert diagnostic.declaration == "Nope@missing"

    def test_any_expands_methods(self, collector) -> None:
        analyzer, _ = analyzer_for(collector, {"app/controllers.py": CONTROLLERS})
        routes = analyzer.bind([RouteBinding("ANY", "/health", "health")])
        assert [r.method for r in routes] == ["GET", "POST", "PUT", "PATCH", "DELETE"]

    def test_resource_binding(self, collector) -> None:
        analyzer, _ = analyzer_for(collector, {"app/controllers.py": CONTROLLERS})
        routes = analyzer.bind([RouteBinding("RESOURCE", "/users", "UserController", ("throttle",))])
        assert summary(routes) == [("GET", "/users"), ("POST", "/users"), ("GET", "/users/{id}")]
        assert routes[0].middleware == ["throttle"]

    def test_binding_from_dict(self) -> None:
        bindings = RouteBinding.from_dict({"methods": ["get", "post"], "path": "/x", "handler": "health",
                                           "middleware": "auth"})
        assert bindings == [RouteBinding("GET", "/x", "health", ("auth",)),
                            RouteBinding("POST", "/x", "health", ("auth",))]


class TestDecoratorRoutes:
    def test_discover_and_order(self, collector) -> None:
        analyzer, units = analyzer_for(collector, {"app/views.py": VIEWS})
        routes = analyzer.analyze(units=units)
        assert summary(routes) == [
            ("GET", "/items/{id}"),
            ("GET", "/users/{user_id}"),
            ("GET", "/users"),
            ("POST", "/users"),
        ]
        assert all(r.source == "decorator" for r in routes)
        assert routes[0].tag == "views"

    def test_class_prefix_and_middleware(self, collector) -> None:
        analyzer, units = analyzer_for(collector, {"app/items.py": PREFIXED})
        routes = analyzer.discover(units)
        assert summary(routes) == [("GET", "/api/v1/items"), ("POST", "/api/v1/items")]
        assert routes[0].middleware == ["auth"]
        assert routes[0].tag == "Item"

    def test_decorator_without_literal_path(self, collector) -> None:
        analyzer, units = analyzer_for(collector, {"app/items.py": PREFIXED})
        analyzer.discover(units)
        [diagnostic] = collector.diagnostics
        assert diagnostic.declaration == "ItemController.hidden"
        assert diagnostic.path == "app/items.py"

    def test_decorator_routes_can_be_disabled(self, collector) -> None:
        analyzer, units = analyzer_for(collector, {"app/views.py": VIEWS})
        analyzer.decorator_routes = False
        assert analyzer.analyze(units=units) == []

    def test_typed_template_wins_duplicate(self, collector) -> None:
        analyzer, units = analyzer_for(collector, {"app/views.py": VIEWS})
        bindings = [RouteBinding("GET", "/items/{item}", "show_item"),
                    RouteBinding("GET", "/items/<int:id>", "show_item")]
        routes = [r for r in analyzer.analyze(bindings, units) if r.path.startswith("/items")]
        assert summary(routes) == [("GET", "/items/{id}")]
        assert routes[0].path_hints == {"id": "int"}
        assert routes[0].source == "binding"


class TestParameterExtractor:
    def extract(self, collector, files, rule_sets=None):
        analyzer, units = analyzer_for(collector, files)
        extractor = ParameterExtractor(TypeInferenceEngine(collector), collector)
        return {(r.method, r.path): extractor.extract(r, rule_sets) for r in analyzer.analyze(units=units)}

    def test_path_parameter(self, collector) -> None:
        params = self.extract(collector, {"app/views.py": VIEWS})[("GET", "/items/{id}")]
        assert [(p.name, p.location.value, str(p.type), p.required) for p in params] == [
            ("id", "path", "integer", True)]
        assert params[0].description == "Id identifier"

    def test_query_parameters_with_docstring(self, collector) -> None:
        page, search = self.extract(collector, {"app/views.py": VIEWS})[("GET", "/users")]
        assert (page.name, page.location, page.type, page.required) == (
            "page", ParameterLocation.QUERY, ScalarType("integer"), False)
        assert page.default == 1
        assert page.description == "Page number"
        assert search.type == NullableType(ScalarType("string"))
        assert search.description == "Filter by name"

    def test_validator_fields_become_body(self, collector) -> None:
        rule_sets = {r.name: r for r in ValidationAnalyzer().analyze(parse(VALIDATORS, "app/validators.py"))}
        params = self.extract(collector, {"app/views.py": VIEWS}, rule_sets)[("POST", "/users")]
        assert [(p.name, p.location, p.required) for p in params] == [
            ("name", ParameterLocation.BODY, True),
            ("age", ParameterLocation.BODY, False),
        ]
        assert params[1].type == ScalarType("integer")

    def test_parameter_locations(self, collector) -> None:
        params = self.extract(collector, {"app/uploads.py": UPLOADS})[("POST", "/upload/{folder}")]
        by_name = {p.name: p for p in params}
        assert list(by_name) == ["folder", "limit", "X-Token", "file", "payload"]

        assert by_name["folder"].location is ParameterLocation.PATH
        assert by_name["limit"].location is ParameterLocation.QUERY
        assert by_name["limit"].required is False
        assert by_name["limit"].default == 10
        assert by_name["limit"].constraints == {"maximum": 100}
        assert by_name["X-Token"].location is ParameterLocation.HEADER
        assert by_name["X-Token"].required is True
        assert by_name["file"].media_type == "multipart/form-data"
        assert by_name["file"].type == ScalarType("string", "binary")
        assert by_name["payload"].location is ParameterLocation.BODY
        assert by_name["payload"].type == ObjectType(ref="Item")

        plain, body = split_by_location(params)
        assert [p.name for p in body] == ["file", "payload"]

    def test_inline_rules_on_get_become_query(self, collector) -> None:
        [q] = self.extract(collector, {"app/uploads.py": UPLOADS})[("GET", "/search")]
        assert (q.name, q.location, q.required) == ("q", ParameterLocation.QUERY, True)

    def test_unknown_validator_and_misplaced_path(self, collector) -> None:
        result = self.extract(collector, {"app/uploads.py": UPLOADS})
        assert result[("GET", "/broken")] == []
        assert result[("GET", "/misplaced")][0].location is ParameterLocation.QUERY
        messages = [d.message for d in collector.of_kind(FailureKind.RESOLUTION)]
        assert "Unknown validator 'Missing'" in messages
        assert "Path parameter 'x' is not in template /misplaced" in messages


class TestHelpers:
    def test_template_type(self) -> None:
        assert template_type("uuid") == ScalarType("string", "uuid")
        assert template_type(r"\d+") == ScalarType("integer")
        assert template_type(None) == ScalarType("string")

    @pytest.mark.parametrize("name,kind,expected", [
        ("user_id", "integer", "User Id identifier"),
        ("is_active", "boolean", "Flag indicating is active"),
        ("name", "string", "Name"),
        ("token_uuid", "string", "UUID for Token Uuid"),
    ])
    def test_generate_description(self, name, kind, expected) -> None:
        assert generate_description(name, ScalarType(kind)) == expected
