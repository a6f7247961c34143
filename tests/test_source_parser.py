"""Tests for the AST source parser and the declaration index."""

from analyzers.base import ArgumentKind, DeclarationIndex, DeclarationKind, SourceUnit, Visibility
from analyzers.diagnostics import DiagnosticCollector, FailureKind, Severity
from analyzers.source_parser import SourceParser

from tests.conftest import parse

CONTROLLER = '''\
"""Controllers."""


class UserController:
    """Manage users."""

    #: Items per page
    per_page: int = 20

    def show(self, id: int, *args, verbose=False, **kwargs) -> dict:
        """Fetch one."""
        def helper():
            return 1
        return {"id": id}

    def _internal(self):
        pass


async def health():
    return "ok"
'''


class TestSourceParser:
    def test_declarations_and_ranges(self) -> None:
        unit = parse(CONTROLLER, "app/controllers/user.py")
        assert unit.module == "app.controllers.user"
        assert unit.doc == "Controllers."

        controller = unit.classes()[0]
        assert controller.kind is DeclarationKind.CLASS
        assert controller.range.start_line == 4
        assert controller.doc == "Manage users."
        assert [m.name for m in controller.methods] == ["show", "_internal"]
        assert controller.child("_internal").visibility is Visibility.PROTECTED

        health = unit.functions()[0]
        assert health.is_async is True
        assert health.returns == ("'ok'",)

    def test_arguments_keep_source_text(self) -> None:
        show = parse(CONTROLLER).classes()[0].child("show")
        args = {a.name: a for a in show.arguments}
        assert args["id"].annotation == "int"
        assert args["args"].kind is ArgumentKind.VAR_POSITIONAL
        assert args["verbose"].kind is ArgumentKind.KEYWORD_ONLY
        assert args["verbose"].default == "False"
        assert args["kwargs"].kind is ArgumentKind.VAR_KEYWORD
        assert show.annotation == "dict"

    def test_nested_function_returns_are_not_collected(self) -> None:
        show = parse(CONTROLLER).classes()[0].child("show")
        assert show.returns == ("{'id': id}",)

    def test_attribute_doc_comment(self) -> None:
        prop = parse(CONTROLLER).classes()[0].child("per_page")
        assert prop.kind is DeclarationKind.PROPERTY
        assert prop.annotation == "int"
        assert prop.value == "20"
        assert prop.doc == "Items per page"

    def test_syntax_error_is_a_diagnostic(self) -> None:
        collector = DiagnosticCollector(log=False)
        unit = SourceParser(collector).parse("def broken(:\n    pass\n", "app/broken.py")
        assert unit is None
        [diagnostic] = collector.diagnostics
        assert diagnostic.kind is FailureKind.PARSE
        assert diagnostic.severity is Severity.ERROR
        assert diagnostic.path == "app/broken.py"
        assert diagnostic.line == 1

    def test_module_name(self) -> None:
        assert SourceParser.module_name("app/__init__.py") == "app"
        assert SourceParser.module_name("/src/app/views.py", root="/src") == "app.views"

    def test_unit_round_trips_through_dict(self) -> None:
        unit = parse(CONTROLLER)
        assert SourceUnit.from_dict(unit.to_dict()) == unit


class TestDeclarationIndex:
    def test_lookup_by_full_short_and_partial_name(self) -> None:
        index = DeclarationIndex()
        index.add_unit(parse(CONTROLLER, "app/controllers/user.py"))

        unit, declaration, owner = index.lookup("app.controllers.user.UserController.show")
        assert declaration.name == "show"
        assert owner.name == "UserController"
        assert index.lookup("UserController.show")[1] is declaration
        assert index.lookup("controllers.user.UserController.show")[1] is declaration
        assert index.lookup("health")[1].kind is DeclarationKind.FUNCTION
        assert index.lookup("Missing.method") is None

    def test_find_class(self) -> None:
        index = DeclarationIndex()
        index.add_unit(parse(CONTROLLER, "app/controllers/user.py"))
        assert index.find_class("'app.controllers.user.UserController'")[1].name == "UserController"
        assert index.find_class("Nope") is None
