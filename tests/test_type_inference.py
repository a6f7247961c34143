"""Tests for type precedence, unions and nullability."""

import pytest

from analyzers.base import Argument
from analyzers.diagnostics import DiagnosticCollector, FailureKind, Severity
from analyzers.docblock_parser import DocBlockParser
from analyzers.type_inference import TypeInferenceEngine
from analyzers.types import (
    NULL,
    UNKNOWN,
    ArrayType,
    NullableType,
    ObjectType,
    ScalarType,
    UnionType,
    from_dict,
    make_union,
)

INT = ScalarType("integer")
STRING = ScalarType("string")
BOOL = ScalarType("boolean")


@pytest.fixture
def collector() -> DiagnosticCollector:
    return DiagnosticCollector(log=False)


@pytest.fixture
def engine(collector: DiagnosticCollector) -> TypeInferenceEngine:
    return TypeInferenceEngine(collector)


class TestPrecedence:
    def test_annotation_wins_over_conflicting_docstring(self, engine, collector) -> None:
        result = engine.infer(declared="int", doc_type="string", path="app/views.py", declaration="show(id)")
        assert result == INT
        [diagnostic] = collector.diagnostics
        assert diagnostic.kind is FailureKind.TYPE_CONFLICT
        assert diagnostic.severity is Severity.WARNING
        assert diagnostic.path == "app/views.py"
        assert diagnostic.declaration == "show(id)"

    def test_nullability_difference_is_not_a_conflict(self, engine, collector) -> None:
        assert engine.infer(declared="Optional[int]", doc_type="int") == NullableType(INT)
        assert collector.diagnostics == []

    def test_untyped_container_matches_typed_one(self, engine, collector) -> None:
        assert engine.infer(declared="list", doc_type="List[int]") == ArrayType(UNKNOWN)
        assert collector.diagnostics == []

    def test_docstring_used_when_annotation_is_any(self, engine, collector) -> None:
        assert engine.infer(declared="Any", doc_type="int") == INT
        assert collector.diagnostics == []

    def test_docstring_nullable_union(self, engine) -> None:
        assert engine.infer(doc_type="int|null") == NullableType(INT)
        assert engine.infer(doc_type="int or None") == NullableType(INT)

    def test_default_literal(self, engine) -> None:
        assert engine.infer(default="20") == INT
        assert engine.infer(default="'asc'") == STRING
        assert engine.infer(default="True") == BOOL
        assert engine.infer(default="[1, 2]") == ArrayType(INT)

    def test_none_default_alone_is_unknown(self, engine) -> None:
        assert engine.infer(default="None") == UNKNOWN

    def test_no_signal_is_unknown(self, engine) -> None:
        assert engine.infer() is UNKNOWN

    def test_argument_default_wrapped_in_call(self, engine) -> None:
        argument = Argument(name="limit", default="Query(20)")
        assert engine.infer_argument(argument, DocBlockParser.parse(None)) == INT

    def test_argument_docstring_type(self, engine) -> None:
        doc = DocBlockParser.parse("List.\n\n:param page: Page number\n:type page: int\n")
        assert engine.infer_argument(Argument(name="page"), doc) == INT


class TestAnnotations:
    @pytest.mark.parametrize("text,expected", [
        ("str | None", NullableType(STRING)),
        ("List[User]", ArrayType(ObjectType(ref="User"))),
        ("Dict[str, int]", ObjectType(additional=INT)),
        ("'User'", ObjectType(ref="User")),
        ("datetime.datetime", ScalarType("string", "date-time")),
        ("Annotated[int, Query()]", INT),
        ("Tuple[int, ...]", ArrayType(INT)),
        ("Literal['a', 'b']", STRING),
        ("not valid[", UNKNOWN),
    ])
    def test_parse_annotation(self, engine, text, expected) -> None:
        assert engine.parse_annotation(text) == expected

    def test_nested_unions_are_flattened(self, engine) -> None:
        assert engine.parse_annotation("Union[int, Union[str, int]]") == UnionType(frozenset({INT, STRING}))

    def test_optional_union(self, engine) -> None:
        assert engine.parse_annotation("Optional[Union[int, str]]") == NullableType(UnionType(frozenset({INT, STRING})))


class TestDocTypes:
    @pytest.mark.parametrize("text,expected", [
        ("int[]", ArrayType(INT)),
        ("list of str", ArrayType(STRING)),
        ("array<int>", ArrayType(INT)),
        ("?int", NullableType(INT)),
        ("int, optional", INT),
        ("app.models.User", ObjectType(ref="User")),
    ])
    def test_parse_doc_type(self, engine, text, expected) -> None:
        assert engine.parse_doc_type(text) == expected


class TestUnions:
    def test_null_member_becomes_nullable(self) -> None:
        assert make_union([INT, NULL]) == NullableType(INT)

    def test_nested_members_are_merged(self) -> None:
        result = make_union([UnionType(frozenset({INT, STRING})), NullableType(BOOL)])
        assert result == NullableType(UnionType(frozenset({INT, STRING, BOOL})))

    def test_empty_union_is_unknown(self) -> None:
        assert make_union([]) == UNKNOWN

    def test_describe_is_order_independent(self) -> None:
        assert make_union([STRING, INT]).describe() == make_union([INT, STRING]).describe() == "integer|string"

    def test_dict_round_trip(self) -> None:
        value = NullableType(ArrayType(make_union([ObjectType(ref="User"), ObjectType(additional=INT)])))
        assert from_dict(value.to_dict()) == value
