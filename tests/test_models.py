"""Tests for model extraction, relation resolution and model schemas."""

import pytest

from analyzers.diagnostics import DiagnosticCollector, FailureKind, Severity
from analyzers.model_analyzer import Model, ModelAnalyzer, Relation, RelationKind, map_column_type, table_name_for
from analyzers.relation_analyzer import ModelRegistry, RelationAnalyzer
from analyzers.type_inference import TypeInferenceEngine
from analyzers.types import ArrayType, NullableType, ObjectType, ScalarType
from generators.schema_generator import SchemaGenerator

from tests.conftest import MODELS, parse

INT = ScalarType("integer")
STRING = ScalarType("string")

DJANGO = '''\
from django.db import models


class Article(models.Model):
    title = models.CharField(max_length=120, help_text="Headline")
    status = models.CharField(max_length=10, choices=[("d", "Draft"), ("p", "Published")])
    views = models.IntegerField(default=0)
    author = models.ForeignKey("auth.User", on_delete=models.CASCADE)
    tags = models.ManyToManyField(Tag)

    class Meta:
        db_table = "articles"
'''

PYDANTIC = '''\
from typing import List, Optional

from pydantic import BaseModel, Field


class Item(BaseModel):
    name: str
    price: float = Field(..., ge=0, description="Unit price")
    tags: List[str] = []
    note: Optional[str] = None
'''

ACTIVE_RECORD = '''\
class Order(Model):
    schema = {"id": "int", "total": "decimal(10,2)", "code": "varchar(20)"}
    timestamps = True

    def customer(self):
        return self.belongs_to(Customer, "customer_id")

    def lines(self):
        return self.has_many("OrderLine")
'''


def analyze(text: str):
    collector = DiagnosticCollector(log=False)
    return ModelAnalyzer(TypeInferenceEngine(collector)).analyze(parse(text, "app/models.py"))


@pytest.fixture
def registry() -> ModelRegistry:
    registry = ModelRegistry(DiagnosticCollector(log=False))
    for model in analyze(MODELS):
        registry.add(model)
    return registry


class TestSqlAlchemyModels:
    def test_models_in_source_order(self) -> None:
        assert [m.name for m in analyze(MODELS)] == ["User", "Post"]

    def test_columns(self) -> None:
        user = analyze(MODELS)[0]
        assert user.table == "users"
        assert user.description == "A registered user."

        assert user.fields["id"].type == INT
        assert user.fields["id"].read_only is True
        assert user.fields["id"].required is False

        assert user.fields["name"].type == STRING
        assert user.fields["name"].required is True
        assert user.fields["name"].constraints == {"maxLength": 50}

        assert user.fields["email"].type == NullableType(STRING)
        assert user.fields["email"].required is False

    def test_relations(self) -> None:
        user, post = analyze(MODELS)
        assert user.relation("posts") == Relation("posts", RelationKind.ONE_TO_MANY, "Post")
        assert post.relation("author").kind is RelationKind.ONE_TO_ONE
        assert "author_id" in post.fields

    def test_non_model_classes_are_ignored(self) -> None:
        assert analyze("class Helper:\n    x = 1\n") == []

    def test_abstract_model_is_skipped(self) -> None:
        assert analyze("class Base2(Base):\n    __abstract__ = True\n    id = Column(Integer)\n") == []

    def test_model_round_trips_through_dict(self) -> None:
        user = analyze(MODELS)[0]
        assert Model.from_dict(user.to_dict()) == user


class TestOtherModelStyles:
    def test_django_fields(self) -> None:
        [article] = analyze(DJANGO)
        assert article.table == "articles"
        assert article.fields["title"].description == "Headline"
        assert article.fields["title"].constraints == {"maxLength": 120}
        assert article.fields["title"].required is True
        assert article.fields["status"].constraints["enum"] == ["d", "p"]
        assert article.fields["views"].type == INT
        assert article.fields["views"].required is False

    def test_django_relations(self) -> None:
        [article] = analyze(DJANGO)
        assert article.relation("author") == Relation("author", RelationKind.BELONGS_TO, "User", "author_id")
        assert article.relation("tags").kind is RelationKind.MANY_TO_MANY

    def test_annotated_fields(self) -> None:
        [item] = analyze(PYDANTIC)
        assert item.fields["name"].required is True
        assert item.fields["price"].type == ScalarType("number")
        assert item.fields["price"].description == "Unit price"
        assert item.fields["price"].required is True
        assert item.fields["price"].constraints == {"minimum": 0}
        assert item.fields["tags"].type == ArrayType(STRING)
        assert item.fields["tags"].required is False
        assert item.fields["note"].nullable is True

    def test_schema_dict_timestamps_and_relation_methods(self) -> None:
        [order] = analyze(ACTIVE_RECORD)
        assert order.fields["total"].type == ScalarType("number", "decimal")
        assert order.fields["code"].constraints == {"maxLength": 20}
        assert order.fields["created_at"].read_only is True
        assert order.relation("customer") == Relation("customer", RelationKind.BELONGS_TO, "Customer", "customer_id")
        assert order.relation("lines").target == "OrderLine"

    def test_map_column_type(self) -> None:
        assert map_column_type("sa.DateTime(timezone=True)") == (ScalarType("string", "date-time"), {})
        assert map_column_type("JSON") == (ObjectType(), {})
        assert map_column_type("Whatever") == (STRING, {})

    def test_table_name_for(self) -> None:
        assert table_name_for("UserProfileModel") == "user_profile"


class TestRelations:
    def test_resolve_and_walk_cycle(self, registry) -> None:
        analyzer = RelationAnalyzer(registry)
        assert analyzer.resolve() == 0
        assert analyzer.traverse("User") == ["User", "Post"]
        assert analyzer.in_cycle("User") is True
        assert analyzer.graph() == {"Post": ["User"], "User": ["Post"]}

    def test_traverse_depth_limit(self, registry) -> None:
        analyzer = RelationAnalyzer(registry)
        analyzer.resolve()
        assert analyzer.traverse("User", max_depth=0) == ["User"]
        assert analyzer.traverse("Nobody") == []

    def test_dangling_relation(self) -> None:
        collector = DiagnosticCollector(log=False)
        registry = ModelRegistry(collector)
        registry.add(Model("Comment", relations=[Relation("thread", RelationKind.BELONGS_TO, "Missing")]))

        assert RelationAnalyzer(registry).resolve() == 1
        [diagnostic] = collector.diagnostics
        assert diagnostic.kind is FailureKind.RESOLUTION
        assert diagnostic.severity is Severity.WARNING
        assert diagnostic.declaration == "Comment.thread"

        schema = SchemaGenerator(registry).model_schema(registry.get("Comment"))
        assert schema["properties"]["thread"] == {"description": "Unresolved relation to Missing"}

    def test_duplicate_model_first_wins(self) -> None:
        collector = DiagnosticCollector(log=False)
        registry = ModelRegistry(collector)
        registry.add(Model("User", module="app.a", path="app/a.py"))
        registry.add(Model("User", module="app.b", path="app/b.py"))

        assert registry.get("app.b.User").module == "app.a"
        assert len(registry) == 1
        assert collector.diagnostics[0].path == "app/b.py"


class TestModelSchemas:
    def test_component_schema(self, registry) -> None:
        RelationAnalyzer(registry).resolve()
        generator = SchemaGenerator(registry)
        generator.register_model(registry.get("User"))

        assert generator.components()["User"] == {
            "type": "object",
            "title": "User",
            "description": "A registered user.",
            "properties": {
                "id": {"type": "integer", "readOnly": True},
                "name": {"type": "string", "maxLength": 50},
                "email": {"type": "string", "nullable": True, "maxLength": 120},
                "posts": {"type": "array", "items": {"$ref": "#/components/schemas/Post"}},
            },
            "required": ["name"],
            "x-table": "users",
        }
        assert sorted(generator.components()) == ["Post", "User"]

    def test_flatten_stops_at_revisited_model(self, registry) -> None:
        RelationAnalyzer(registry).resolve()
        generator = SchemaGenerator(registry, flatten=True)
        flat = generator.flatten_model("User")

        assert flat["properties"]["posts"]["items"]["properties"]["author"] == {"$ref": "#/components/schemas/User"}
        assert "User" in generator.components()

    def test_nullable_reference(self, registry) -> None:
        generator = SchemaGenerator(registry)
        assert generator.type_schema(NullableType(ObjectType(ref="User"))) == {
            "allOf": [{"$ref": "#/components/schemas/User"}],
            "nullable": True,
        }

    def test_unknown_model_reference_is_reported_once(self, registry) -> None:
        generator = SchemaGenerator(registry)
        assert generator.type_schema(ObjectType(ref="Ghost")) == {}
        assert generator.type_schema(ObjectType(ref="Ghost")) == {}
        assert len(registry.diagnostics.of_kind(FailureKind.RESOLUTION)) == 1

    def test_fragments_are_deduplicated(self, registry) -> None:
        generator = SchemaGenerator(registry)
        first = generator.fragment("CreateBody", {"type": "object", "properties": {"a": {"type": "string"}}})
        second = generator.fragment("OtherBody", {"type": "object", "properties": {"a": {"type": "string"}}})
        assert first == second == {"$ref": "#/components/schemas/CreateBody"}
        assert generator.fragment("User", {"type": "string"}) == {"$ref": "#/components/schemas/User2"}
