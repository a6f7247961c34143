"""Tests for validation rule parsing and the schema mapping."""

import pytest

from analyzers.diagnostics import DiagnosticCollector, Severity
from analyzers.types import ScalarType
from analyzers.validation_analyzer import (
    Constraint,
    ConstraintKind,
    RuleSet,
    ValidationAnalyzer,
    ValidationRule,
    apply_to_schema,
    parse_rule_string,
)

from tests.conftest import VALIDATORS, parse


def rule(text: str) -> ValidationRule:
    return ValidationRule("field", parse_rule_string(text))


class TestRuleStrings:
    def test_parse_rules(self) -> None:
        rule_set = ValidationAnalyzer().parse_rules({"name": "required|string", "age": "integer"})
        assert rule_set.rules["name"].required is True
        assert rule_set.rules["name"].type_ref() == ScalarType("string")
        assert rule_set.rules["age"].required is False
        assert rule_set.rules["age"].type_ref() == ScalarType("integer")

    def test_regex_consumes_rest_of_string(self) -> None:
        constraints = parse_rule_string("required|regex:/^(a|b)$/")
        assert constraints[-1] == Constraint(ConstraintKind.PATTERN, "regex", ("/^(a|b)$/",))

    def test_unknown_rule_is_opaque(self) -> None:
        assert parse_rule_string("unique:users") == [Constraint(ConstraintKind.OPAQUE, "unique", ("users",))]

    def test_duplicate_rules_collapse(self) -> None:
        assert len(parse_rule_string("required|required")) == 1

    def test_label_and_messages(self) -> None:
        rule_set = ValidationAnalyzer().parse_rules(
            {"name|User name": "required|max:10"},
            messages={"name.required": "Name is required"},
        )
        name = rule_set.rules["name"]
        assert name.label == "User name"
        assert name.describe() == "User name. Name is required"
        assert apply_to_schema(name)["description"] == "User name. Name is required"

    def test_dict_and_list_forms(self) -> None:
        analyzer = ValidationAnalyzer()
        constraints = analyzer.parse_rule({"required": True, "in": ["a", "b"], "max": 5, "nullable": False})
        assert [c.kind for c in constraints] == [ConstraintKind.REQUIRED, ConstraintKind.ENUM, ConstraintKind.MAX]
        assert constraints[1].params == ("a", "b")

        constraints = analyzer.parse_rule(["required", "string|max:5"])
        assert [c.name for c in constraints] == ["required", "string", "max"]

    def test_unsupported_value(self) -> None:
        collector = DiagnosticCollector(log=False)
        constraints = ValidationAnalyzer(collector).parse_rule(42, path="app/forms.py")
        assert constraints == [Constraint(ConstraintKind.OPAQUE, "42")]
        assert collector.diagnostics[0].severity is Severity.INFO


class TestSchemaMapping:
    @pytest.mark.parametrize("text,expected", [
        ("required|string|max:25", {"type": "string", "maxLength": 25}),
        ("integer|between:1,120", {"type": "integer", "minimum": 1, "maximum": 120}),
        ("max:120|integer", {"type": "integer", "maximum": 120}),
        ("in:draft,published", {"type": "string", "enum": ["draft", "published"]}),
        ("integer|in:1,2", {"type": "integer", "enum": [1, 2]}),
        ("regex:/^(a|b)$/", {"type": "string", "pattern": "^(a|b)$"}),
        ("array|min:1", {"type": "array", "minItems": 1}),
        ("email", {"type": "string", "format": "email"}),
        ("length:2,10", {"type": "string", "minLength": 2, "maxLength": 10}),
        ("alpha_num", {"type": "string", "pattern": "^[A-Za-z0-9]+$"}),
    ])
    def test_apply_to_schema(self, text, expected) -> None:
        assert apply_to_schema(rule(text)) == expected

    @pytest.mark.parametrize("text,expected", [
        ("integer|length:inf", {"type": "integer"}),
        ("length:nan", {"type": "string"}),
        ("string|max:abc", {"type": "string"}),
        ("integer|between:x,10", {"type": "integer", "maximum": 10}),
        ("integer|min:-inf", {"type": "integer"}),
        ("string|max:2.5", {"type": "string"}),
        ("string|min:-1", {"type": "string"}),
        ("numeric|max:2.5", {"type": "number", "maximum": 2.5}),
        ("integer|in:1,x", {"type": "integer", "enum": [1, "x"]}),
    ])
    def test_unusable_bounds_stay_opaque(self, text, expected) -> None:
        assert apply_to_schema(rule(text)) == expected

    def test_existing_schema_is_not_modified(self) -> None:
        schema = {"type": "integer"}
        assert apply_to_schema(rule("max:5"), schema) == {"type": "integer", "maximum": 5}
        assert schema == {"type": "integer"}


class TestValidatorClasses:
    def test_validator_class(self) -> None:
        [rule_set] = ValidationAnalyzer().analyze(parse(VALIDATORS, "app/validators.py"))
        assert rule_set.name == "UserValidate"
        assert rule_set.module == "app.validators"
        assert rule_set.fields() == ["name", "age"]

    def test_rules_method_and_scenes(self) -> None:
        source = (
            "class LoginForm(Validator):\n"
            "    scene = {'login': ['email']}\n"
            "\n"
            "    def rules(self):\n"
            "        return {'email': 'required|email', 'remember': 'boolean'}\n"
        )
        [rule_set] = ValidationAnalyzer().analyze(parse(source))
        assert rule_set.rules["email"].type_ref() == ScalarType("string", "email")
        assert rule_set.for_scene("login").fields() == ["email"]
        assert rule_set.for_scene("missing") is rule_set

    def test_rules_dict_without_known_base(self) -> None:
        [rule_set] = ValidationAnalyzer().analyze(parse("class Rules:\n    rules = {'a': 'required'}\n"))
        assert rule_set.rules["a"].required is True

    def test_validator_without_literal_rules(self) -> None:
        collector = DiagnosticCollector(log=False)
        assert ValidationAnalyzer(collector).analyze(parse("class Empty(Validate):\n    pass\n")) == []
        assert collector.diagnostics[0].declaration == "Empty"

    def test_merge_is_conjunctive(self) -> None:
        analyzer = ValidationAnalyzer()
        merged = analyzer.parse_rules({"name": "required"}, name="A").merge(
            analyzer.parse_rules({"name": "max:5", "age": "integer"}, name="B"))
        assert merged.name == "A"
        assert merged.fields() == ["name", "age"]
        assert [c.name for c in merged.rules["name"].constraints] == ["required", "max"]

    def test_rule_set_round_trips_through_dict(self) -> None:
        rule_set = ValidationAnalyzer().parse_rules({"name": "required|in:a,b"}, name="A", scenes={"s": ["name"]})
        assert RuleSet.from_dict(rule_set.to_dict()) == rule_set
