"""Tests for the document exporters."""

import copy
import json
from pathlib import Path

import pytest
import yaml

from analyzers.diagnostics import ExportFailure
from export import ExportManager, InsomniaExporter, PostmanExporter, dumps, example_from_schema


@pytest.fixture
def document(generator):
    return generator.build().document


class TestExportManager:
    def test_supported_formats(self) -> None:
        assert ExportManager().supported_formats() == ["insomnia", "json", "postman", "yaml"]

    def test_unsupported_format_leaves_document_unchanged(self, document) -> None:
        before = copy.deepcopy(document)
        with pytest.raises(ExportFailure, match="Unsupported export format: pdf"):
            ExportManager().export(document, "pdf")
        assert document == before

    def test_json_export_is_the_document(self, document, tmp_path: Path) -> None:
        target = tmp_path / "out" / "openapi.json"
        ExportManager().export(document, "json", str(target))
        assert json.loads(target.read_text(encoding="utf-8")) == document

    def test_yaml_export_has_no_aliases(self) -> None:
        shared = {"type": "string"}
        document = {"openapi": "3.0.3", "components": {"schemas": {"A": {"properties": {"x": shared, "y": shared}}}}}
        text = dumps(document, "yaml")
        assert "&id" not in text and "*id" not in text
        assert yaml.safe_load(text) == document

    def test_yaml_keeps_key_order(self, document) -> None:
        text = dumps(document, "yaml")
        assert list(yaml.safe_load(text)["paths"]) == list(document["paths"])

    def test_unwritable_destination(self, document, tmp_path: Path) -> None:
        blocker = tmp_path / "file.txt"
        blocker.write_text("", encoding="utf-8")
        with pytest.raises(ExportFailure):
            ExportManager().export(document, "json", str(blocker / "openapi.json"))

    def test_batch_export_reports_failures(self, document, tmp_path: Path) -> None:
        results = ExportManager().batch_export(document, {
            "postman": str(tmp_path / "api.postman.json"),
            "pdf": str(tmp_path / "api.pdf"),
        })
        assert results["postman"]["success"] is True
        assert (tmp_path / "api.postman.json").exists()
        assert results["pdf"]["success"] is False
        assert results["pdf"]["message"].startswith("Unsupported export format: pdf")

    def test_register_exporter_requires_base_class(self) -> None:
        with pytest.raises(ExportFailure):
            ExportManager().register_exporter("csv", object())


class TestValidation:
    def test_generated_document_is_valid(self, document) -> None:
        assert ExportManager.validate_document(document) == {"valid": True, "errors": [], "warnings": []}

    def test_dangling_reference(self) -> None:
        document = {
            "openapi": "3.0.3",
            "info": {"title": "T", "version": "1"},
            "paths": {"/a": {"get": {"responses": {"200": {
                "description": "ok",
                "content": {"application/json": {"schema": {"$ref": "#/components/schemas/Gone"}}},
            }}}}},
        }
        result = ExportManager.validate_document(document)
        assert result["valid"] is False
        assert result["errors"] == ["Dangling reference: #/components/schemas/Gone"]

    def test_empty_document(self) -> None:
        result = ExportManager.validate_document({})
        assert result["errors"] == ["Missing OpenAPI version", "Missing info section"]
        assert result["warnings"] == ["No API paths defined"]

    def test_summary(self, document) -> None:
        statistics = ExportManager.summary(document)["statistics"]
        assert statistics == {
            "total_paths": 3,
            "total_operations": 4,
            "method_counts": {"GET": 3, "POST": 1},
            "total_schemas": 3,
            "total_security_schemes": 1,
        }


class TestPostman:
    def items(self, document):
        return {item["name"]: item["request"] for item in PostmanExporter().export(document)["item"]}

    def test_path_variables_use_colon_syntax(self, document) -> None:
        request = self.items(document)["Fetch one item."]
        assert request["url"]["raw"] == "{{baseUrl}}/items/:id"
        assert request["url"]["path"] == ["items", ":id"]
        assert request["url"]["variable"][0]["key"] == "id"
        assert request["url"]["variable"][0]["value"] == "0"

    def test_optional_query_parameters_are_disabled(self, document) -> None:
        query = self.items(document)["List users."]["url"]["query"]
        assert [(q["key"], q["value"], q["disabled"]) for q in query] == [
            ("page", "1", True), ("search", "string", True)]

    def test_body_and_auth(self, document) -> None:
        request = self.items(document)["Create a user."]
        assert json.loads(request["body"]["raw"]) == {"name": "string", "age": 0}
        assert request["auth"]["type"] == "bearer"
        assert {"key": "Content-Type", "value": "application/json"} in request["header"]

    def test_collection_variables(self, document) -> None:
        collection = PostmanExporter().export(document)
        assert collection["info"]["name"] == "Sample API"
        assert [v["key"] for v in collection["variable"]] == ["baseUrl", "bearerToken"]
        assert collection["variable"][0]["value"] == "http://localhost"


class TestInsomnia:
    def test_output_is_deterministic(self, document) -> None:
        exporter = InsomniaExporter()
        assert exporter.render(exporter.export(document)) == exporter.render(exporter.export(document))

    def test_resources(self, document) -> None:
        resources = InsomniaExporter().export(document)["resources"]
        workspace, environment, *requests = resources
        assert workspace["_type"] == "workspace"
        assert environment["data"] == {"base_url": "http://localhost", "bearer_token": "your-bearer-token"}
        assert [r["method"] for r in requests] == ["GET", "GET", "GET", "POST"]
        assert requests[0]["url"] == "{{ _.base_url }}/items/{{ _.id }}"
        assert all(r["_id"].startswith("req_") and r["parentId"] == workspace["_id"] for r in requests)

    def test_authentication_and_body(self, document) -> None:
        create = InsomniaExporter().export(document)["resources"][-1]
        assert create["authentication"] == {"type": "bearer", "token": "{{ _.bearer_token }}", "prefix": "Bearer"}
        assert create["body"]["mimeType"] == "application/json"
        assert json.loads(create["body"]["text"]) == {"name": "string", "age": 0}


class TestExamples:
    def test_cyclic_reference_terminates(self) -> None:
        document = {"components": {"schemas": {
            "Node": {"type": "object", "properties": {"next": {"$ref": "#/components/schemas/Node"}}},
        }}}
        assert example_from_schema(document, {"$ref": "#/components/schemas/Node"}) == {"next": None}

    @pytest.mark.parametrize("schema,expected", [
        ({"type": "string", "format": "email"}, "user@example.com"),
        ({"type": "integer", "minimum": 5}, 5),
        ({"enum": ["a", "b"]}, "a"),
        ({"type": "array", "items": {"type": "boolean"}}, [True]),
        ({"type": "object", "additionalProperties": {"type": "number"}}, {"key": 0.0}),
    ])
    def test_examples(self, schema, expected) -> None:
        assert example_from_schema({}, schema) == expected
