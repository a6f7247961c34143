"""
Document Export
===============

Render the generated OpenAPI document as JSON, YAML, a Postman collection
or an Insomnia export.

Usage:
    from export import ExportManager

    ExportManager().export(document, "postman", "api.postman.json")
"""

from .base import BaseExporter, example_from_schema
from .export_manager import ExportManager, OpenApiJsonExporter, OpenApiYamlExporter, dumps
from .insomnia_exporter import InsomniaExporter
from .postman_exporter import PostmanExporter

__all__ = [
    "BaseExporter",
    "example_from_schema",
    "ExportManager",
    "OpenApiJsonExporter",
    "OpenApiYamlExporter",
    "dumps",
    "InsomniaExporter",
    "PostmanExporter",
]
