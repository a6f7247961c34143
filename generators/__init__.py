"""
Document Generators
===================

Turn analysis results into an OpenAPI 3.0 document.

Usage:
    from config import GeneratorConfig
    from generators import OpenApiGenerator

    result = OpenApiGenerator(GeneratorConfig(source_root="./app")).build()
    document = result.document
"""

from .document_builder import OPENAPI_VERSION, DocumentBuilder, ResponseBuilder
from .openapi_generator import (
    BuildResult,
    FileAnalysis,
    OpenApiGenerator,
    OperationBuilder,
    load_route_bindings,
    load_security,
)
from .schema_generator import SchemaFragment, SchemaGenerator
from .security_scheme_generator import SecuritySchemeGenerator

__all__ = [
    "OPENAPI_VERSION",
    "DocumentBuilder",
    "ResponseBuilder",
    "BuildResult",
    "FileAnalysis",
    "OpenApiGenerator",
    "OperationBuilder",
    "load_route_bindings",
    "load_security",
    "SchemaFragment",
    "SchemaGenerator",
    "SecuritySchemeGenerator",
]
