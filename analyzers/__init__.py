#!/usr/bin/env python3
"""
Static Analyzers
================
AST-based analyzers that read application source without importing it.

**Structure:**
- Source parsing into immutable declarations
- Docstring and decorator parsing

**Semantics:**
- Type inference (annotation → docstring → default literal)
- Models, relations and validation rules
- Route binding and parameter extraction

Nothing in this package executes analyzed code.
"""

from .diagnostics import (
    ConfigurationFailure,
    Diagnostic,
    DiagnosticCollector,
    ExportFailure,
    FailureKind,
    ParseFailure,
    ResolutionFailure,
    ScannerError,
    Severity,
)
from .base import Declaration, DeclarationIndex, DeclarationKind, SourceUnit
from .source_parser import SourceParser
from .docblock_parser import DocBlock, DocBlockParser, TagKind
from .annotation_parser import Annotation, AnnotationKind, AnnotationParser
from .type_inference import TypeInferenceEngine
from .model_analyzer import Model, ModelAnalyzer, ModelField, Relation, RelationKind
from .relation_analyzer import ModelRegistry, RelationAnalyzer
from .validation_analyzer import ConstraintKind, RuleSet, ValidationAnalyzer, ValidationRule
from .route_analyzer import Route, RouteAnalyzer, RouteBinding
from .parameter_extractor import Parameter, ParameterExtractor, ParameterLocation

__all__ = [
    # Diagnostics
    'ScannerError',
    'ParseFailure',
    'ResolutionFailure',
    'ConfigurationFailure',
    'ExportFailure',
    'Diagnostic',
    'DiagnosticCollector',
    'FailureKind',
    'Severity',
    # Structure
    'Declaration',
    'DeclarationIndex',
    'DeclarationKind',
    'SourceUnit',
    'SourceParser',
    'DocBlock',
    'DocBlockParser',
    'TagKind',
    'Annotation',
    'AnnotationKind',
    'AnnotationParser',
    # Semantics
    'TypeInferenceEngine',
    'Model',
    'ModelAnalyzer',
    'ModelField',
    'Relation',
    'RelationKind',
    'ModelRegistry',
    'RelationAnalyzer',
    'ConstraintKind',
    'RuleSet',
    'ValidationAnalyzer',
    'ValidationRule',
    'Route',
    'RouteAnalyzer',
    'RouteBinding',
    'Parameter',
    'ParameterExtractor',
    'ParameterLocation',
]
