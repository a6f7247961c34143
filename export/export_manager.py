#!/usr/bin/env python3
"""
Export Manager
==============
Render a finished OpenAPI document in one of the supported formats.

Formats:
- json:     the OpenAPI document as JSON
- yaml:     the OpenAPI document as YAML
- postman:  Postman Collection v2.1
- insomnia: Insomnia export v4

An unsupported format or an unwritable destination raises ExportFailure;
the document passed in is never modified.
"""

import copy
import logging
from typing import Any, Dict, List, Mapping, Optional

import yaml

from analyzers.diagnostics import ExportFailure

from .base import OPERATION_METHODS, BaseExporter, iter_operations
from .insomnia_exporter import InsomniaExporter
from .postman_exporter import PostmanExporter

logger = logging.getLogger("api_scanner.export.export_manager")


class _NoAliasDumper(yaml.SafeDumper):
    """Write shared sub-schemas in full instead of as YAML anchors."""

    def ignore_aliases(self, data):
        return True


class OpenApiJsonExporter(BaseExporter):
    name = "OpenAPI (JSON)"
    description = "OpenAPI 3.0 document as JSON"

    def convert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return document


class OpenApiYamlExporter(BaseExporter):
    name = "OpenAPI (YAML)"
    description = "OpenAPI 3.0 document as YAML"
    extension = "yaml"
    mime_type = "application/x-yaml"

    def convert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        return document

    def render(self, data: Any) -> str:
        return yaml.dump(data, Dumper=_NoAliasDumper, sort_keys=False, allow_unicode=True,
                         default_flow_style=False)


class ExportManager:
    """
    Registry of exporters keyed by format name.

    Usage:
        manager = ExportManager()
        manager.export(document, "postman", "api.postman.json")
        results = manager.batch_export(document, {"yaml": "openapi.yaml", "insomnia": "api.insomnia.json"})
    """

    def __init__(self):
        self.exporters: Dict[str, BaseExporter] = {
            'json': OpenApiJsonExporter(),
            'yaml': OpenApiYamlExporter(),
            'postman': PostmanExporter(),
            'insomnia': InsomniaExporter(),
        }

    def supported_formats(self) -> List[str]:
        return sorted(self.exporters)

    def register_exporter(self, fmt: str, exporter: BaseExporter) -> None:
        if not isinstance(exporter, BaseExporter):
            raise ExportFailure(f"Exporter for '{fmt}' must derive from BaseExporter")
        self.exporters[fmt.lower()] = exporter

    def exporter(self, fmt: str) -> BaseExporter:
        """
        Exporter registered for ``fmt``.

        Raises:
            ExportFailure: unsupported format
        """
        exporter = self.exporters.get((fmt or '').lower())
        if exporter is None:
            raise ExportFailure(
                f"Unsupported export format: {fmt} (supported: {', '.join(self.supported_formats())})")
        return exporter

    def convert(self, document: Dict[str, Any], fmt: str) -> Any:
        """Converted structure for ``fmt`` (not yet rendered to text)."""
        return self.exporter(fmt).export(document)

    def render(self, document: Dict[str, Any], fmt: str) -> str:
        exporter = self.exporter(fmt)
        return exporter.render(exporter.export(document))

    def export(self, document: Dict[str, Any], fmt: str, filename: Optional[str] = None) -> str:
        """
        Render ``document`` as ``fmt`` and optionally write it.

        Args:
            document: OpenAPI document (left unchanged)
            fmt: One of supported_formats()
            filename: Destination file; nothing is written when omitted

        Returns:
            The rendered content

        Raises:
            ExportFailure: unsupported format or unwritable destination
        """
        exporter = self.exporter(fmt)
        data = exporter.export(document)
        if filename is None:
            return exporter.render(data)
        return exporter.save(data, filename)

    def batch_export(self, document: Dict[str, Any], formats: Mapping[str, str]) -> Dict[str, Dict[str, Any]]:
        """
        Export to several formats at once; failures are reported, not raised.

        Args:
            formats: {format: filename}

        Returns:
            {format: {"success": bool, "filename": str, "message": str}}
        """
        results = {}
        for fmt, filename in formats.items():
            try:
                self.export(document, fmt, filename)
                results[fmt] = {
                    'success': True,
                    'filename': filename,
                    'message': f"Exported successfully to {filename}",
                }
            except ExportFailure as e:
                logger.warning(f"Export to {fmt} failed: {e.message}")
                results[fmt] = {'success': False, 'filename': filename, 'message': e.message}
        return results

    def format_info(self) -> Dict[str, Dict[str, str]]:
        return {fmt: self.exporters[fmt].info() for fmt in self.supported_formats()}

    @staticmethod
    def validate_document(document: Dict[str, Any]) -> Dict[str, Any]:
        """
        Structural sanity check of an OpenAPI document.

        Returns:
            {"valid": bool, "errors": [...], "warnings": [...]}
        """
        errors: List[str] = []
        warnings: List[str] = []

        if 'openapi' not in document:
            errors.append('Missing OpenAPI version')

        info = document.get('info')
        if not isinstance(info, dict):
            errors.append('Missing info section')
        else:
            if not info.get('title'):
                warnings.append('Missing API title')
            if not info.get('version'):
                warnings.append('Missing API version')

        paths = document.get('paths')
        if not paths:
            warnings.append('No API paths defined')
        for path, item in (paths or {}).items():
            if not isinstance(item, dict):
                errors.append(f"Invalid path item for: {path}")
                continue
            for method, operation in item.items():
                if method.lower() not in OPERATION_METHODS:
                    continue
                if not isinstance(operation, dict):
                    errors.append(f"Invalid operation for: {method} {path}")
                elif 'responses' not in operation:
                    warnings.append(f"Missing responses for: {method} {path}")

        schemas = (document.get('components') or {}).get('schemas') or {}
        for ref in sorted(_refs(document)):
            name = ref.rsplit('/', 1)[-1]
            if ref.startswith('#/components/schemas/') and name not in schemas:
                errors.append(f"Dangling reference: {ref}")

        return {'valid': not errors, 'errors': errors, 'warnings': warnings}

    @staticmethod
    def summary(document: Dict[str, Any]) -> Dict[str, Any]:
        """Counts of paths, operations per method, schemas and security schemes."""
        method_counts: Dict[str, int] = {}
        operations = 0
        for _, method, _ in iter_operations(document):
            operations += 1
            method_counts[method.upper()] = method_counts.get(method.upper(), 0) + 1

        info = document.get('info') or {}
        components = document.get('components') or {}
        return {
            'api_info': {
                'title': info.get('title', 'Unknown'),
                'version': info.get('version', '1.0.0'),
                'description': info.get('description', ''),
            },
            'statistics': {
                'total_paths': len(document.get('paths') or {}),
                'total_operations': operations,
                'method_counts': dict(sorted(method_counts.items())),
                'total_schemas': len(components.get('schemas') or {}),
                'total_security_schemes': len(components.get('securitySchemes') or {}),
            },
            'servers': copy.deepcopy(document.get('servers') or []),
        }


def _refs(node: Any) -> set:
    found = set()
    if isinstance(node, dict):
        ref = node.get('$ref')
        if isinstance(ref, str):
            found.add(ref)
        for value in node.values():
            found |= _refs(value)
    elif isinstance(node, list):
        for value in node:
            found |= _refs(value)
    return found


def dumps(document: Dict[str, Any], fmt: str = 'json') -> str:
    """Shortcut for ``ExportManager().render(document, fmt)``."""
    return ExportManager().render(document, fmt)
