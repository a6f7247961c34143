"""
Shared exporter interface and helpers.

Exporters turn a finished OpenAPI document into another format. They work
on a private deep copy, so the caller's document is never modified.
"""

from __future__ import annotations

import copy
import json
import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Set, Tuple

from analyzers.diagnostics import ExportFailure

logger = logging.getLogger("api_scanner.export")

OPERATION_METHODS = ('get', 'post', 'put', 'delete', 'patch', 'head', 'options')

REF_PREFIX = "#/components/schemas/"

# Example values for string formats
FORMAT_EXAMPLES = {
    'date-time': '2024-01-01T00:00:00Z',
    'date': '2024-01-01',
    'time': '12:00:00',
    'email': 'user@example.com',
    'uuid': '00000000-0000-0000-0000-000000000000',
    'uri': 'https://example.com',
    'url': 'https://example.com',
    'ipv4': '127.0.0.1',
    'ipv6': '::1',
    'binary': '',
    'byte': '',
}


class BaseExporter(ABC):
    """Base class for all document exporters."""

    name: str = ""
    description: str = ""
    extension: str = "json"
    mime_type: str = "application/json"

    def export(self, document: Dict[str, Any]) -> Any:
        """Converted representation of ``document`` (the argument is left untouched)."""
        return self.convert(copy.deepcopy(document))

    @abstractmethod
    def convert(self, document: Dict[str, Any]) -> Any:
        """Convert a private copy of the document."""
        pass

    def render(self, data: Any) -> str:
        return json.dumps(data, indent=2, ensure_ascii=False)

    def save(self, data: Any, filename: str) -> str:
        """
        Write rendered ``data`` to ``filename``.

        Raises:
            ExportFailure: the destination cannot be written
        """
        content = self.render(data)
        try:
            target = Path(filename)
            if target.parent and not target.parent.exists():
                target.parent.mkdir(parents=True, exist_ok=True)
            with open(target, 'w', encoding='utf-8') as f:
                f.write(content)
        except OSError as e:
            raise ExportFailure(f"Cannot write {filename}: {e}", path=filename)
        logger.info(f"Exported {self.name or self.__class__.__name__} to {filename}")
        return content

    def info(self) -> Dict[str, str]:
        return {
            'name': self.name,
            'description': self.description,
            'extension': self.extension,
            'mime_type': self.mime_type,
        }


def iter_operations(document: Dict[str, Any]) -> Iterator[Tuple[str, str, Dict[str, Any]]]:
    """(path, method, operation) in document order."""
    for path, item in (document.get('paths') or {}).items():
        if not isinstance(item, dict):
            continue
        for method, operation in item.items():
            if method.lower() in OPERATION_METHODS and isinstance(operation, dict):
                yield path, method.lower(), operation


def base_url(document: Dict[str, Any]) -> str:
    servers = document.get('servers') or [{'url': 'http://localhost'}]
    url = str(servers[0].get('url', 'http://localhost'))
    return url.rstrip('/') if url != '/' else ''


def operation_name(path: str, method: str, operation: Dict[str, Any]) -> str:
    return operation.get('summary') or operation.get('operationId') or f"{method.upper()} {path}"


def resolve_ref(document: Dict[str, Any], schema: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """(component name, target schema) of a ``$ref`` schema; (None, schema) otherwise."""
    ref = schema.get('$ref')
    if not isinstance(ref, str) or not ref.startswith(REF_PREFIX):
        return None, schema
    name = ref[len(REF_PREFIX):]
    return name, ((document.get('components') or {}).get('schemas') or {}).get(name, {})


def example_from_schema(document: Dict[str, Any], schema: Optional[Dict[str, Any]],
                        visited: Optional[Set[str]] = None) -> Any:
    """
    Example value for ``schema``.

    References are followed once per branch; a component met again on the
    same branch yields None, so cyclic models terminate.

    Example:
        >>> example_from_schema({}, {"type": "object", "properties": {"id": {"type": "integer"}}})
        {'id': 0}
    """
    if not schema:
        return None
    visited = set() if visited is None else visited

    name, target = resolve_ref(document, schema)
    if name is not None:
        if name in visited:
            return None
        return example_from_schema(document, target, visited | {name})

    if 'example' in schema:
        return schema['example']
    if 'default' in schema:
        return schema['default']
    if schema.get('enum'):
        return schema['enum'][0]
    for combinator in ('allOf', 'oneOf', 'anyOf'):
        if schema.get(combinator):
            return example_from_schema(document, schema[combinator][0], visited)

    schema_type = schema.get('type', 'object' if 'properties' in schema else None)
    if schema_type == 'object':
        properties = schema.get('properties') or {}
        if not properties and isinstance(schema.get('additionalProperties'), dict):
            return {'key': example_from_schema(document, schema['additionalProperties'], visited)}
        return {key: example_from_schema(document, value, visited) for key, value in properties.items()}
    if schema_type == 'array':
        return [example_from_schema(document, schema.get('items') or {'type': 'string'}, visited)]
    if schema_type == 'string':
        return FORMAT_EXAMPLES.get(schema.get('format'), 'string')
    if schema_type == 'integer':
        return int(schema.get('minimum', 0))
    if schema_type == 'number':
        return float(schema.get('minimum', 0.0))
    if schema_type == 'boolean':
        return True
    return None


def body_schema(operation: Dict[str, Any]) -> Tuple[Optional[str], Dict[str, Any]]:
    """(media type, schema) of an operation's request body."""
    content = (operation.get('requestBody') or {}).get('content') or {}
    for media_type in ('application/json', 'application/x-www-form-urlencoded', 'multipart/form-data'):
        if media_type in content:
            return media_type, content[media_type].get('schema') or {}
    for media_type, media in content.items():
        return media_type, media.get('schema') or {}
    return None, {}


def object_properties(document: Dict[str, Any], schema: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
    """Properties of an object schema, following one reference."""
    _, target = resolve_ref(document, schema)
    return target.get('properties') or {}
