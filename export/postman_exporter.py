#!/usr/bin/env python3
"""
Postman Exporter
================
Convert an OpenAPI document into a Postman Collection v2.1.

Every operation becomes one named request in a flat item list, with example
values generated from the parameter and body schemas. Path variables use
Postman's ``:name`` syntax; the server URL becomes the ``baseUrl`` variable.
"""

import json
import re
from typing import Any, Dict, List, Optional

from .base import (
    BaseExporter,
    base_url,
    body_schema,
    example_from_schema,
    iter_operations,
    object_properties,
    operation_name,
)

COLLECTION_SCHEMA = "https://schema.getpostman.com/json/collection/v2.1.0/collection.json"

_PATH_VARIABLE = re.compile(r'\{(\w+)\}')


class PostmanExporter(BaseExporter):
    """OpenAPI → Postman Collection v2.1"""

    name = "Postman Collection"
    description = "Export as Postman Collection v2.1"

    def convert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        collection: Dict[str, Any] = {
            'info': self._info(document),
            'item': [self._item(document, path, method, op) for path, method, op in iter_operations(document)],
            'variable': self._variables(document),
        }
        auth = self._auth(document, document.get('security') or [])
        if auth:
            collection['auth'] = auth
        return collection

    def _info(self, document: Dict[str, Any]) -> Dict[str, Any]:
        info = document.get('info') or {}
        return {
            'name': info.get('title', 'API Collection'),
            'description': info.get('description', ''),
            'version': info.get('version', '1.0.0'),
            'schema': COLLECTION_SCHEMA,
        }

    def _item(self, document: Dict[str, Any], path: str, method: str, operation: Dict[str, Any]) -> Dict[str, Any]:
        request: Dict[str, Any] = {
            'method': method.upper(),
            'header': self._headers(document, operation),
            'url': self._url(document, path, operation),
        }
        if operation.get('description'):
            request['description'] = operation['description']
        if 'requestBody' in operation:
            request['body'] = self._body(document, operation)
        if operation.get('security'):
            auth = self._auth(document, operation['security'])
            if auth:
                request['auth'] = auth

        return {
            'name': operation_name(path, method, operation),
            'request': request,
            'response': [],
        }

    def _example(self, document: Dict[str, Any], parameter: Dict[str, Any]) -> str:
        if 'example' in parameter:
            value = parameter['example']
        else:
            value = example_from_schema(document, parameter.get('schema') or {})
        if value is None:
            return '{{' + parameter['name'] + '}}'
        return value if isinstance(value, str) else json.dumps(value)

    def _headers(self, document: Dict[str, Any], operation: Dict[str, Any]) -> List[Dict[str, Any]]:
        headers = []
        for parameter in operation.get('parameters') or []:
            if parameter.get('in') == 'header':
                headers.append({
                    'key': parameter['name'],
                    'value': self._example(document, parameter),
                    'description': parameter.get('description', ''),
                })
        media_type, _ = body_schema(operation)
        if media_type == 'application/json':
            headers.append({'key': 'Content-Type', 'value': 'application/json'})
        return headers

    def _url(self, document: Dict[str, Any], path: str, operation: Dict[str, Any]) -> Dict[str, Any]:
        postman_path = _PATH_VARIABLE.sub(r':\1', path)
        query = []
        variables = []
        for parameter in operation.get('parameters') or []:
            entry = {
                'key': parameter['name'],
                'value': self._example(document, parameter),
                'description': parameter.get('description', ''),
            }
            if parameter.get('in') == 'path':
                variables.append(entry)
            elif parameter.get('in') == 'query':
                if not parameter.get('required'):
                    entry['disabled'] = True
                query.append(entry)

        url: Dict[str, Any] = {
            'raw': '{{baseUrl}}' + postman_path,
            'host': ['{{baseUrl}}'],
            'path': [segment for segment in postman_path.split('/') if segment],
        }
        if query:
            url['query'] = query
        if variables:
            url['variable'] = variables
        return url

    def _body(self, document: Dict[str, Any], operation: Dict[str, Any]) -> Dict[str, Any]:
        media_type, schema = body_schema(operation)

        if media_type in ('application/x-www-form-urlencoded', 'multipart/form-data'):
            fields = []
            for field_name, prop in object_properties(document, schema).items():
                entry: Dict[str, Any] = {'key': field_name, 'description': prop.get('description', '')}
                if prop.get('type') == 'string' and prop.get('format') == 'binary':
                    entry['type'] = 'file'
                    entry['src'] = []
                else:
                    value = example_from_schema(document, prop)
                    entry['type'] = 'text'
                    entry['value'] = value if isinstance(value, str) else json.dumps(value)
                fields.append(entry)
            if media_type == 'multipart/form-data':
                return {'mode': 'formdata', 'formdata': fields}
            return {'mode': 'urlencoded', 'urlencoded': fields}

        if media_type is None:
            return {'mode': 'raw', 'raw': ''}
        return {
            'mode': 'raw',
            'raw': json.dumps(example_from_schema(document, schema), indent=2, ensure_ascii=False),
            'options': {'raw': {'language': 'json'}},
        }

    def _auth(self, document: Dict[str, Any], security: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Postman auth block for the first requirement of ``security``."""
        if not security:
            return None
        schemes = (document.get('components') or {}).get('securitySchemes') or {}
        scheme_name = next(iter(security[0]), None)
        scheme = schemes.get(scheme_name) if scheme_name else None
        if not scheme:
            return None

        if scheme.get('type') == 'http' and scheme.get('scheme') == 'bearer':
            return {'type': 'bearer', 'bearer': [{'key': 'token', 'value': '{{bearerToken}}', 'type': 'string'}]}
        if scheme.get('type') == 'http' and scheme.get('scheme') == 'basic':
            return {
                'type': 'basic',
                'basic': [
                    {'key': 'username', 'value': '{{username}}', 'type': 'string'},
                    {'key': 'password', 'value': '{{password}}', 'type': 'string'},
                ],
            }
        if scheme.get('type') == 'apiKey':
            return {
                'type': 'apikey',
                'apikey': [
                    {'key': 'key', 'value': scheme.get('name', 'X-API-Key'), 'type': 'string'},
                    {'key': 'value', 'value': '{{apiKey}}', 'type': 'string'},
                    {'key': 'in', 'value': scheme.get('in', 'header'), 'type': 'string'},
                ],
            }
        if scheme.get('type') == 'oauth2':
            return {'type': 'oauth2', 'oauth2': [{'key': 'accessToken', 'value': '{{accessToken}}', 'type': 'string'}]}
        return None

    def _variables(self, document: Dict[str, Any]) -> List[Dict[str, str]]:
        variables = [{'key': 'baseUrl', 'value': base_url(document) or 'http://localhost', 'type': 'string'}]
        seen = {'baseUrl'}

        def add(key: str, value: str):
            if key not in seen:
                seen.add(key)
                variables.append({'key': key, 'value': value, 'type': 'string'})

        schemes = (document.get('components') or {}).get('securitySchemes') or {}
        for scheme in schemes.values():
            if scheme.get('type') == 'http' and scheme.get('scheme') == 'bearer':
                add('bearerToken', 'your-bearer-token')
            elif scheme.get('type') == 'http' and scheme.get('scheme') == 'basic':
                add('username', 'your-username')
                add('password', 'your-password')
            elif scheme.get('type') == 'apiKey':
                add('apiKey', 'your-api-key')
            elif scheme.get('type') == 'oauth2':
                add('accessToken', 'your-access-token')
        return variables
