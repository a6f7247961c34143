#!/usr/bin/env python3
"""
Insomnia Exporter
=================
Convert an OpenAPI document into an Insomnia v4 export.

Resources: one workspace, one base environment (base URL and credential
placeholders) and one request per operation. Resource ids are derived from
a SHA-256 of their content, so exporting the same document twice yields the
same file.
"""

import hashlib
import json
from typing import Any, Dict, List

from .base import (
    BaseExporter,
    base_url,
    body_schema,
    example_from_schema,
    iter_operations,
    object_properties,
    operation_name,
)

EXPORT_SOURCE = "apidoc-scanner"


def stable_id(prefix: str, *parts: str) -> str:
    """``<prefix>_`` + first 24 hex chars of SHA-256 over ``parts``."""
    digest = hashlib.sha256('\0'.join(parts).encode('utf-8')).hexdigest()
    return f"{prefix}_{digest[:24]}"


class InsomniaExporter(BaseExporter):
    """OpenAPI → Insomnia export format v4"""

    name = "Insomnia Workspace"
    description = "Export as Insomnia Workspace (export format 4)"

    def convert(self, document: Dict[str, Any]) -> Dict[str, Any]:
        title = (document.get('info') or {}).get('title', 'API Workspace')
        workspace_id = stable_id('wrk', title)

        resources: List[Dict[str, Any]] = [
            self._workspace(document, workspace_id),
            self._environment(document, workspace_id),
        ]
        for position, (path, method, operation) in enumerate(iter_operations(document)):
            resources.append(self._request(document, workspace_id, position, path, method, operation))

        return {
            '_type': 'export',
            '__export_format': 4,
            '__export_source': EXPORT_SOURCE,
            'resources': resources,
        }

    def _workspace(self, document: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
        info = document.get('info') or {}
        return {
            '_id': workspace_id,
            '_type': 'workspace',
            'name': info.get('title', 'API Workspace'),
            'description': info.get('description', ''),
            'parentId': None,
            'scope': 'collection',
        }

    def _environment(self, document: Dict[str, Any], workspace_id: str) -> Dict[str, Any]:
        data: Dict[str, str] = {'base_url': base_url(document) or 'http://localhost'}

        schemes = (document.get('components') or {}).get('securitySchemes') or {}
        for scheme in schemes.values():
            if scheme.get('type') == 'http' and scheme.get('scheme') == 'bearer':
                data.setdefault('bearer_token', 'your-bearer-token')
            elif scheme.get('type') == 'http' and scheme.get('scheme') == 'basic':
                data.setdefault('username', 'your-username')
                data.setdefault('password', 'your-password')
            elif scheme.get('type') == 'apiKey':
                data.setdefault('api_key', 'your-api-key')
            elif scheme.get('type') == 'oauth2':
                data.setdefault('access_token', 'your-access-token')

        return {
            '_id': stable_id('env', workspace_id),
            '_type': 'environment',
            'name': 'Base Environment',
            'data': data,
            'dataPropertyOrder': {'&': list(data)},
            'color': None,
            'isPrivate': False,
            'metaSortKey': 1000000000000,
            'parentId': workspace_id,
        }

    def _request(self, document: Dict[str, Any], workspace_id: str, position: int, path: str, method: str,
                 operation: Dict[str, Any]) -> Dict[str, Any]:
        url_path = path.replace('{', '{{ _.').replace('}', ' }}')
        request: Dict[str, Any] = {
            '_id': stable_id('req', workspace_id, method.upper(), path),
            '_type': 'request',
            'parentId': workspace_id,
            'name': operation_name(path, method, operation),
            'description': operation.get('description', ''),
            'url': '{{ _.base_url }}' + url_path,
            'method': method.upper(),
            'headers': self._headers(document, operation),
            'parameters': self._parameters(document, operation),
            'authentication': self._authentication(document, operation),
            'metaSortKey': -(position + 1),
            'isPrivate': False,
            'settingStoreCookies': True,
            'settingSendCookies': True,
            'settingDisableRenderRequestBody': False,
            'settingEncodeUrl': True,
            'settingRebuildPath': True,
            'settingFollowRedirects': 'global',
        }
        if 'requestBody' in operation:
            body, content_type = self._body(document, operation)
            request['body'] = body
            if content_type:
                request['headers'].append({'name': 'Content-Type', 'value': content_type, 'disabled': False})
        return request

    def _value(self, document: Dict[str, Any], parameter: Dict[str, Any], prefix: str) -> str:
        value = parameter.get('example', example_from_schema(document, parameter.get('schema') or {}))
        if value is None:
            return '{{ _.%s_%s }}' % (prefix, parameter['name'])
        return value if isinstance(value, str) else json.dumps(value)

    def _headers(self, document: Dict[str, Any], operation: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {
                'name': parameter['name'],
                'value': self._value(document, parameter, 'header'),
                'description': parameter.get('description', ''),
                'disabled': False,
            }
            for parameter in operation.get('parameters') or []
            if parameter.get('in') == 'header'
        ]

    def _parameters(self, document: Dict[str, Any], operation: Dict[str, Any]) -> List[Dict[str, Any]]:
        return [
            {
                'name': parameter['name'],
                'value': self._value(document, parameter, 'query'),
                'description': parameter.get('description', ''),
                'disabled': not parameter.get('required', False),
            }
            for parameter in operation.get('parameters') or []
            if parameter.get('in') == 'query'
        ]

    def _authentication(self, document: Dict[str, Any], operation: Dict[str, Any]) -> Dict[str, Any]:
        security = operation.get('security', document.get('security')) or []
        if not security:
            return {'type': 'none'}
        schemes = (document.get('components') or {}).get('securitySchemes') or {}
        scheme = schemes.get(next(iter(security[0]), None)) or {}

        if scheme.get('type') == 'http' and scheme.get('scheme') == 'bearer':
            return {'type': 'bearer', 'token': '{{ _.bearer_token }}', 'prefix': 'Bearer'}
        if scheme.get('type') == 'http' and scheme.get('scheme') == 'basic':
            return {'type': 'basic', 'username': '{{ _.username }}', 'password': '{{ _.password }}'}
        if scheme.get('type') == 'apiKey' and scheme.get('in') in ('header', 'query'):
            return {
                'type': 'apikey',
                'key': scheme.get('name', 'X-API-Key'),
                'value': '{{ _.api_key }}',
                'addTo': 'header' if scheme['in'] == 'header' else 'queryParams',
            }
        if scheme.get('type') == 'oauth2':
            return {'type': 'bearer', 'token': '{{ _.access_token }}', 'prefix': 'Bearer'}
        return {'type': 'none'}

    def _body(self, document: Dict[str, Any], operation: Dict[str, Any]):
        """(body, content type header value)"""
        media_type, schema = body_schema(operation)

        if media_type in ('application/x-www-form-urlencoded', 'multipart/form-data'):
            params = []
            for field_name, prop in object_properties(document, schema).items():
                param: Dict[str, Any] = {
                    'name': field_name,
                    'description': prop.get('description', ''),
                    'disabled': False,
                }
                if prop.get('type') == 'string' and prop.get('format') == 'binary':
                    param['type'] = 'file'
                    param['fileName'] = ''
                else:
                    value = example_from_schema(document, prop)
                    param['value'] = value if isinstance(value, str) else json.dumps(value)
                params.append(param)
            return {'mimeType': media_type, 'params': params}, media_type

        if media_type is None:
            return {}, None
        text = json.dumps(example_from_schema(document, schema), indent=2, ensure_ascii=False)
        return {'mimeType': media_type, 'text': text}, media_type
