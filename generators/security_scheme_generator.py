#!/usr/bin/env python3
"""
Security Scheme Generator
==========================
Map declared security metadata to OpenAPI security scheme objects.

Declared metadata is a mapping ``{name: {"type": kind, ...params}}``:
- apiKey / api_key → {"type": "apiKey", "in": "header", "name": "X-API-Key"}
- bearer / jwt     → {"type": "http", "scheme": "bearer"}
- basic / http     → {"type": "http", "scheme": "basic"}
- oauth2           → {"type": "oauth2", "flows": {...}}
- openIdConnect    → {"type": "openIdConnect", "openIdConnectUrl": ...}

Unknown kinds produce a placeholder scheme instead of failing. The mapping is
pure: the same input always yields the same output.
"""

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional

from analyzers.annotation_parser import AnnotationParser
from analyzers.route_analyzer import Route

logger = logging.getLogger("api_scanner.generators.security_scheme_generator")

API_KEY_KINDS = {'apikey', 'api_key', 'api-key'}
BEARER_KINDS = {'bearer', 'jwt', 'token'}
BASIC_KINDS = {'basic'}
OAUTH2_KINDS = {'oauth2', 'oauth'}
OIDC_KINDS = {'openidconnect', 'oidc'}


class SecuritySchemeGenerator:
    """Pure mapping from security metadata to scheme objects and requirements."""

    @staticmethod
    def scheme(name: str, declared: Mapping[str, Any]) -> Dict[str, Any]:
        """
        Security scheme object for one declaration.

        Example:
            >>> SecuritySchemeGenerator.scheme("apiKeyAuth", {"type": "apiKey", "in": "query", "name": "key"})
            {'type': 'apiKey', 'in': 'query', 'name': 'key'}
        """
        kind = str(declared.get('type', '')).strip()
        lower = kind.lower()
        description = declared.get('description')

        if lower in API_KEY_KINDS:
            scheme = {
                'type': 'apiKey',
                'in': declared.get('in', 'header'),
                'name': declared.get('name', 'X-API-Key'),
            }
        elif lower in BEARER_KINDS:
            scheme = {'type': 'http', 'scheme': 'bearer'}
            bearer_format = declared.get('bearerFormat', 'JWT' if lower == 'jwt' else None)
            if bearer_format:
                scheme['bearerFormat'] = bearer_format
        elif lower in BASIC_KINDS:
            scheme = {'type': 'http', 'scheme': 'basic'}
        elif lower == 'http':
            scheme = {'type': 'http', 'scheme': declared.get('scheme', 'basic')}
            if declared.get('bearerFormat'):
                scheme['bearerFormat'] = declared['bearerFormat']
        elif lower in OAUTH2_KINDS:
            scheme = {'type': 'oauth2', 'flows': declared.get('flows') or SecuritySchemeGenerator._default_flows(declared)}
        elif lower in OIDC_KINDS:
            scheme = {
                'type': 'openIdConnect',
                'openIdConnectUrl': declared.get('openIdConnectUrl', declared.get('url', '/.well-known/openid-configuration')),
            }
        else:
            logger.warning(f"Unknown security scheme kind '{kind}' for {name}; using a placeholder")
            scheme = {
                'type': 'apiKey',
                'in': 'header',
                'name': 'Authorization',
                'description': f"Placeholder for unsupported security kind '{kind or 'unspecified'}'",
            }
            return scheme

        if description:
            scheme['description'] = description
        return scheme

    @staticmethod
    def _default_flows(declared: Mapping[str, Any]) -> Dict[str, Any]:
        scopes = declared.get('scopes') or {}
        if declared.get('authorizationUrl'):
            return {
                'authorizationCode': {
                    'authorizationUrl': declared['authorizationUrl'],
                    'tokenUrl': declared.get('tokenUrl', '/oauth/token'),
                    'scopes': dict(scopes),
                }
            }
        return {'clientCredentials': {'tokenUrl': declared.get('tokenUrl', '/oauth/token'), 'scopes': dict(scopes)}}

    @staticmethod
    def generate(declared: Mapping[str, Mapping[str, Any]]) -> Dict[str, Dict[str, Any]]:
        """Scheme objects for every declaration, sorted by name."""
        return {name: SecuritySchemeGenerator.scheme(name, declared[name]) for name in sorted(declared)}

    @staticmethod
    def operation_security(route: Route, middleware_security: Mapping[str, str],
                           known_schemes: Iterable[str]) -> Dict[str, Any]:
        """
        Security of one operation from its middleware and auth decorators.

        Returns:
            {"security": [{scheme: []}, ...], "schemes": {name: scheme}, "permissions": [...]}
            where "schemes" holds schemes introduced by decorators
        """
        known = set(known_schemes)
        requirements: List[Dict[str, List[str]]] = []

        for middleware in route.middleware:
            scheme_name = middleware_security.get(middleware) or middleware_security.get(middleware.split(':', 1)[0])
            if scheme_name is None and middleware in known:
                scheme_name = middleware
            if scheme_name and {scheme_name: []} not in requirements:
                requirements.append({scheme_name: []})

        declared = AnnotationParser.security(list(route.owner_annotations) + list(route.annotations))
        for requirement in declared.get('security', []):
            if requirement not in requirements:
                requirements.append(requirement)

        return {
            'security': requirements,
            'schemes': declared.get('security_schemes', {}),
            'permissions': declared.get('permissions', []),
        }

    @staticmethod
    def implied_scheme(name: str) -> Optional[Dict[str, Any]]:
        """Scheme object for a well-known scheme name referenced by middleware but never declared."""
        defaults = {
            'bearerAuth': {'type': 'http', 'scheme': 'bearer', 'bearerFormat': 'JWT'},
            'apiKeyAuth': {'type': 'apiKey', 'in': 'header', 'name': 'X-API-Key'},
            'cookieAuth': {'type': 'apiKey', 'in': 'cookie', 'name': 'session'},
            'basicAuth': {'type': 'http', 'scheme': 'basic'},
            'oauth2': {'type': 'oauth2', 'flows': {'clientCredentials': {'tokenUrl': '/oauth/token', 'scopes': {}}}},
        }
        scheme = defaults.get(name)
        return dict(scheme) if scheme else None
