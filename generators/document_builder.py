#!/usr/bin/env python3
"""
Document Builder
================
Assemble the OpenAPI 3.0 document from info, operations, component schemas
and security schemes.

Output is deterministic: paths keep the order operations were added in
(routes arrive sorted), components and security schemes are sorted by name,
and no timestamps are embedded.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger("api_scanner.generators.document_builder")

OPENAPI_VERSION = "3.0.3"

# Standard descriptions (RFC 7231 + common API conventions)
STATUS_DESCRIPTIONS = {
    200: "OK - Request successful",
    201: "Created - Resource created successfully",
    202: "Accepted - Request accepted for processing",
    204: "No Content - Request successful, no response body",
    400: "Bad Request - Invalid input or malformed request",
    401: "Unauthorized - Authentication required or failed",
    403: "Forbidden - Insufficient permissions",
    404: "Not Found - Resource doesn't exist",
    405: "Method Not Allowed - HTTP method not supported",
    409: "Conflict - Resource already exists or version conflict",
    422: "Unprocessable Entity - Validation failed",
    429: "Too Many Requests - Rate limit exceeded",
    500: "Internal Server Error - Server encountered an error",
}

# Method → default success status
SUCCESS_CODES = {
    'GET': 200,
    'POST': 201,
    'PUT': 200,
    'PATCH': 200,
    'DELETE': 204,
    'HEAD': 200,
    'OPTIONS': 200,
}


def status_description(code: int) -> str:
    return STATUS_DESCRIPTIONS.get(code, f"HTTP {code}")


class ResponseBuilder:
    """Standard responses for an operation."""

    @staticmethod
    def build(method: str, schema: Optional[Dict[str, Any]] = None, status: Optional[int] = None,
              secured: bool = False, validated: bool = False, has_path_params: bool = False,
              extra_codes: Iterable[int] = ()) -> Dict[str, Dict[str, Any]]:
        """
        Build the responses object.

        Args:
            method: HTTP method
            schema: Success body schema (None for no body)
            status: Explicit success status (from the route decorator)
            secured: Add 401/403
            validated: Add 422
            has_path_params: Add 404
            extra_codes: Status codes declared by response decorators

        Example:
            >>> ResponseBuilder.build("POST", {"$ref": "#/components/schemas/User"}, validated=True)
            {'201': {'description': 'Created - ...', 'content': {...}}, '422': {...}}
        """
        success = status or SUCCESS_CODES.get(method.upper(), 200)
        if success == 204 and schema:
            success = 200

        responses: Dict[str, Dict[str, Any]] = {}
        response: Dict[str, Any] = {"description": status_description(success)}
        if schema is not None and success != 204:
            response["content"] = {"application/json": {"schema": schema}}
        responses[str(success)] = response

        codes = set(int(c) for c in extra_codes if str(c).isdigit())
        if secured:
            codes.update({401, 403})
        if validated:
            codes.add(422)
        if has_path_params:
            codes.add(404)
        codes.discard(success)
        for code in sorted(codes):
            responses[str(code)] = {"description": status_description(code)}
        return responses


class DocumentBuilder:
    """Incrementally collect document parts and render the final mapping."""

    def __init__(self, title: str = "API Documentation", version: str = "1.0.0", description: str = ""):
        self.info: Dict[str, Any] = {"title": title, "version": version}
        if description:
            self.info["description"] = description
        self.servers: List[Dict[str, str]] = []
        self.paths: Dict[str, Dict[str, Any]] = {}
        self.schemas: Dict[str, Dict[str, Any]] = {}
        self.security_schemes: Dict[str, Dict[str, Any]] = {}
        self.security: List[Dict[str, List[str]]] = []
        self.tags: Dict[str, Optional[str]] = {}

    def add_server(self, url: str, description: Optional[str] = None) -> "DocumentBuilder":
        server = {"url": url}
        if description:
            server["description"] = description
        if server not in self.servers:
            self.servers.append(server)
        return self

    def add_tag(self, name: str, description: Optional[str] = None) -> "DocumentBuilder":
        if name not in self.tags or (description and not self.tags[name]):
            self.tags[name] = description
        return self

    def add_operation(self, path: str, method: str, operation: Dict[str, Any]) -> "DocumentBuilder":
        item = self.paths.setdefault(path, {})
        key = method.lower()
        if key in item:
            logger.debug(f"Duplicate operation {method} {path} ignored")
            return self
        item[key] = operation
        for tag in operation.get("tags", []):
            self.add_tag(tag)
        return self

    def add_schemas(self, schemas: Dict[str, Dict[str, Any]]) -> "DocumentBuilder":
        self.schemas.update(schemas)
        return self

    def add_security_scheme(self, name: str, scheme: Dict[str, Any]) -> "DocumentBuilder":
        self.security_schemes.setdefault(name, scheme)
        return self

    def add_global_security(self, scheme_name: str) -> "DocumentBuilder":
        requirement = {scheme_name: []}
        if requirement not in self.security:
            self.security.append(requirement)
        return self

    def build(self) -> Dict[str, Any]:
        """
        Render the document.

        Returns:
            {"openapi", "info", "servers", "paths", "components"} plus
            "security" and "tags" when present. The result is a deep copy.
        """
        document: Dict[str, Any] = {
            "openapi": OPENAPI_VERSION,
            "info": dict(self.info),
            "servers": list(self.servers) or [{"url": "/"}],
            "paths": self.paths,
            "components": {
                "schemas": {name: self.schemas[name] for name in sorted(self.schemas)},
                "securitySchemes": {name: self.security_schemes[name] for name in sorted(self.security_schemes)},
            },
        }
        if self.security:
            document["security"] = list(self.security)
        if self.tags:
            document["tags"] = [
                {"name": name, **({"description": self.tags[name]} if self.tags[name] else {})}
                for name in sorted(self.tags)
            ]
        return copy.deepcopy(document)
