#!/usr/bin/env python3
"""
OpenAPI Generator
=================
The build pipeline: source files in, OpenAPI 3.0 document out.

Stages:
1. Discovery: enumerate source files in sorted order and fingerprint them
2. Per-file analysis (served from the cache when the fingerprint matches):
   declarations, models, validator rule sets and their diagnostics
3. Relation resolution across all models
4. Route binding (external bindings + decorator routes)
5. Per route: parameters, request body, responses, security
6. Document assembly

A build never stops at a bad file or route: the failure becomes a diagnostic
and the rest of the document is still produced. Only configuration errors
are raised.
"""

import hashlib
import json
import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

import yaml

from analyzers.annotation_parser import AnnotationKind, AnnotationParser
from analyzers.base import DeclarationIndex, SourceUnit
from analyzers.diagnostics import (
    ConfigurationFailure,
    Diagnostic,
    DiagnosticCollector,
    DiagnosticSink,
    ParseFailure,
    Severity,
)
from analyzers.docblock_parser import DocBlock, DocBlockParser
from analyzers.model_analyzer import Model, ModelAnalyzer
from analyzers.parameter_extractor import Parameter, ParameterExtractor, ParameterLocation, split_by_location
from analyzers.relation_analyzer import ModelRegistry, RelationAnalyzer
from analyzers.route_analyzer import Route, RouteAnalyzer, RouteBinding
from analyzers.source_parser import SourceParser
from analyzers.type_inference import TypeInferenceEngine
from analyzers.types import ObjectType, TypeRef
from analyzers.validation_analyzer import RuleSet, ValidationAnalyzer, apply_to_schema
from cache.cache_manager import CacheManager
from cache.change_detector import ChangeDetector, SourceFile
from config import GeneratorConfig

from .document_builder import DocumentBuilder, ResponseBuilder
from .schema_generator import SchemaGenerator
from .security_scheme_generator import SecuritySchemeGenerator

logger = logging.getLogger("api_scanner.generators.openapi_generator")

# Bumped whenever the cached payload layout changes
PAYLOAD_VERSION = "1"

BindingInput = Union[RouteBinding, Mapping[str, Any]]


@dataclass
class FileAnalysis:
    """Everything derived from one source file; the unit of caching."""
    path: str
    fingerprint: str
    unit: Optional[SourceUnit] = None
    models: List[Model] = field(default_factory=list)
    rule_sets: List[RuleSet] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    from_cache: bool = False

    def to_payload(self) -> Dict[str, Any]:
        return {
            "unit": self.unit.to_dict() if self.unit else None,
            "models": [m.to_dict() for m in self.models],
            "rule_sets": [r.to_dict() for r in self.rule_sets],
            "diagnostics": [d.to_dict() for d in self.diagnostics],
        }

    @classmethod
    def from_payload(cls, path: str, fingerprint: str, payload: Dict[str, Any]) -> "FileAnalysis":
        unit_data = payload.get("unit")
        return cls(
            path=path,
            fingerprint=fingerprint,
            unit=SourceUnit.from_dict(unit_data) if unit_data else None,
            models=[Model.from_dict(m) for m in payload.get("models", [])],
            rule_sets=[RuleSet.from_dict(r) for r in payload.get("rule_sets", [])],
            diagnostics=[Diagnostic.from_dict(d) for d in payload.get("diagnostics", [])],
            from_cache=True,
        )


@dataclass
class BuildResult:
    """Output of one build."""
    document: Dict[str, Any]
    diagnostics: List[Diagnostic] = field(default_factory=list)
    stats: Dict[str, Any] = field(default_factory=dict)
    routes: List[Route] = field(default_factory=list)
    models: List[Model] = field(default_factory=list)

    @property
    def errors(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.ERROR]

    @property
    def warnings(self) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.severity is Severity.WARNING]

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.document, indent=indent, ensure_ascii=False)


def analysis_salt(config: GeneratorConfig) -> str:
    """Digest of the settings that shape per-file analysis; part of every fingerprint."""
    settings = {
        "version": PAYLOAD_VERSION,
        "model_bases": sorted(config.model_bases),
        "validator_bases": sorted(config.validator_bases),
    }
    return hashlib.sha256(json.dumps(settings, sort_keys=True).encode('utf-8')).hexdigest()[:16]


class OpenApiGenerator:
    """
    Build OpenAPI documents for one source tree.

    Keep one generator alive across builds to reuse its cache:

    Usage:
        generator = OpenApiGenerator(GeneratorConfig(source_root="./app"))
        result = generator.build(bindings=[{"method": "GET", "path": "/users", "handler": "UserController.index"}])
        print(result.to_json())
    """

    def __init__(self, config: Optional[GeneratorConfig] = None, sink: Optional[DiagnosticSink] = None,
                 cache: Optional[CacheManager] = None):
        """
        Args:
            config: Generator configuration (defaults apply when omitted)
            sink: Callable receiving every diagnostic as it is emitted
            cache: Cache to use instead of the one described by the config
        """
        self.config = (config or GeneratorConfig()).validate()
        self.sink = sink
        # Fingerprints seen by the previous build (relative path → fingerprint)
        self.fingerprints: Dict[str, str] = {}
        if cache is not None:
            self.cache = cache
        else:
            self.cache = CacheManager.for_backend(self.config.cache_backend, self.config.cache_path,
                                                  self.config.cache_ttl)

    # ------------------------------------------------------------------
    # Build
    # ------------------------------------------------------------------

    def build(self, root: Optional[str] = None, bindings: Iterable[BindingInput] = (),
              security: Optional[Mapping[str, Mapping[str, Any]]] = None) -> BuildResult:
        """
        Run a full build.

        Args:
            root: Source root (defaults to ``config.source_root``)
            bindings: External route bindings (RouteBinding or dicts)
            security: Declared security schemes, merged over ``config.security_schemes``

        Returns:
            BuildResult with the document, diagnostics and statistics

        Raises:
            ConfigurationFailure: missing or unreadable source root
        """
        source_root = root or self.config.source_root
        if not source_root:
            raise ConfigurationFailure("No source root given")
        if not Path(source_root).is_dir():
            raise ConfigurationFailure(f"Source root does not exist or is not a directory: {source_root}",
                                       path=str(source_root))

        diagnostics = DiagnosticCollector(self.sink)
        stats: Dict[str, Any] = {"files": 0, "analyzed": 0, "cached": 0, "failed": 0}

        # 1. Discovery
        detector = ChangeDetector(
            source_root,
            extensions=self.config.extensions,
            ignore_dirs=self.config.ignore_dirs,
            max_file_size_mb=self.config.max_file_size_mb,
            use_mtime=self.config.use_mtime,
            salt=analysis_salt(self.config),
            diagnostics=diagnostics,
        )
        sources = [s for s in (detector.read(p) for p in detector.discover()) if s is not None]
        stats["files"] = len(sources)
        stats["skipped"] = detector.stats["files_skipped"]
        stats["failed"] = detector.stats["files_errored"]

        detector.previous = self.fingerprints
        changed, unchanged = detector.get_changed_files(sources)
        self.fingerprints = detector.previous
        stats["changed"] = len(changed)
        stats["unchanged"] = len(unchanged)

        # 2. Per-file analysis
        analyses = []
        for source in sources:
            analysis = self.analyze_file(source)
            diagnostics.extend(analysis.diagnostics)
            stats["cached" if analysis.from_cache else "analyzed"] += 1
            if analysis.unit is None:
                stats["failed"] += 1
            analyses.append(analysis)

        index = DeclarationIndex()
        registry = ModelRegistry(diagnostics)
        rule_sets: Dict[str, RuleSet] = {}
        units = []
        for analysis in analyses:
            if analysis.unit is None:
                continue
            units.append(analysis.unit)
            index.add_unit(analysis.unit)
            for model in analysis.models:
                registry.add(model)
            for rule_set in analysis.rule_sets:
                rule_sets.setdefault(rule_set.name, rule_set)

        # 3. Relations
        dangling = RelationAnalyzer(registry, diagnostics).resolve()

        # 4. Routes
        route_analyzer = RouteAnalyzer(index, diagnostics, self.config.any_methods, self.config.decorator_routes)
        routes = route_analyzer.analyze(_bindings(bindings), units)

        # 5 + 6. Operations and document
        document = self._document(routes, registry, rule_sets, security or {}, diagnostics)

        stats.update({
            "models": len(registry),
            "dangling_relations": dangling,
            "validators": len(rule_sets),
            "routes": len(routes),
            "operations": sum(len(item) for item in document["paths"].values()),
            "schemas": len(document["components"]["schemas"]),
            "diagnostics": len(diagnostics),
        })
        if self.cache is not None:
            stats["cache"] = self.cache.get_stats()

        logger.info(f"Build complete: {stats['operations']} operations, {stats['models']} models, "
                    f"{stats['analyzed']} analyzed, {stats['cached']} cached, {len(diagnostics)} diagnostics")
        return BuildResult(document, list(diagnostics.diagnostics), stats, routes, list(registry))

    def analyze_file(self, source: SourceFile) -> FileAnalysis:
        """Per-file analysis of ``source``, from the cache when its fingerprint is known."""
        if self.cache is not None:
            payload = self.cache.get(source.relative, source.fingerprint)
            if payload is not None:
                try:
                    return FileAnalysis.from_payload(source.relative, source.fingerprint, payload)
                except (KeyError, ValueError, TypeError) as e:
                    logger.warning(f"Discarding unreadable cache entry for {source.relative}: {e}")
                    self.cache.invalidate(source.relative)

        analysis = self._analyze(source)
        if self.cache is not None:
            self.cache.set(source.relative, source.fingerprint, analysis.to_payload())
        return analysis

    def _analyze(self, source: SourceFile) -> FileAnalysis:
        collector = DiagnosticCollector(log=False)
        analysis = FileAnalysis(source.relative, source.fingerprint)

        parser = SourceParser(collector)
        unit = parser.parse(source.text, source.relative, source.fingerprint,
                            SourceParser.module_name(source.relative))
        if unit is not None:
            engine = TypeInferenceEngine(collector)
            try:
                analysis.models = ModelAnalyzer(engine, self.config.model_bases).analyze(unit)
                analysis.rule_sets = ValidationAnalyzer(collector, self.config.validator_bases).analyze(unit)
                analysis.unit = unit
            except RecursionError:
                collector.record(ParseFailure("Source too deeply nested to analyze", path=source.relative))
                analysis.models = []
                analysis.rule_sets = []

        analysis.diagnostics = list(collector.diagnostics)
        logger.debug(f"Analyzed {source.relative}: {len(analysis.models)} models, "
                     f"{len(analysis.rule_sets)} validators")
        return analysis

    # ------------------------------------------------------------------
    # Document
    # ------------------------------------------------------------------

    def _document(self, routes: List[Route], registry: ModelRegistry, rule_sets: Mapping[str, RuleSet],
                  security: Mapping[str, Mapping[str, Any]], diagnostics: DiagnosticCollector) -> Dict[str, Any]:
        builder = DocumentBuilder(self.config.title, self.config.version, self.config.description)
        for server in self.config.servers:
            builder.add_server(server.get('url', '/'), server.get('description'))

        declared = dict(self.config.security_schemes)
        declared.update(security)
        for name, scheme in SecuritySchemeGenerator.generate(declared).items():
            builder.add_security_scheme(name, scheme)
        for name in self.config.default_security:
            self._ensure_scheme(builder, name, {})
            builder.add_global_security(name)

        schemas = SchemaGenerator(registry, diagnostics, self.config.flatten)
        if not self.config.flatten:
            for model in registry:
                schemas.register_model(model)

        engine = TypeInferenceEngine(diagnostics)
        extractor = ParameterExtractor(engine, diagnostics)

        operation_ids: Dict[str, int] = {}
        for route in routes:
            operation = OperationBuilder(route, schemas, engine, extractor, self.config).build(rule_sets)

            # one handler bound to several paths
            count = operation_ids.get(operation["operationId"], 0) + 1
            operation_ids[operation["operationId"]] = count
            if count > 1:
                operation["operationId"] = f"{operation['operationId']}_{count}"

            secured = self._operation_security(route, operation, builder, declared)
            if secured or builder.security:
                operation["responses"] = _with_auth_responses(operation["responses"])
            if route.owner is not None and route.tag in operation["tags"]:
                builder.add_tag(route.tag, DocBlockParser.parse(route.owner.doc).summary)
            builder.add_operation(route.path, route.method, operation)

        builder.add_schemas(schemas.components())
        return builder.build()

    def _operation_security(self, route: Route, operation: Dict[str, Any], builder: DocumentBuilder,
                            declared: Mapping[str, Any]) -> bool:
        security = SecuritySchemeGenerator.operation_security(
            route, self.config.middleware_security, builder.security_schemes)
        for requirement in security["security"]:
            for name in requirement:
                self._ensure_scheme(builder, name, security["schemes"].get(name, {}))
        if security["security"]:
            operation["security"] = security["security"]
        if security["permissions"]:
            operation["x-permissions"] = security["permissions"]
        return bool(security["security"])

    @staticmethod
    def _ensure_scheme(builder: DocumentBuilder, name: str, declared: Mapping[str, Any]) -> None:
        if name in builder.security_schemes:
            return
        if declared:
            builder.add_security_scheme(name, SecuritySchemeGenerator.scheme(name, declared))
            return
        implied = SecuritySchemeGenerator.implied_scheme(name)
        builder.add_security_scheme(name, implied or SecuritySchemeGenerator.scheme(name, {}))


class OperationBuilder:
    """The operation object of one route."""

    def __init__(self, route: Route, schemas: SchemaGenerator, engine: TypeInferenceEngine,
                 extractor: ParameterExtractor, config: GeneratorConfig):
        self.route = route
        self.schemas = schemas
        self.engine = engine
        self.extractor = extractor
        self.config = config
        self.doc: DocBlock = DocBlockParser.parse(route.handler.doc)
        self.annotations = list(route.owner_annotations) + list(route.annotations)

    def build(self, rule_sets: Mapping[str, RuleSet]) -> Dict[str, Any]:
        route = self.route
        parameters = self.extractor.extract(route, rule_sets)
        plain, body = split_by_location(parameters)

        operation: Dict[str, Any] = {
            "operationId": route.operation_id,
            "tags": self.tags(),
        }
        if self.doc.summary:
            operation["summary"] = self.doc.summary
        if self.doc.description:
            operation["description"] = self.doc.description
        if self.deprecated():
            operation["deprecated"] = True

        if plain:
            operation["parameters"] = [self.parameter(p) for p in plain]
        if body:
            operation["requestBody"] = self.request_body(body)

        status, schema, extra_codes = self.response()
        operation["responses"] = ResponseBuilder.build(
            route.method,
            schema,
            status=status,
            validated=any(p.rule is not None for p in parameters),
            has_path_params=bool(route.path_variables),
            extra_codes=extra_codes,
        )
        operation["x-handler"] = route.handler_name
        return operation

    # ------------------------------------------------------------------
    # Parts
    # ------------------------------------------------------------------

    def tags(self) -> List[str]:
        tags: List[str] = []
        for annotation in self.annotations:
            if annotation.kind is not AnnotationKind.TAG:
                continue
            for value in annotation.args:
                items = value if isinstance(value, (list, tuple)) else [value]
                tags.extend(str(v) for v in items if str(v) not in tags)
        return tags or [self.route.tag]

    def deprecated(self) -> bool:
        return self.doc.deprecated or any(a.kind is AnnotationKind.DEPRECATED for a in self.annotations)

    def parameter_schema(self, parameter: Parameter) -> Dict[str, Any]:
        schema = self.schemas.schema_for(parameter.type)
        for key, value in parameter.constraints.items():
            schema.setdefault(key, value)
        if parameter.rule is not None:
            schema = apply_to_schema(parameter.rule, schema)
            schema.pop('description', None)
        if parameter.default is not None and _json_value(parameter.default):
            schema["default"] = _plain(parameter.default)
        return schema

    def parameter(self, parameter: Parameter) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "name": parameter.name,
            "in": parameter.location.value,
            "required": True if parameter.location is ParameterLocation.PATH else parameter.required,
            "schema": self.parameter_schema(parameter),
        }
        description = parameter.description or (parameter.rule.describe() if parameter.rule else None)
        if description:
            result["description"] = description
        return result

    def request_body(self, body: List[Parameter]) -> Dict[str, Any]:
        media_type = next((p.media_type for p in body if p.media_type), "application/json")

        single = body[0] if len(body) == 1 else None
        if single is not None and single.rule is None and isinstance(single.type.strip_nullable(), ObjectType):
            schema = self.schemas.schema_for(single.type)
            return {
                "required": single.required,
                "content": {media_type: {"schema": schema}},
            }

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for parameter in body:
            prop = self.parameter_schema(parameter)
            description = parameter.description or (parameter.rule.describe() if parameter.rule else None)
            if description and "description" not in prop:
                if "$ref" in prop:
                    prop = {"allOf": [prop]}
                prop["description"] = description
            properties[parameter.name] = prop
            if parameter.required:
                required.append(parameter.name)

        schema: Dict[str, Any] = {"type": "object", "properties": properties}
        if required:
            schema["required"] = required
        reference = self.schemas.fragment(_component_name(self.route.operation_id) + "Request", schema)
        return {
            "required": bool(required),
            "content": {media_type: {"schema": reference}},
        }

    def response(self) -> Tuple[Optional[int], Optional[Dict[str, Any]], List[int]]:
        """(explicit status, success schema, extra status codes)"""
        status: Optional[int] = None
        response_type: Optional[TypeRef] = None
        extra_codes: List[int] = []

        for annotation in self.annotations:
            if annotation.kind is AnnotationKind.ROUTE:
                status = _status(annotation.get('status_code')) or status
                model = annotation.get('response_model')
                if isinstance(model, str):
                    response_type = self.engine.parse_annotation(model)
            elif annotation.kind is AnnotationKind.RESPONSE:
                code = None
                for value in list(annotation.args) + [annotation.get('status'), annotation.get('status_code'),
                                                        annotation.get('model')]:
                    if _status(value):
                        code = _status(value)
                    elif isinstance(value, str) and value:
                        response_type = self.engine.parse_annotation(value)
                if code is not None:
                    if 200 <= code < 300:
                        status = code
                    else:
                        extra_codes.append(code)

        if response_type is None:
            response_type = self.engine.infer_return(self.route.handler, self.doc, self.route.source_path)

        if response_type.strip_nullable().is_unknown:
            return status, None, extra_codes
        return status, self.schemas.schema_for(response_type), extra_codes


# =============================================================================
# INPUT FILES
# =============================================================================

def load_route_bindings(path: str) -> List[RouteBinding]:
    """
    Read route bindings from a YAML or JSON file.

    The file holds a list of ``{method|methods, path, handler, middleware}``
    mappings, or a mapping with a ``routes`` list.

    Raises:
        ConfigurationFailure: unreadable or malformed file
    """
    data = _load_structured(path)
    if isinstance(data, dict):
        data = data.get('routes', [])
    if not isinstance(data, list):
        raise ConfigurationFailure("Route file must contain a list of routes", path=path)
    bindings: List[RouteBinding] = []
    for entry in data:
        if not isinstance(entry, dict) or 'path' not in entry or 'handler' not in entry:
            raise ConfigurationFailure(f"Invalid route entry: {entry!r}", path=path)
        bindings.extend(RouteBinding.from_dict(entry))
    return bindings


def load_security(path: str) -> Dict[str, Dict[str, Any]]:
    """
    Read declared security schemes ``{name: {"type": kind, ...}}`` from YAML or JSON.

    Raises:
        ConfigurationFailure: unreadable or malformed file
    """
    data = _load_structured(path)
    if isinstance(data, dict) and isinstance(data.get('securitySchemes'), dict):
        data = data['securitySchemes']
    if not isinstance(data, dict) or not all(isinstance(v, dict) for v in data.values()):
        raise ConfigurationFailure("Security file must map scheme names to mappings", path=path)
    return data


def _load_structured(path: str) -> Any:
    try:
        with open(path, 'r', encoding='utf-8') as f:
            if path.endswith(('.yaml', '.yml')):
                return yaml.safe_load(f)
            return json.load(f)
    except OSError as e:
        raise ConfigurationFailure(f"Cannot read file: {e}", path=path)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise ConfigurationFailure(f"Malformed file: {e}", path=path)


# =============================================================================
# HELPERS
# =============================================================================

def _bindings(bindings: Iterable[BindingInput]) -> List[RouteBinding]:
    result: List[RouteBinding] = []
    for binding in bindings:
        if isinstance(binding, RouteBinding):
            result.append(binding)
        else:
            result.extend(RouteBinding.from_dict(dict(binding)))
    return result


def _with_auth_responses(responses: Dict[str, Any]) -> Dict[str, Any]:
    updated = dict(responses)
    for code in ('401', '403'):
        if code not in updated:
            updated[code] = ResponseBuilder.build('GET', secured=True)[code]
    return {code: updated[code] for code in sorted(updated)}


def _component_name(operation_id: str) -> str:
    """``UserController_store_post`` → ``UserControllerStorePost``"""
    parts = re.split(r'[^0-9A-Za-z]+', operation_id)
    return ''.join(part[:1].upper() + part[1:] for part in parts if part)


def _status(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int) and 100 <= value < 600:
        return value
    if isinstance(value, str) and value.isdigit() and 100 <= int(value) < 600:
        return int(value)
    return None


def _json_value(value: Any) -> bool:
    if isinstance(value, (str, int, float, bool)):
        return True
    if isinstance(value, (list, tuple)):
        return all(_json_value(v) for v in value)
    if isinstance(value, dict):
        return all(isinstance(k, str) and _json_value(v) for k, v in value.items())
    return False


def _plain(value: Any) -> Any:
    if isinstance(value, tuple):
        return [_plain(v) for v in value]
    if isinstance(value, list):
        return [_plain(v) for v in value]
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    return value
