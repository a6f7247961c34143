#!/usr/bin/env python3
"""
Model Analyzer
==============
Extract data models (fields, relations, table metadata) from class
declarations using AST.

Recognizes:
- SQLAlchemy: ``id = Column(Integer, primary_key=True)``, ``mapped_column``,
  ``Mapped[...]`` annotations, ``relationship("Post")``
- Django: ``name = models.CharField(max_length=50)``, ``ForeignKey``,
  ``OneToOneField``, ``ManyToManyField``
- Pydantic / SQLModel: annotated attributes with optional ``Field(...)``
- Active-record style: a ``schema`` dict of column types and relation
  methods returning ``self.has_many(Post)`` and friends
- Class docstring ``:ivar``/``:vartype`` and ``Attributes:`` entries

Relations are recorded as stubs by target name only. They are resolved
against the global model registry in a second pass (see relation_analyzer).
"""

import ast
import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .base import Declaration, DeclarationKind, SourceUnit, Visibility
from .docblock_parser import DocBlock, DocBlockParser
from .type_inference import TypeInferenceEngine
from .types import (
    UNKNOWN,
    ArrayType,
    NullableType,
    ObjectType,
    ScalarType,
    TypeRef,
    from_dict,
    make_nullable,
)

logger = logging.getLogger("api_scanner.analyzers.model_analyzer")

DEFAULT_MODEL_BASES = ('Model', 'BaseModel', 'db.Model', 'models.Model', 'Base', 'DeclarativeBase', 'SQLModel')


class RelationKind(Enum):
    ONE_TO_ONE = "one-to-one"
    ONE_TO_MANY = "one-to-many"
    MANY_TO_MANY = "many-to-many"
    BELONGS_TO = "belongs-to"

    @property
    def is_collection(self) -> bool:
        return self in (RelationKind.ONE_TO_MANY, RelationKind.MANY_TO_MANY)


# Relation helper method (snake or camel case) → relation kind
RELATION_METHODS = {
    'has_one': RelationKind.ONE_TO_ONE,
    'hasOne': RelationKind.ONE_TO_ONE,
    'has_many': RelationKind.ONE_TO_MANY,
    'hasMany': RelationKind.ONE_TO_MANY,
    'belongs_to': RelationKind.BELONGS_TO,
    'belongsTo': RelationKind.BELONGS_TO,
    'belongs_to_many': RelationKind.MANY_TO_MANY,
    'belongsToMany': RelationKind.MANY_TO_MANY,
}

DJANGO_RELATIONS = {
    'ForeignKey': RelationKind.BELONGS_TO,
    'OneToOneField': RelationKind.ONE_TO_ONE,
    'ManyToManyField': RelationKind.MANY_TO_MANY,
}

# Column / field type name (lowercase, "Field" suffix removed) → (type, format)
COLUMN_TYPES = {
    'int': ('integer', None),
    'integer': ('integer', None),
    'bigint': ('integer', 'int64'),
    'biginteger': ('integer', 'int64'),
    'smallint': ('integer', None),
    'smallinteger': ('integer', None),
    'tinyint': ('integer', None),
    'mediumint': ('integer', None),
    'positiveinteger': ('integer', None),
    'positivesmallinteger': ('integer', None),
    'year': ('integer', None),
    'auto': ('integer', None),
    'bigauto': ('integer', 'int64'),
    'float': ('number', None),
    'double': ('number', None),
    'real': ('number', None),
    'decimal': ('number', 'decimal'),
    'numeric': ('number', 'decimal'),
    'varchar': ('string', None),
    'char': ('string', None),
    'string': ('string', None),
    'unicode': ('string', None),
    'text': ('string', None),
    'unicodetext': ('string', None),
    'longtext': ('string', None),
    'mediumtext': ('string', None),
    'tinytext': ('string', None),
    'slug': ('string', None),
    'enum': ('string', None),
    'email': ('string', 'email'),
    'url': ('string', 'uri'),
    'uuid': ('string', 'uuid'),
    'ipaddress': ('string', 'ipv4'),
    'genericipaddress': ('string', 'ipv4'),
    'datetime': ('string', 'date-time'),
    'timestamp': ('string', 'date-time'),
    'date': ('string', 'date'),
    'time': ('string', 'time'),
    'interval': ('string', 'duration'),
    'duration': ('string', 'duration'),
    'bool': ('boolean', None),
    'boolean': ('boolean', None),
    'largebinary': ('string', 'binary'),
    'binary': ('string', 'binary'),
    'blob': ('string', 'binary'),
    'file': ('string', 'binary'),
    'image': ('string', 'binary'),
}
OBJECT_COLUMNS = {'json', 'jsonb', 'pickle'}
ARRAY_COLUMNS = {'set', 'array'}
AUTO_COLUMNS = {'auto', 'bigauto'}

COLUMN_CALLS = {'Column', 'mapped_column'}
FIELD_CALLS = {'Field'}
RELATIONSHIP_CALLS = {'relationship', 'relation'}

# Class attributes that configure the model rather than declare a field
RESERVED_ATTRIBUTES = {
    '__tablename__', '__table_args__', '__abstract__', 'table', 'schema', 'hidden',
    '__hidden__', 'timestamps', 'soft_delete', 'model_config', 'objects', 'query',
    'metadata', 'registry', 'auto_write_timestamp', 'create_time', 'update_time',
    'delete_time',
}

_LENGTH_ARG = re.compile(r'^\s*([\w.]+)\s*\(\s*(\d+)')


# =============================================================================
# DATA STRUCTURES
# =============================================================================

@dataclass
class ModelField:
    name: str
    type: TypeRef
    description: Optional[str] = None
    nullable: bool = False
    required: bool = False
    read_only: bool = False
    constraints: Dict[str, Any] = field(default_factory=dict)    # maxLength, enum, ...

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.to_dict(),
            "description": self.description,
            "nullable": self.nullable,
            "required": self.required,
            "read_only": self.read_only,
            "constraints": dict(self.constraints),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ModelField":
        return cls(
            name=data["name"],
            type=from_dict(data["type"]),
            description=data.get("description"),
            nullable=data.get("nullable", False),
            required=data.get("required", False),
            read_only=data.get("read_only", False),
            constraints=dict(data.get("constraints", {})),
        )


@dataclass
class Relation:
    """A relation stub; ``target`` is a model name resolved in a later pass."""
    name: str
    kind: RelationKind
    target: str
    foreign_key: Optional[str] = None
    resolved: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "target": self.target,
            "foreign_key": self.foreign_key,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Relation":
        return cls(
            name=data["name"],
            kind=RelationKind(data["kind"]),
            target=data["target"],
            foreign_key=data.get("foreign_key"),
        )


@dataclass
class Model:
    name: str
    module: str = ""
    path: str = ""
    fields: Dict[str, ModelField] = field(default_factory=dict)
    relations: List[Relation] = field(default_factory=list)
    table: Optional[str] = None
    description: Optional[str] = None
    hidden: List[str] = field(default_factory=list)

    @property
    def qualified_name(self) -> str:
        return f"{self.module}.{self.name}" if self.module else self.name

    def visible_fields(self) -> List[ModelField]:
        return [f for f in self.fields.values() if f.name not in self.hidden]

    def relation(self, name: str) -> Optional[Relation]:
        for relation in self.relations:
            if relation.name == name:
                return relation
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "module": self.module,
            "path": self.path,
            "fields": [f.to_dict() for f in self.fields.values()],
            "relations": [r.to_dict() for r in self.relations],
            "table": self.table,
            "description": self.description,
            "hidden": list(self.hidden),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Model":
        fields = [ModelField.from_dict(f) for f in data.get("fields", [])]
        return cls(
            name=data["name"],
            module=data.get("module", ""),
            path=data.get("path", ""),
            fields={f.name: f for f in fields},
            relations=[Relation.from_dict(r) for r in data.get("relations", [])],
            table=data.get("table"),
            description=data.get("description"),
            hidden=list(data.get("hidden", [])),
        )


# =============================================================================
# ANALYZER
# =============================================================================

class ModelAnalyzer:
    """
    Build Model records from parsed class declarations.

    Works on a single SourceUnit at a time, so its output can be cached per
    file; cross-file relation resolution happens in the relation analyzer.
    """

    def __init__(self, type_engine: Optional[TypeInferenceEngine] = None,
                 model_bases: Iterable[str] = DEFAULT_MODEL_BASES):
        self.type_engine = type_engine or TypeInferenceEngine()
        self.model_bases = set(model_bases)

    def is_model(self, declaration: Declaration) -> bool:
        if declaration.kind is not DeclarationKind.CLASS:
            return False
        for base in declaration.bases:
            base = base.split('[', 1)[0]
            if base in self.model_bases or base.rsplit('.', 1)[-1] in self.model_bases:
                return True
        return False

    def analyze(self, unit: SourceUnit) -> List[Model]:
        """All models declared at the top level of ``unit``, in source order."""
        models = []
        for declaration in unit.classes():
            if self.is_model(declaration) and not _is_abstract(declaration):
                models.append(self.analyze_class(declaration, unit))
        if models:
            logger.debug(f"{unit.path}: found {len(models)} models")
        return models

    def analyze_class(self, declaration: Declaration, unit: Optional[SourceUnit] = None) -> Model:
        path = unit.path if unit else ""
        doc = DocBlockParser.parse(declaration.doc)
        model = Model(
            name=declaration.name,
            module=unit.module if unit else "",
            path=path,
            table=_table_name(declaration),
            description=_join(doc.summary, doc.description),
            hidden=_string_list(_property_value(declaration, 'hidden') or _property_value(declaration, '__hidden__')),
        )

        for prop in declaration.properties:
            if prop.name in RESERVED_ATTRIBUTES or prop.visibility is not Visibility.PUBLIC:
                continue
            self._property(model, prop, doc, path)

        self._schema_dict(model, declaration)
        self._documented_fields(model, doc, path)
        self._timestamps(model, declaration)

        for method in declaration.methods:
            relation = _relation_from_method(method)
            if relation and not model.relation(relation.name):
                model.relations.append(relation)

        logger.debug(f"Model {model.name}: {len(model.fields)} fields, {len(model.relations)} relations")
        return model

    # ------------------------------------------------------------------
    # Fields
    # ------------------------------------------------------------------

    def _property(self, model: Model, prop: Declaration, doc: DocBlock, path: str) -> None:
        call = _call(prop.value)
        call_name = _call_name(call) if call is not None else None
        description = prop.doc or doc.var_description(prop.name)

        if call_name in RELATIONSHIP_CALLS:
            model.relations.append(self._sqlalchemy_relation(prop, call))
            return
        if call_name in DJANGO_RELATIONS:
            kind = DJANGO_RELATIONS[call_name]
            target = _class_name(call.args[0]) if call.args else _class_name(_keyword(call, 'to'))
            if target:
                foreign_key = f"{prop.name}_id" if kind is RelationKind.BELONGS_TO else None
                model.relations.append(Relation(prop.name, kind, target, foreign_key))
            return

        if call_name in COLUMN_CALLS:
            model.fields[prop.name] = self._column(prop, call, doc, description, path)
            return

        if call_name and call_name.endswith('Field') and call_name not in FIELD_CALLS:
            model.fields[prop.name] = self._django_field(prop, call, call_name, description)
            return

        if prop.annotation is None:
            return

        annotated = self.type_engine.infer(prop.annotation, doc.var_type(prop.name), None, path,
                                           f"{model.name}.{prop.name}")
        has_default = prop.value is not None
        constraints: Dict[str, Any] = {}
        if call_name in FIELD_CALLS:
            description = description or _string(_keyword(call, 'description'))
            has_default = _field_has_default(call)
            constraints = _field_constraints(call)

        model.fields[prop.name] = ModelField(
            name=prop.name,
            type=annotated,
            description=description,
            nullable=isinstance(annotated, NullableType),
            required=not has_default and not isinstance(annotated, NullableType),
            constraints=constraints,
        )

    def _column(self, prop: Declaration, call: ast.Call, doc: DocBlock, description: Optional[str],
                path: str) -> ModelField:
        column_type: TypeRef = UNKNOWN
        constraints: Dict[str, Any] = {}
        for arg in call.args:
            if _call_name(arg) == 'ForeignKey' or isinstance(arg, ast.Constant):
                continue
            column_type, constraints = map_column_type(ast.unparse(arg))
            break

        annotated: TypeRef = UNKNOWN
        if prop.annotation:
            annotated = self.type_engine.infer(prop.annotation, doc.var_type(prop.name), None, path, prop.qualname)
            if not annotated.strip_nullable().is_unknown:
                column_type = annotated.strip_nullable()

        primary_key = _bool_keyword(call, 'primary_key', False)
        if _keyword(call, 'nullable') is not None:
            nullable = _bool_keyword(call, 'nullable', True)
        elif prop.annotation:
            # mapped_column derives nullability from Mapped[Optional[...]]
            nullable = isinstance(annotated, NullableType)
        else:
            nullable = not primary_key
        has_default = any(_keyword(call, k) is not None for k in ('default', 'server_default'))

        return ModelField(
            name=prop.name,
            type=make_nullable(column_type) if nullable else column_type,
            description=description or _string(_keyword(call, 'doc')) or _string(_keyword(call, 'comment')),
            nullable=nullable,
            required=not (nullable or has_default or primary_key),
            read_only=primary_key,
            constraints=constraints,
        )

    def _django_field(self, prop: Declaration, call: ast.Call, call_name: str,
                      description: Optional[str]) -> ModelField:
        key = call_name[:-len('Field')].lower()
        column_type, constraints = map_column_type(key)
        max_length = _keyword(call, 'max_length')
        if isinstance(max_length, ast.Constant) and isinstance(max_length.value, int):
            constraints['maxLength'] = max_length.value
        choices = _keyword(call, 'choices')
        if isinstance(choices, (ast.List, ast.Tuple)):
            values = [_literal(e.elts[0]) if isinstance(e, (ast.Tuple, ast.List)) and e.elts else _literal(e)
                      for e in choices.elts]
            constraints['enum'] = [v for v in values if v is not None]

        nullable = _bool_keyword(call, 'null', False)
        optional = nullable or _bool_keyword(call, 'blank', False) or _keyword(call, 'default') is not None
        read_only = key in AUTO_COLUMNS or _bool_keyword(call, 'primary_key', False)
        return ModelField(
            name=prop.name,
            type=make_nullable(column_type) if nullable else column_type,
            description=description or _string(_keyword(call, 'help_text')) or _string(_keyword(call, 'verbose_name')),
            nullable=nullable,
            required=not (optional or read_only),
            read_only=read_only,
            constraints=constraints,
        )

    def _schema_dict(self, model: Model, declaration: Declaration) -> None:
        """Fields declared as ``schema = {'id': 'int', 'name': 'varchar(50)'}``."""
        value = _property_value(declaration, 'schema')
        if not isinstance(value, dict):
            return
        for name, column in value.items():
            if not isinstance(name, str) or name in model.fields:
                continue
            if isinstance(column, dict):
                column_type, constraints = map_column_type(str(column.get('type', 'string')))
                description = column.get('comment') or column.get('description')
            else:
                column_type, constraints = map_column_type(str(column))
                description = None
            model.fields[name] = ModelField(name=name, type=column_type, description=description,
                                            constraints=constraints)

    def _documented_fields(self, model: Model, doc: DocBlock, path: str) -> None:
        for name in doc.variables():
            if name in model.fields:
                if not model.fields[name].description:
                    model.fields[name].description = doc.var_description(name)
                continue
            if model.relation(name):
                continue
            doc_type = self.type_engine.parse_doc_type(doc.var_type(name))
            model.fields[name] = ModelField(
                name=name,
                type=doc_type,
                description=doc.var_description(name),
                nullable=isinstance(doc_type, NullableType),
            )

    def _timestamps(self, model: Model, declaration: Declaration) -> None:
        """Managed timestamp columns (``timestamps = True`` / ``soft_delete = True``)."""
        timestamps = _property_value(declaration, 'timestamps')
        if timestamps is None:
            timestamps = _property_value(declaration, 'auto_write_timestamp')
        if timestamps:
            created = _property_value(declaration, 'create_time') or 'created_at'
            updated = _property_value(declaration, 'update_time') or 'updated_at'
            for name in (created, updated):
                if isinstance(name, str) and name not in model.fields:
                    model.fields[name] = ModelField(name=name, type=ScalarType('string', 'date-time'),
                                                    read_only=True)
        if _property_value(declaration, 'soft_delete'):
            deleted = _property_value(declaration, 'delete_time') or 'deleted_at'
            if isinstance(deleted, str) and deleted not in model.fields:
                model.fields[deleted] = ModelField(name=deleted,
                                                   type=make_nullable(ScalarType('string', 'date-time')),
                                                   nullable=True, read_only=True)

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def _sqlalchemy_relation(self, prop: Declaration, call: ast.Call) -> Relation:
        target = _class_name(call.args[0]) if call.args else _class_name(_keyword(call, 'argument'))
        annotated = self.type_engine.parse_annotation(prop.annotation) if prop.annotation else UNKNOWN

        if _keyword(call, 'secondary') is not None:
            kind = RelationKind.MANY_TO_MANY
        elif _keyword(call, 'uselist') is not None:
            kind = RelationKind.ONE_TO_MANY if _bool_keyword(call, 'uselist', True) else RelationKind.ONE_TO_ONE
        elif isinstance(annotated.strip_nullable(), ArrayType):
            kind = RelationKind.ONE_TO_MANY
        elif isinstance(annotated.strip_nullable(), ObjectType):
            kind = RelationKind.BELONGS_TO
        else:
            kind = RelationKind.ONE_TO_MANY

        if not target:
            target = _ref_name(annotated) or ''
        foreign_keys = _keyword(call, 'foreign_keys')
        foreign_key = _string(foreign_keys) if foreign_keys is not None else None
        return Relation(prop.name, kind, target, foreign_key)


# =============================================================================
# HELPERS
# =============================================================================

def map_column_type(text: str) -> Tuple[TypeRef, Dict[str, Any]]:
    """
    Map a column type expression to a TypeRef.

    Example:
        >>> map_column_type("String(50)")
        (ScalarType(kind='string', format=None), {'maxLength': 50})
        >>> map_column_type("sa.DateTime(timezone=True)")
        (ScalarType(kind='string', format='date-time'), {})
    """
    constraints: Dict[str, Any] = {}
    text = text.strip()
    match = _LENGTH_ARG.match(text)
    if match:
        name = match.group(1)
        length = int(match.group(2))
    else:
        name = text.split('(', 1)[0].strip()
        length = None
    key = name.rsplit('.', 1)[-1].lower()

    if key in OBJECT_COLUMNS:
        return ObjectType(), constraints
    if key in ARRAY_COLUMNS:
        return ArrayType(UNKNOWN), constraints

    kind, fmt = COLUMN_TYPES.get(key, ('string', None))
    if length is not None and kind == 'string':
        constraints['maxLength'] = length
    return ScalarType(kind, fmt), constraints


def table_name_for(class_name: str) -> str:
    """``UserProfileModel`` → ``user_profile``"""
    name = re.sub(r'Model$', '', class_name) or class_name
    return re.sub(r'(?<!^)(?=[A-Z])', '_', name).lower()


def _table_name(declaration: Declaration) -> str:
    for attribute in ('__tablename__', 'table'):
        value = _property_value(declaration, attribute)
        if isinstance(value, str):
            return value
    meta = declaration.child('Meta')
    if meta is not None and meta.kind is DeclarationKind.CLASS:
        value = _property_value(meta, 'db_table')
        if isinstance(value, str):
            return value
    return table_name_for(declaration.name)


def _is_abstract(declaration: Declaration) -> bool:
    if _property_value(declaration, '__abstract__') is True:
        return True
    meta = declaration.child('Meta')
    return bool(meta is not None and meta.kind is DeclarationKind.CLASS and _property_value(meta, 'abstract'))


def _relation_from_method(method: Declaration) -> Optional[Relation]:
    """A method whose body returns ``self.has_many(Post, 'user_id')`` or similar."""
    for expression in method.returns:
        call = _call(expression)
        if call is None or not isinstance(call.func, ast.Attribute):
            continue
        if not (isinstance(call.func.value, ast.Name) and call.func.value.id == 'self'):
            continue
        kind = RELATION_METHODS.get(call.func.attr)
        if kind is None or not call.args:
            continue
        target = _class_name(call.args[0])
        if not target:
            continue
        foreign_key = _string(call.args[1]) if len(call.args) > 1 else _string(_keyword(call, 'foreign_key'))
        return Relation(method.name, kind, target, foreign_key)
    return None


def _ref_name(t: TypeRef) -> Optional[str]:
    inner = t.strip_nullable()
    if isinstance(inner, ArrayType):
        inner = inner.element.strip_nullable()
    if isinstance(inner, ObjectType):
        return inner.ref
    return None


def _call(text: Optional[str]) -> Optional[ast.Call]:
    if not text:
        return None
    try:
        node = ast.parse(text, mode='eval').body
    except SyntaxError:
        return None
    return node if isinstance(node, ast.Call) else None


def _call_name(node: Any) -> Optional[str]:
    if not isinstance(node, ast.Call):
        return None
    func = node.func
    if isinstance(func, ast.Name):
        return func.id
    if isinstance(func, ast.Attribute):
        return func.attr
    return None


def _keyword(call: Optional[ast.Call], name: str) -> Optional[ast.expr]:
    if call is None:
        return None
    for keyword in call.keywords:
        if keyword.arg == name:
            return keyword.value
    return None


def _bool_keyword(call: ast.Call, name: str, default: bool) -> bool:
    value = _keyword(call, name)
    if isinstance(value, ast.Constant) and isinstance(value.value, bool):
        return value.value
    return default


def _literal(node: Optional[ast.expr]) -> Any:
    if node is None:
        return None
    try:
        return ast.literal_eval(node)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return None


def _string(node: Optional[ast.expr]) -> Optional[str]:
    value = _literal(node)
    return value if isinstance(value, str) else None


def _class_name(node: Optional[ast.expr]) -> Optional[str]:
    """Target class of a relation argument: ``"Post"``, ``Post``, ``app.models.Post``."""
    if node is None:
        return None
    if isinstance(node, ast.Constant) and isinstance(node.value, str):
        return node.value.rsplit('.', 1)[-1] or None
    if isinstance(node, ast.Name):
        return node.id
    if isinstance(node, ast.Attribute):
        return node.attr
    return None


def _field_has_default(call: ast.Call) -> bool:
    if _keyword(call, 'default') is not None or _keyword(call, 'default_factory') is not None:
        default = _keyword(call, 'default')
        return not (isinstance(default, ast.Constant) and default.value is Ellipsis)
    if call.args:
        first = call.args[0]
        return not (isinstance(first, ast.Constant) and first.value is Ellipsis)
    return False


def _field_constraints(call: ast.Call) -> Dict[str, Any]:
    mapping = {
        'max_length': 'maxLength', 'min_length': 'minLength',
        'ge': 'minimum', 'le': 'maximum', 'pattern': 'pattern', 'regex': 'pattern',
    }
    constraints = {}
    for keyword, schema_key in mapping.items():
        value = _literal(_keyword(call, keyword))
        if value is not None:
            constraints[schema_key] = value
    return constraints


def _property_value(declaration: Declaration, name: str) -> Any:
    prop = declaration.child(name)
    if prop is None or prop.kind is not DeclarationKind.PROPERTY or prop.value is None:
        return None
    try:
        return ast.literal_eval(prop.value)
    except (ValueError, TypeError, SyntaxError, MemoryError, RecursionError):
        return None


def _string_list(value: Any) -> List[str]:
    if isinstance(value, (list, tuple, set)):
        return sorted(str(v) for v in value) if isinstance(value, set) else [str(v) for v in value]
    return []


def _join(*parts: Optional[str]) -> Optional[str]:
    text = "\n\n".join(p for p in parts if p)
    return text or None
