"""Map provider attribute schemas to typed field declarations.

This module is the core of the generator: every
:class:`~kfgen.schema.model.AttributeSchema` node becomes a
:class:`TypeMapping` describing the pydantic field that will carry it in
the generated API module.

**Mapping rules:**

* ``string`` -> ``str``, ``bool`` -> ``bool``.
* ``number`` -> ``Number`` (``decimal.Decimal`` with a lossless JSON
  encoder) by default. ``int`` and ``float`` targets are only accepted when
  the provider's declared validation proves they cannot lose data;
  otherwise :class:`~kfgen.exceptions.NumericPrecisionError` is raised.
* ``list`` and ``set`` -> ``list[T]`` (sets keep their kind so the CRD can
  mark them ``x-kubernetes-list-type: set``); ``map`` -> ``dict[str, T]``.
* ``block`` -> a named :class:`NestedType`. The name depends only on the
  kind and the attribute path (``Alert`` + ``threshold.targets`` ->
  ``AlertThresholdTargets``), so regenerating never renames types.
* A string ``one_of`` validation becomes a ``Literal[...]`` annotation;
  ranges, lengths, patterns and item counts become ``Field`` constraints.

The serialization key of every mapping is the provider's attribute name,
verbatim; it is what the CRUD adapter sends on the wire.
"""

from __future__ import annotations

import enum
import json
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field

from kfgen.exceptions import NumericPrecisionError, UnsupportedSchemaKindError
from kfgen.generator.naming import NameScope, pascal_case, sanitize_field_name
from kfgen.models import NumberType
from kfgen.schema.model import AttributeKind, AttributeSchema, Validation

# Largest integer a float64 represents exactly.
_FLOAT_SAFE_LIMIT = 2**53

_SCALAR_PYTHON: dict[AttributeKind, str] = {
    AttributeKind.STRING: "str",
    AttributeKind.BOOL: "bool",
}

_NUMBER_PYTHON: dict[NumberType, str] = {
    NumberType.DECIMAL: "Number",
    NumberType.INT: "int",
    NumberType.FLOAT: "float",
}


class FieldTypeKind(str, enum.Enum):
    """Shape of a generated field type."""

    SCALAR = "scalar"
    SEQUENCE = "sequence"
    SET = "set"
    MAPPING = "mapping"
    NESTED = "nested"


class FieldType(BaseModel):
    """Target type of one field.

    ``python`` is the annotation of a scalar (``str``, ``Number``, a
    ``Literal[...]``) or the name of a nested type; collections carry their
    element type in ``element``.
    """

    model_config = ConfigDict(frozen=True)

    kind: FieldTypeKind
    source_kind: AttributeKind
    python: str = ""
    choices: tuple[Any, ...] = ()
    element: Optional[FieldType] = None
    nested: Optional[NestedType] = None

    @property
    def annotation(self) -> str:
        """Python annotation source text for this type."""
        if self.kind in (FieldTypeKind.SEQUENCE, FieldTypeKind.SET):
            assert self.element is not None
            return f"list[{self.element.annotation}]"
        if self.kind == FieldTypeKind.MAPPING:
            assert self.element is not None
            return f"dict[str, {self.element.annotation}]"
        if self.kind == FieldTypeKind.NESTED:
            assert self.nested is not None
            return self.nested.name
        return self.python

    def nested_types(self) -> list[NestedType]:
        """Nested types reachable from this type, dependencies first."""
        if self.element is not None:
            return self.element.nested_types()
        if self.nested is not None:
            found: list[NestedType] = []
            for field in self.nested.fields:
                found.extend(field.field_type.nested_types())
            found.append(self.nested)
            return found
        return []


class TypeMapping(BaseModel):
    """Result of mapping one attribute to a generated field."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    serialization_key: str
    field_type: FieldType
    path: str
    optional: bool
    computed: bool = False
    sensitive: bool = False
    deprecated: bool = False
    default: Any = None
    description: Optional[str] = None
    constraints: dict[str, Any] = Field(default_factory=dict)

    @property
    def annotation(self) -> str:
        inner = self.field_type.annotation
        return f"Optional[{inner}]" if self.optional else inner


class NestedType(BaseModel):
    """A synthesized named type for a nested block."""

    model_config = ConfigDict(frozen=True)

    name: str
    path: str
    description: Optional[str] = None
    fields: tuple[TypeMapping, ...] = ()


class TypeMapper:
    """Maps the attributes of one resource kind.

    One mapper is used per resource so nested type names are unique within
    the generated module. Mapping the same path twice returns an identical
    result.

    Args:
        resource_name: Provider resource name; prefixes paths in errors.
        kind: API kind, the prefix of every nested type name.
        number_type: Target representation of ``number`` attributes.
        reserved: Type names already taken in the generated module.
    """

    def __init__(
        self,
        resource_name: str,
        kind: str,
        number_type: NumberType = NumberType.DECIMAL,
        reserved: frozenset[str] = frozenset(),
    ) -> None:
        self._resource_name = resource_name
        self._kind = kind
        self._number_type = NumberType(number_type)
        self._type_names = NameScope(reserved | {kind})
        self._nested_by_path: dict[str, NestedType] = {}
        self._handlers: dict[AttributeKind, Callable[[AttributeSchema, str], FieldType]] = {
            AttributeKind.STRING: self._map_scalar,
            AttributeKind.BOOL: self._map_scalar,
            AttributeKind.NUMBER: self._map_number,
            AttributeKind.LIST: self._map_collection,
            AttributeKind.SET: self._map_collection,
            AttributeKind.MAP: self._map_collection,
            AttributeKind.BLOCK: self._map_block,
        }

    def map(self, attr: AttributeSchema, path: str) -> TypeMapping:
        """Map *attr*, found at dotted *path* below the resource root.

        Raises:
            UnsupportedSchemaKindError: If the attribute (or anything nested
                in it) has a kind without a mapping.
            NumericPrecisionError: If a number cannot be represented by the
                configured numeric target without loss.
        """
        key = path.rsplit(".", 1)[-1]
        field_type = self._field_type(attr, path)
        return TypeMapping(
            field_name=sanitize_field_name(key),
            serialization_key=key,
            field_type=field_type,
            path=path,
            optional=not attr.required,
            computed=attr.computed,
            sensitive=attr.sensitive,
            deprecated=attr.deprecated,
            default=attr.default,
            description=_describe(attr),
            constraints=_constraints(attr, field_type),
        )

    def _full_path(self, path: str) -> str:
        return f"{self._resource_name}.{path}"

    def _field_type(self, attr: AttributeSchema, path: str) -> FieldType:
        handler = self._handlers.get(attr.kind)
        if handler is None:
            raise UnsupportedSchemaKindError(
                self._full_path(path), f"no mapping for attribute kind {attr.kind!r}"
            )
        return handler(attr, path)

    def _map_scalar(self, attr: AttributeSchema, path: str) -> FieldType:
        python = _SCALAR_PYTHON[attr.kind]
        choices = _choices(attr.validation, str if attr.kind == AttributeKind.STRING else bool)
        if choices:
            python = "Literal[" + ", ".join(_literal_source(v) for v in choices) + "]"
        return FieldType(
            kind=FieldTypeKind.SCALAR, source_kind=attr.kind, python=python, choices=choices
        )

    def _map_number(self, attr: AttributeSchema, path: str) -> FieldType:
        validation = attr.validation or Validation()
        if self._number_type == NumberType.INT and not validation.integer:
            raise NumericPrecisionError(
                self._full_path(path),
                "number mapped to int, but the provider does not declare it integral",
            )
        if self._number_type == NumberType.FLOAT and not _fits_float(validation):
            raise NumericPrecisionError(
                self._full_path(path),
                "number mapped to float, but the provider's declared range "
                "is not within +/-2**53",
            )
        return FieldType(
            kind=FieldTypeKind.SCALAR,
            source_kind=AttributeKind.NUMBER,
            python=_NUMBER_PYTHON[self._number_type],
        )

    def _map_collection(self, attr: AttributeSchema, path: str) -> FieldType:
        assert attr.element is not None
        element = self._field_type(attr.element, path)
        kind = {
            AttributeKind.LIST: FieldTypeKind.SEQUENCE,
            AttributeKind.SET: FieldTypeKind.SET,
            AttributeKind.MAP: FieldTypeKind.MAPPING,
        }[attr.kind]
        return FieldType(kind=kind, source_kind=attr.kind, element=element)

    def _map_block(self, attr: AttributeSchema, path: str) -> FieldType:
        nested = self._nested_by_path.get(path)
        if nested is None:
            name = self._type_names.claim(f"{self._kind}{pascal_case(path)}", separator="")
            scope = NameScope()
            fields = []
            for child_name, child in (attr.attributes or {}).items():
                mapping = self.map(child, f"{path}.{child_name}")
                fields.append(
                    mapping.model_copy(update={"field_name": scope.claim(mapping.field_name)})
                )
            nested = NestedType(
                name=name, path=path, description=attr.description, fields=tuple(fields)
            )
            self._nested_by_path[path] = nested
        return FieldType(kind=FieldTypeKind.NESTED, source_kind=attr.kind, nested=nested)


def _fits_float(validation: Validation) -> bool:
    if validation.minimum is None or validation.maximum is None:
        return False
    return -_FLOAT_SAFE_LIMIT <= validation.minimum and validation.maximum <= _FLOAT_SAFE_LIMIT


def _choices(validation: Optional[Validation], value_type: type) -> tuple[Any, ...]:
    """Allowed values usable as a ``Literal``: all of exactly *value_type*."""
    if validation is None or not validation.one_of:
        return ()
    values = validation.one_of
    if not all(type(v) is value_type for v in values):
        return ()
    return tuple(values)


def _literal_source(value: Any) -> str:
    return json.dumps(value) if isinstance(value, str) else repr(value)


def _constraints(attr: AttributeSchema, field_type: FieldType) -> dict[str, Any]:
    """Translate validation into pydantic ``Field`` keyword arguments."""
    validation = attr.validation
    if validation is None:
        return {}
    constraints: dict[str, Any] = {}
    if field_type.kind == FieldTypeKind.SCALAR:
        if field_type.source_kind == AttributeKind.NUMBER:
            if validation.minimum is not None:
                constraints["ge"] = validation.minimum
            if validation.maximum is not None:
                constraints["le"] = validation.maximum
        elif field_type.source_kind == AttributeKind.STRING and not field_type.choices:
            if validation.min_length is not None:
                constraints["min_length"] = validation.min_length
            if validation.max_length is not None:
                constraints["max_length"] = validation.max_length
            if validation.pattern is not None:
                constraints["pattern"] = validation.pattern
    elif field_type.kind in (FieldTypeKind.SEQUENCE, FieldTypeKind.SET):
        if validation.min_items is not None:
            constraints["min_length"] = validation.min_items
        if validation.max_items is not None:
            constraints["max_length"] = validation.max_items
    return dict(sorted(constraints.items()))


def _describe(attr: AttributeSchema) -> Optional[str]:
    """Description text, with untranslatable validation notes appended."""
    parts = []
    if attr.description:
        parts.append(attr.description.strip())
    if attr.validation is not None:
        if attr.validation.description:
            parts.append(f"Constraint: {attr.validation.description.strip()}")
        literal_kinds = (AttributeKind.STRING, AttributeKind.BOOL)
        if attr.validation.one_of and attr.kind not in literal_kinds:
            allowed = ", ".join(str(v) for v in attr.validation.one_of)
            parts.append(f"Allowed values: {allowed}")
    return " ".join(parts) or None


FieldType.model_rebuild()
TypeMapping.model_rebuild()
NestedType.model_rebuild()
