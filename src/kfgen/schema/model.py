"""In-memory representation of a provider's resource attribute tree.

The tree is a closed tagged variant: every node is an
:class:`AttributeSchema` whose :class:`AttributeKind` decides which of
``element`` (collections) or ``attributes`` (nested blocks) is populated.
Models are frozen; a loaded schema is never mutated during a run.
"""

from __future__ import annotations

import enum
from decimal import Decimal, InvalidOperation
from typing import Any, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class AttributeKind(str, enum.Enum):
    """Kinds of provider attributes the type mapper understands."""

    STRING = "string"
    NUMBER = "number"
    BOOL = "bool"
    LIST = "list"
    SET = "set"
    MAP = "map"
    BLOCK = "block"


COLLECTION_KINDS = frozenset({AttributeKind.LIST, AttributeKind.SET, AttributeKind.MAP})
SCALAR_KINDS = frozenset({AttributeKind.STRING, AttributeKind.NUMBER, AttributeKind.BOOL})


class Validation(BaseModel):
    """Allowed values and ranges declared by the provider.

    Everything except ``description`` is translated mechanically into field
    constraints; ``description`` holds constraints that could not be, and is
    carried into the generated docs verbatim.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    one_of: Optional[tuple[Any, ...]] = None
    minimum: Optional[float] = None
    maximum: Optional[float] = None
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)
    pattern: Optional[str] = None
    integer: bool = False
    min_items: Optional[int] = Field(default=None, ge=0)
    max_items: Optional[int] = Field(default=None, ge=0)
    description: Optional[str] = None


class AttributeSchema(BaseModel):
    """One node of a resource's attribute tree."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: AttributeKind
    required: bool = False
    optional: bool = False
    computed: bool = False
    sensitive: bool = False
    deprecated: bool = False
    description: Optional[str] = None
    default: Any = None
    validation: Optional[Validation] = None
    element: Optional[AttributeSchema] = None
    attributes: Optional[dict[str, AttributeSchema]] = None

    @model_validator(mode="after")
    def _check_shape(self) -> AttributeSchema:
        if self.computed and self.required:
            raise ValueError("a computed attribute cannot be required")
        if self.required and self.optional:
            raise ValueError("an attribute cannot be both required and optional")
        if self.kind in COLLECTION_KINDS and self.element is None:
            raise ValueError(f"{self.kind.value} attribute needs an element schema")
        if self.kind not in COLLECTION_KINDS and self.element is not None:
            raise ValueError(f"{self.kind.value} attribute cannot have an element schema")
        if self.kind == AttributeKind.BLOCK and self.attributes is None:
            raise ValueError("block attribute needs nested attributes")
        if self.kind != AttributeKind.BLOCK and self.attributes is not None:
            raise ValueError(f"{self.kind.value} attribute cannot have nested attributes")
        if self.default is not None:
            problem = _default_problem(self, self.default)
            if problem:
                raise ValueError(f"invalid default: {problem}")
        return self

    @property
    def is_status_only(self) -> bool:
        """Computed attributes the user can never set."""
        return self.computed and not self.optional and not self.required

    @property
    def user_settable(self) -> bool:
        return self.required or self.optional


class ResourceSchema(BaseModel):
    """A provider resource type and its top-level attributes."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    version: int = 0
    description: Optional[str] = None
    deprecated: bool = False
    attributes: dict[str, AttributeSchema] = Field(default_factory=dict)


def walk(resource: ResourceSchema) -> Iterator[tuple[str, AttributeSchema]]:
    """Yield ``(dotted_path, attribute)`` for every node, depth-first.

    Collection elements do not add a path segment of their own, so the
    attributes of a ``list`` of blocks appear as ``<list>.<attr>``.
    """
    for name, attr in resource.attributes.items():
        yield from _walk_attr(name, attr)


def _walk_attr(path: str, attr: AttributeSchema) -> Iterator[tuple[str, AttributeSchema]]:
    yield path, attr
    node = attr
    while node.element is not None:
        node = node.element
    if node.attributes:
        for name, child in node.attributes.items():
            yield from _walk_attr(f"{path}.{name}", child)


def depth(attr: AttributeSchema) -> int:
    """Nesting depth of *attr*; scalars have depth 1."""
    if attr.element is not None:
        return depth(attr.element)
    if attr.attributes:
        return 1 + max((depth(child) for child in attr.attributes.values()), default=0)
    return 1


def _default_problem(attr: AttributeSchema, value: Any) -> Optional[str]:
    """Describe why *value* cannot be a default of *attr*, or return ``None``."""
    kind = attr.kind
    if kind == AttributeKind.STRING:
        if not isinstance(value, str):
            return f"{value!r} is not a string"
    elif kind == AttributeKind.BOOL:
        if not isinstance(value, bool):
            return f"{value!r} is not a bool"
    elif kind == AttributeKind.NUMBER:
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            return f"{value!r} is not a number"
        try:
            number = Decimal(str(value).strip())
        except InvalidOperation:
            return f"{value!r} is not a number"
        if not number.is_finite():
            return f"{value!r} is not a finite number"
    elif kind in (AttributeKind.LIST, AttributeKind.SET):
        if not isinstance(value, list):
            return f"{value!r} is not a list"
        assert attr.element is not None
        for item in value:
            problem = _default_problem(attr.element, item)
            if problem:
                return problem
    elif kind == AttributeKind.MAP:
        if not isinstance(value, dict):
            return f"{value!r} is not a map"
        assert attr.element is not None
        for item in value.values():
            problem = _default_problem(attr.element, item)
            if problem:
                return problem
    elif kind == AttributeKind.BLOCK:
        if not isinstance(value, dict):
            return f"{value!r} is not an object"
        children = attr.attributes or {}
        for key, item in value.items():
            if key not in children:
                return f"unknown attribute {key!r}"
            if item is not None:
                problem = _default_problem(children[key], item)
                if problem:
                    return f"{key}: {problem}"

    choices = attr.validation.one_of if attr.validation else None
    if choices and kind in SCALAR_KINDS and not _is_choice(value, choices, kind):
        allowed = ", ".join(repr(c) for c in choices)
        return f"{value!r} is not one of {allowed}"
    return None


def _is_choice(value: Any, choices: tuple[Any, ...], kind: AttributeKind) -> bool:
    if kind != AttributeKind.NUMBER:
        return value in choices
    number = Decimal(str(value).strip())
    for choice in choices:
        if isinstance(choice, bool) or not isinstance(choice, (int, float, str)):
            continue
        try:
            if Decimal(str(choice).strip()) == number:
                return True
        except InvalidOperation:
            continue
    return False
