"""Turn an opaque provider descriptor into :class:`ResourceSchema` trees.

Two descriptor shapes are understood:

**Terraform provider schema** -- the document printed by
``terraform providers schema -json``::

    {"format_version": "1.0",
     "provider_schemas": {
       "registry.terraform.io/vmware/wavefront": {
         "resource_schemas": {
           "wavefront_alert": {"version": 0, "block": {
             "attributes": {"name": {"type": "string", "required": true}},
             "block_types": {"target": {"nesting_mode": "list", "block": {...}}}}}}}}}

Type expressions such as ``["set", "string"]`` or
``["object", {"a": "number"}]`` are normalised into the closed
:class:`~kfgen.schema.model.AttributeKind` tree, as are ``block_types``
(``single``/``group`` nesting and ``list``/``set`` blocks limited to one
item become a single nested block).

**Native descriptor** -- a hand-written shape with explicit kinds::

    provider: wavefront
    resources:
      wavefront_alert:
        attributes:
          name: {type: string, required: true}
          severity: {type: string, optional: true, default: warn}
          tags: {type: set, element: {type: string}}
          id: {type: string, computed: true}

The single public function is :func:`load`.
"""

from __future__ import annotations

from typing import Any, Optional

from pydantic import ValidationError

from kfgen.exceptions import SchemaLoadError, UnsupportedSchemaKindError
from kfgen.schema.model import AttributeKind, AttributeSchema, ResourceSchema, Validation

DEFAULT_MAX_DEPTH = 16

_KIND_ALIASES: dict[str, AttributeKind] = {
    "string": AttributeKind.STRING,
    "number": AttributeKind.NUMBER,
    "bool": AttributeKind.BOOL,
    "boolean": AttributeKind.BOOL,
    "list": AttributeKind.LIST,
    "set": AttributeKind.SET,
    "map": AttributeKind.MAP,
    "block": AttributeKind.BLOCK,
    "nested-block": AttributeKind.BLOCK,
    "object": AttributeKind.BLOCK,
}

_FLAG_KEYS = ("required", "optional", "computed", "sensitive", "deprecated")


def load(
    descriptor: dict[str, Any],
    provider: Optional[str] = None,
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> list[ResourceSchema]:
    """Load every resource schema of one provider from *descriptor*.

    Args:
        descriptor: Raw descriptor, as returned by
            :func:`~kfgen.schema.loader.load_descriptor`.
        provider: Provider to select. Required when a Terraform document
            carries more than one provider; matched against the full
            registry address or its last path segment.
        max_depth: Maximum nesting depth of any attribute (cycle guard).

    Returns:
        Resource schemas sorted by name.

    Raises:
        SchemaLoadError: If the descriptor is malformed, has duplicate
            resource names, lacks the requested provider, or nests deeper
            than *max_depth*.
        UnsupportedSchemaKindError: If an attribute uses a type outside the
            supported kinds (e.g. ``tuple`` or ``dynamic``).
    """
    if not isinstance(descriptor, dict):
        raise SchemaLoadError("Provider descriptor must be an object")

    if "provider_schemas" in descriptor:
        resources = _load_terraform(descriptor, provider, max_depth)
    elif "resources" in descriptor:
        resources = _load_native(descriptor, provider, max_depth)
    else:
        raise SchemaLoadError(
            "Unrecognised provider descriptor: expected 'provider_schemas' "
            "(terraform providers schema -json) or 'resources' (native)"
        )

    if not resources:
        raise SchemaLoadError("Provider descriptor declares no resources")
    return sorted(resources, key=lambda r: r.name)


# ---------------------------------------------------------------------------
# Terraform shape
# ---------------------------------------------------------------------------


def _select_provider(schemas: dict[str, Any], provider: Optional[str]) -> dict[str, Any]:
    if not isinstance(schemas, dict) or not schemas:
        raise SchemaLoadError("'provider_schemas' must be a non-empty object")

    if provider is None:
        if len(schemas) > 1:
            names = ", ".join(sorted(schemas))
            raise SchemaLoadError(f"Descriptor holds several providers ({names}); pick one")
        return next(iter(schemas.values()))

    for address, body in schemas.items():
        if address == provider or address.rsplit("/", 1)[-1] == provider:
            return body
    raise SchemaLoadError(f"Provider '{provider}' not found in descriptor")


def _load_terraform(
    descriptor: dict[str, Any], provider: Optional[str], max_depth: int
) -> list[ResourceSchema]:
    body = _select_provider(descriptor["provider_schemas"], provider)
    resource_schemas = body.get("resource_schemas") if isinstance(body, dict) else None
    if not isinstance(resource_schemas, dict):
        raise SchemaLoadError("Provider entry has no 'resource_schemas' object")

    resources = []
    for name, raw in resource_schemas.items():
        if not isinstance(raw, dict) or not isinstance(raw.get("block"), dict):
            raise SchemaLoadError(f"{name}: resource schema needs a 'block' object")
        block = raw["block"]
        attributes = _terraform_block_attributes(block, name, 1, max_depth)
        resources.append(
            _resource(
                name,
                version=raw.get("version", 0),
                description=block.get("description"),
                deprecated=bool(block.get("deprecated", False)),
                attributes=attributes,
            )
        )
    return resources


def _terraform_block_attributes(
    block: dict[str, Any], path: str, level: int, max_depth: int
) -> dict[str, AttributeSchema]:
    _check_depth(path, level, max_depth)
    attributes: dict[str, AttributeSchema] = {}

    raw_attrs = block.get("attributes") or {}
    if not isinstance(raw_attrs, dict):
        raise SchemaLoadError(f"{path}: 'attributes' must be an object")
    for name, raw in raw_attrs.items():
        attr_path = f"{path}.{name}"
        if not isinstance(raw, dict):
            raise SchemaLoadError(f"{attr_path}: attribute must be an object")
        flags = _flags(raw)
        if "nested_type" in raw:
            attributes[name] = _terraform_nested_type(
                raw["nested_type"], attr_path, level, max_depth, raw, flags
            )
            continue
        if "type" not in raw:
            raise SchemaLoadError(f"{attr_path}: attribute has no 'type'")
        attributes[name] = _terraform_type(
            raw["type"], attr_path, level, max_depth, raw, flags
        )

    raw_blocks = block.get("block_types") or {}
    if not isinstance(raw_blocks, dict):
        raise SchemaLoadError(f"{path}: 'block_types' must be an object")
    for name, raw in raw_blocks.items():
        if name in attributes:
            raise SchemaLoadError(f"{path}.{name}: declared as both attribute and block")
        attributes[name] = _terraform_block_type(raw, f"{path}.{name}", level, max_depth)
    return attributes


def _terraform_type(
    expr: Any,
    path: str,
    level: int,
    max_depth: int,
    raw: dict[str, Any],
    flags: dict[str, bool],
) -> AttributeSchema:
    """Convert a Terraform type expression (``"string"``, ``["list", T]``, ...)."""
    _check_depth(path, level, max_depth)
    extra = {"description": raw.get("description"), **flags}

    if isinstance(expr, str):
        if expr in ("string", "number", "bool"):
            return _attr(path, kind=_KIND_ALIASES[expr], **extra)
        raise UnsupportedSchemaKindError(path, f"unsupported type '{expr}'")

    if isinstance(expr, list) and len(expr) == 2 and isinstance(expr[0], str):
        head, arg = expr
        if head in ("list", "set", "map"):
            element = _terraform_type(arg, path, level + 1, max_depth, {}, {})
            return _attr(path, kind=_KIND_ALIASES[head], element=element, **extra)
        if head == "object":
            if not isinstance(arg, dict):
                raise SchemaLoadError(f"{path}: object type needs a field mapping")
            _check_depth(path, level + 1, max_depth)
            fields = {
                key: _terraform_type(
                    sub, f"{path}.{key}", level + 1, max_depth, {}, {"optional": True}
                )
                for key, sub in arg.items()
            }
            return _attr(path, kind=AttributeKind.BLOCK, attributes=fields, **extra)
        raise UnsupportedSchemaKindError(path, f"unsupported type '{head}'")

    raise SchemaLoadError(f"{path}: malformed type expression {expr!r}")


def _terraform_nested_type(
    nested: Any,
    path: str,
    level: int,
    max_depth: int,
    raw: dict[str, Any],
    flags: dict[str, bool],
) -> AttributeSchema:
    """Protocol v6 ``nested_type`` attributes behave like nested blocks."""
    if not isinstance(nested, dict):
        raise SchemaLoadError(f"{path}: 'nested_type' must be an object")
    mode = nested.get("nesting_mode", "single")
    inner = _terraform_block_attributes(nested, path, level + 1, max_depth)
    block = _attr(path, kind=AttributeKind.BLOCK, attributes=inner)
    extra = {"description": raw.get("description"), **flags}
    if mode == "single":
        return _attr(path, kind=AttributeKind.BLOCK, attributes=inner, **extra)
    if mode in ("list", "set", "map"):
        return _attr(path, kind=_KIND_ALIASES[mode], element=block, **extra)
    raise UnsupportedSchemaKindError(path, f"unsupported nesting mode '{mode}'")


def _terraform_block_type(raw: Any, path: str, level: int, max_depth: int) -> AttributeSchema:
    if not isinstance(raw, dict) or not isinstance(raw.get("block"), dict):
        raise SchemaLoadError(f"{path}: block type needs a 'block' object")
    mode = raw.get("nesting_mode", "single")
    min_items = int(raw.get("min_items", 0) or 0)
    max_items = raw.get("max_items")
    inner_block = raw["block"]
    inner = _terraform_block_attributes(inner_block, path, level + 1, max_depth)

    required = min_items > 0
    extra = {
        "description": inner_block.get("description"),
        "deprecated": bool(inner_block.get("deprecated", False)),
        "required": required,
        "optional": not required,
    }

    if mode in ("single", "group") or (mode in ("list", "set") and max_items == 1):
        return _attr(path, kind=AttributeKind.BLOCK, attributes=inner, **extra)
    if mode in ("list", "set", "map"):
        validation = None
        if min_items or max_items:
            validation = Validation(min_items=min_items or None, max_items=max_items)
        element = _attr(path, kind=AttributeKind.BLOCK, attributes=inner)
        return _attr(
            path,
            kind=_KIND_ALIASES[mode],
            element=element,
            validation=validation,
            **extra,
        )
    raise UnsupportedSchemaKindError(path, f"unsupported nesting mode '{mode}'")


# ---------------------------------------------------------------------------
# Native shape
# ---------------------------------------------------------------------------


def _load_native(
    descriptor: dict[str, Any], provider: Optional[str], max_depth: int
) -> list[ResourceSchema]:
    declared = descriptor.get("provider")
    if provider is not None and declared is not None and declared != provider:
        raise SchemaLoadError(
            f"Descriptor is for provider '{declared}', not '{provider}'"
        )

    raw_resources = descriptor["resources"]
    if isinstance(raw_resources, dict):
        items = list(raw_resources.items())
    elif isinstance(raw_resources, list):
        items = []
        for entry in raw_resources:
            if not isinstance(entry, dict) or not isinstance(entry.get("name"), str):
                raise SchemaLoadError("Each entry of 'resources' needs a 'name'")
            items.append((entry["name"], entry))
    else:
        raise SchemaLoadError("'resources' must be an object or a list")

    seen: set[str] = set()
    resources = []
    for name, raw in items:
        if name in seen:
            raise SchemaLoadError(f"Duplicate resource name '{name}'")
        seen.add(name)
        if not isinstance(raw, dict):
            raise SchemaLoadError(f"{name}: resource must be an object")
        raw_attrs = raw.get("attributes")
        if not isinstance(raw_attrs, dict):
            raise SchemaLoadError(f"{name}: resource needs an 'attributes' object")
        _check_depth(name, 1, max_depth)
        attributes = {
            key: _native_attr(value, f"{name}.{key}", 1, max_depth)
            for key, value in raw_attrs.items()
        }
        resources.append(
            _resource(
                name,
                version=raw.get("version", 0),
                description=raw.get("description"),
                deprecated=bool(raw.get("deprecated", False)),
                attributes=attributes,
            )
        )
    return resources


def _native_attr(raw: Any, path: str, level: int, max_depth: int) -> AttributeSchema:
    _check_depth(path, level, max_depth)
    if isinstance(raw, str):
        raw = {"type": raw}
    if not isinstance(raw, dict):
        raise SchemaLoadError(f"{path}: attribute must be an object or a type name")

    type_name = raw.get("type")
    if not isinstance(type_name, str):
        raise SchemaLoadError(f"{path}: attribute has no 'type'")
    kind = _KIND_ALIASES.get(type_name)
    if kind is None:
        raise UnsupportedSchemaKindError(path, f"unsupported type '{type_name}'")

    fields: dict[str, Any] = {
        "kind": kind,
        "description": raw.get("description"),
        "default": raw.get("default"),
        **_flags(raw),
    }

    if raw.get("validation") is not None:
        fields["validation"] = _validation(raw["validation"], path)

    if kind in (AttributeKind.LIST, AttributeKind.SET, AttributeKind.MAP):
        if "element" not in raw:
            raise SchemaLoadError(f"{path}: {type_name} attribute needs an 'element'")
        element = _native_attr(raw["element"], path, level + 1, max_depth)
        fields["element"] = element.model_copy(
            update={"required": False, "optional": False, "computed": False}
        )
    elif kind == AttributeKind.BLOCK:
        nested = raw.get("attributes")
        if not isinstance(nested, dict):
            raise SchemaLoadError(f"{path}: block attribute needs an 'attributes' object")
        _check_depth(path, level + 1, max_depth)
        fields["attributes"] = {
            key: _native_attr(value, f"{path}.{key}", level + 1, max_depth)
            for key, value in nested.items()
        }

    return _attr(path, **fields)


def _validation(raw: Any, path: str) -> Validation:
    if not isinstance(raw, dict):
        raise SchemaLoadError(f"{path}: 'validation' must be an object")
    data = dict(raw)
    if isinstance(data.get("one_of"), list):
        data["one_of"] = tuple(data["one_of"])
    try:
        return Validation.model_validate(data)
    except ValidationError as exc:
        raise SchemaLoadError(f"{path}: invalid validation block: {exc}") from exc


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _flags(raw: dict[str, Any]) -> dict[str, bool]:
    """Extract the boolean flags, defaulting unmarked attributes to optional."""
    flags = {key: bool(raw.get(key, False)) for key in _FLAG_KEYS}
    if not (flags["required"] or flags["optional"] or flags["computed"]):
        flags["optional"] = True
    return flags


def _check_depth(path: str, level: int, max_depth: int) -> None:
    if level > max_depth:
        raise SchemaLoadError(
            f"{path}: nesting exceeds the depth bound of {max_depth} (cyclic schema?)"
        )


def _attr(path: str, **fields: Any) -> AttributeSchema:
    try:
        return AttributeSchema(**fields)
    except ValidationError as exc:
        raise SchemaLoadError(f"{path}: invalid attribute: {exc}") from exc


def _resource(name: str, **fields: Any) -> ResourceSchema:
    try:
        return ResourceSchema(name=name, **fields)
    except ValidationError as exc:
        raise SchemaLoadError(f"{name}: invalid resource schema: {exc}") from exc
