"""Identifier rules for generated Python code.

Provider attribute names are arbitrary strings; generated code needs legal,
non-shadowing Python identifiers. Every transformation here is pure and
deterministic so regenerating from the same schema always yields the same
names. The original attribute name is never lost: it travels alongside the
sanitised name as the field's serialization key.
"""

from __future__ import annotations

import keyword
import re

# Matches any character that is not alphanumeric or underscore.
_INVALID_IDENT_RE = re.compile(r"[^a-zA-Z0-9_]")

# Attributes of pydantic.BaseModel a field must not shadow.
_MODEL_ATTRIBUTES = frozenset({
    "construct",
    "copy",
    "dict",
    "fields",
    "from_orm",
    "json",
    "parse_file",
    "parse_obj",
    "parse_raw",
    "schema",
    "schema_json",
    "update_forward_refs",
    "validate",
})

# Names the generated modules use in annotations; a field must not shadow them.
_ANNOTATION_NAMES = frozenset({
    "bool",
    "dict",
    "float",
    "int",
    "list",
    "str",
})


def sanitize_field_name(name: str) -> str:
    """Convert a provider attribute name to a valid pydantic field name.

    Applies the following transformations in order:

    1. CamelCase boundaries are split with underscores.
    2. The string is lowercased.
    3. Hyphens, dots and other invalid characters become underscores.
    4. Consecutive and leading/trailing underscores are collapsed.
    5. An empty result defaults to ``"field"``.
    6. A leading digit or a ``model_`` prefix (reserved by pydantic) gets a
       ``field_`` prefix.
    7. Python keywords, ``BaseModel`` attribute names and names used in
       generated annotations (``list``, ``str``, ...) get a trailing
       underscore (``class`` becomes ``class_``).

    Example::

        >>> sanitize_field_name("alertType")
        'alert_type'
        >>> sanitize_field_name("3d-view")
        'field_3d_view'
        >>> sanitize_field_name("json")
        'json_'
    """
    result = re.sub(r"([a-z0-9])([A-Z])", r"\1_\2", name)
    result = re.sub(r"([A-Z]+)([A-Z][a-z])", r"\1_\2", result)
    result = result.lower()
    result = _INVALID_IDENT_RE.sub("_", result)
    result = re.sub(r"_+", "_", result).strip("_")
    if not result:
        result = "field"
    if result[0].isdigit() or result.startswith("model_"):
        result = f"field_{result}"
    if keyword.iskeyword(result) or result in _MODEL_ATTRIBUTES or result in _ANNOTATION_NAMES:
        result = f"{result}_"
    return result


def pascal_case(name: str) -> str:
    """Join the alphanumeric words of *name* in PascalCase.

    Example::

        >>> pascal_case("alert_target")
        'AlertTarget'
        >>> pascal_case("threshold.targets")
        'ThresholdTargets'
    """
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", name)
    words = [w for w in re.split(r"[^a-zA-Z0-9]+", spaced) if w]
    result = "".join(w[:1].upper() + w[1:] for w in words)
    if not result:
        return "Field"
    if result[0].isdigit():
        result = f"T{result}"
    return result


def kind_name(resource_name: str, provider: str) -> str:
    """Derive the API kind from a provider resource name.

    The provider prefix is stripped: ``wavefront_alert_target`` becomes
    ``AlertTarget`` for provider ``wavefront``.
    """
    prefix = f"{provider}_"
    stem = resource_name[len(prefix):] if resource_name.startswith(prefix) else resource_name
    return pascal_case(stem or resource_name)


def module_name(kind: str) -> str:
    """Python module name for a kind (``AlertTarget`` -> ``alert_target``)."""
    return sanitize_field_name(kind)


def plural_name(kind: str) -> str:
    """Lowercase plural resource name used in API paths and CRD names.

    Example::

        >>> plural_name("Alert")
        'alerts'
        >>> plural_name("Policy")
        'policies'
        >>> plural_name("Index")
        'indexes'
    """
    lower = kind.lower()
    if lower.endswith(("s", "x", "z", "ch", "sh")):
        return f"{lower}es"
    if lower.endswith("y") and len(lower) > 1 and lower[-2] not in "aeiou":
        return f"{lower[:-1]}ies"
    return f"{lower}s"


class NameScope:
    """Hands out unique names within one generated scope.

    Collisions get a numeric suffix (``_2``, ``_3``, ...) in the order names
    are requested, so a deterministic traversal yields deterministic names.
    """

    def __init__(self, reserved: frozenset[str] = frozenset()) -> None:
        self._used: set[str] = set(reserved)

    def claim(self, candidate: str, separator: str = "_") -> str:
        name = candidate
        counter = 2
        while name in self._used:
            name = f"{candidate}{separator}{counter}"
            counter += 1
        self._used.add(name)
        return name
