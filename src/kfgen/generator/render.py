"""Render synthesized APIs and controllers into source files and CRDs.

Python modules are produced from the Jinja2 templates in
``generator/templates/``; CRD manifests are built as plain dicts and
dumped with PyYAML so the openAPIV3Schema always matches the field
mappings that produced the Python types.

The output of one run is a list of :class:`ArtifactSet` objects:

* one set per kind -- the API module, the CRD manifest and the controller
  module of that kind;
* one shared set -- the package markers, the API registry (``GROUP``,
  ``VERSION``, ``KINDS``, ``add_to_scheme``) and the controller registry
  (``CONTROLLERS``, ``setup``).

The writer commits each set atomically, so a kind is either fully written
or not written at all.
"""

from __future__ import annotations

import json
import textwrap
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Iterator

import yaml
from jinja2 import Environment, FileSystemLoader
from pydantic import BaseModel, ConfigDict

from kfgen.generator.api import GeneratedAPI, Registry
from kfgen.generator.controller import GeneratedController
from kfgen.generator.type_mapper import FieldType, FieldTypeKind, TypeMapping
from kfgen.models import GeneratorOptions
from kfgen.schema.model import AttributeKind

TEMPLATE_DIR = Path(__file__).parent / "templates"
"""Path to the Jinja2 template directory (``generator/templates/``)."""

# Longest generated field declaration kept on one line (4-space indent included).
_LINE_LIMIT = 99

_CRD_SCALAR_TYPES: dict[AttributeKind, str] = {
    AttributeKind.STRING: "string",
    AttributeKind.BOOL: "boolean",
    AttributeKind.NUMBER: "number",
}

# Number values a float64 cannot hold travel as decimal strings
# (kfgen.runtime.types.to_jsonable), so Number nodes accept any JSON value and
# the generated model validates it.
_NUMBER_SCHEMA: dict[str, Any] = {"x-kubernetes-preserve-unknown-fields": True}

_CONDITION_SCHEMA: dict[str, Any] = {
    "type": "object",
    "required": ["type", "status"],
    "properties": {
        "type": {"type": "string"},
        "status": {"type": "string", "enum": ["True", "False", "Unknown"]},
        "reason": {"type": "string"},
        "message": {"type": "string"},
        "lastTransitionTime": {"type": "string", "format": "date-time"},
        "observedGeneration": {"type": "integer", "format": "int64"},
    },
}


class Artifact(BaseModel):
    """One generated file: target path and full content (without markers)."""

    model_config = ConfigDict(frozen=True)

    path: Path
    content: str


class ArtifactSet(BaseModel):
    """Files that must be written together or not at all."""

    model_config = ConfigDict(frozen=True)

    name: str
    artifacts: tuple[Artifact, ...]

    @property
    def paths(self) -> list[Path]:
        return [artifact.path for artifact in self.artifacts]


class Renderer:
    """Turns synthesized kinds into :class:`ArtifactSet` objects.

    Args:
        options: Resolved generator options; decide the output directories
            and the generated package names.

    Example::

        renderer = Renderer(options)
        kind_set = renderer.render_kind(api, synthesize_controller(api))
        shared = renderer.render_shared(registry, controllers)
    """

    def __init__(self, options: GeneratorOptions) -> None:
        self._options = options
        self._env = _create_jinja_env()

    # ------------------------------------------------------------------ #
    # Output layout
    # ------------------------------------------------------------------ #

    @property
    def api_package_dir(self) -> Path:
        return self._options.resolved_apis_path() / self._options.api_package

    @property
    def api_version_dir(self) -> Path:
        return self.api_package_dir / self._options.version

    @property
    def crd_dir(self) -> Path:
        return self._options.resolved_apis_path() / "crds"

    @property
    def controller_package_dir(self) -> Path:
        return self._options.resolved_controller_path() / self._options.controller_package

    # ------------------------------------------------------------------ #
    # Rendering
    # ------------------------------------------------------------------ #

    def render_kind(self, api: GeneratedAPI, controller: GeneratedController) -> ArtifactSet:
        """Render the API module, CRD and controller module of one kind."""
        api_module = self._env.get_template("api_module.py.j2").render(
            api=api,
            uses_number=_uses_number(api),
            uses_decimal=_uses_decimal_default(api),
        )
        controller_module = self._env.get_template("controller_module.py.j2").render(
            api=api,
            controller=controller,
            api_package=self._options.api_package,
        )
        return ArtifactSet(
            name=api.kind,
            artifacts=(
                Artifact(path=self.api_version_dir / f"{api.module_name}.py", content=api_module),
                Artifact(
                    path=self.crd_dir / f"{api.group}_{api.plural}.yaml",
                    content=render_crd(api, self._options.provider_name),
                ),
                Artifact(
                    path=self.controller_package_dir / f"{controller.module_name}.py",
                    content=controller_module,
                ),
            ),
        )

    def render_shared(
        self, registry: Registry, controllers: Iterable[GeneratedController]
    ) -> ArtifactSet:
        """Render the package markers and both registries.

        Must run after every kind has been synthesized: the registries list
        all of them explicitly.
        """
        provider = self._options.provider_name
        package_init = self._env.get_template("package_init.py.j2")
        ordered = sorted(controllers, key=lambda c: c.kind)
        return ArtifactSet(
            name="registry",
            artifacts=(
                Artifact(
                    path=self.api_package_dir / "__init__.py",
                    content=package_init.render(
                        description=f"API types generated for the {provider} provider."
                    ),
                ),
                Artifact(
                    path=self.api_version_dir / "__init__.py",
                    content=self._env.get_template("api_registry.py.j2").render(
                        registry=registry
                    ),
                ),
                Artifact(
                    path=self.controller_package_dir / "__init__.py",
                    content=self._env.get_template("controller_registry.py.j2").render(
                        provider=provider,
                        registry=registry,
                        controllers=ordered,
                        api_package=self._options.api_package,
                    ),
                ),
            ),
        )


def _create_jinja_env() -> Environment:
    """Create a Jinja2 environment for Python source templates."""
    env = Environment(
        loader=FileSystemLoader(str(TEMPLATE_DIR)),
        trim_blocks=True,
        lstrip_blocks=True,
        keep_trailing_newline=True,
        autoescape=False,
    )
    env.filters["pyrepr"] = python_literal
    env.filters["docstring"] = _docstring
    env.filters["field_decl"] = field_declaration
    return env


# ------------------------------------------------------------------ #
# Python source helpers
# ------------------------------------------------------------------ #


def python_literal(value: Any) -> str:
    """Python source for a JSON-like *value*; strings use double quotes."""
    if isinstance(value, str):
        return json.dumps(value)
    if isinstance(value, Decimal):
        return f'Decimal("{value}")'
    if isinstance(value, (list, tuple)):
        return "[" + ", ".join(python_literal(v) for v in value) + "]"
    if isinstance(value, dict):
        items = (f"{python_literal(str(k))}: {python_literal(v)}" for k, v in value.items())
        return "{" + ", ".join(items) + "}"
    return repr(value)


def field_declaration(mapping: TypeMapping) -> str:
    """Class-body declaration of one field, wrapped when it gets long.

    Example::

        >>> field_declaration(mapping)
        'display_expression: Optional[str] = Field(default=None, alias="displayExpression")'
    """
    args = _field_args(mapping)
    if not args:
        return f"{mapping.field_name}: {mapping.annotation}"
    head = f"{mapping.field_name}: {mapping.annotation} = Field("
    single = head + ", ".join(args) + ")"
    if len(single) + 4 <= _LINE_LIMIT:
        return single
    body = "".join(f"\n        {arg}," for arg in args)
    return f"{head}{body}\n    )"


def _field_args(mapping: TypeMapping) -> list[str]:
    args: list[str] = []
    if mapping.optional:
        args.append(f"default={_default_source(mapping)}")
    if mapping.serialization_key != mapping.field_name:
        args.append(f"alias={python_literal(mapping.serialization_key)}")
    description = mapping.description
    if mapping.deprecated:
        description = f"Deprecated. {description}" if description else "Deprecated."
    if description:
        args.append(f"description={python_literal(description)}")
    for name, value in mapping.constraints.items():
        args.append(f"{name}={python_literal(_tidy_number(value))}")
    if mapping.sensitive:
        args.append("repr=False")
    if mapping.optional and isinstance(mapping.default, (list, dict)):
        args.append("validate_default=True")
    return args


def _default_source(mapping: TypeMapping) -> str:
    default = mapping.default
    if default is None:
        return "None"
    if _is_decimal_scalar(mapping.field_type) and not isinstance(default, bool):
        return python_literal(Decimal(str(default)))
    return python_literal(default)


def _tidy_number(value: Any) -> Any:
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _docstring(text: str, indent: int = 0) -> str:
    """Escape *text* for a triple-quoted docstring and wrap it."""
    text = " ".join(str(text).split())
    text = text.replace("\\", "\\\\")
    if text.endswith('"'):
        text = text[:-1] + '\\"'
    text = text.replace('"""', '\\"\\"\\"')
    return textwrap.fill(
        text,
        width=max(40, 79 - indent),
        subsequent_indent=" " * indent,
        break_long_words=False,
        break_on_hyphens=False,
    )


def _is_decimal_scalar(field_type: FieldType) -> bool:
    return field_type.kind == FieldTypeKind.SCALAR and field_type.python == "Number"


def _all_fields(api: GeneratedAPI) -> Iterator[TypeMapping]:
    yield from api.spec_fields
    yield from api.all_status_fields()
    for nested in api.nested_types:
        yield from nested.fields


def _field_types(field_type: FieldType) -> Iterator[FieldType]:
    yield field_type
    if field_type.element is not None:
        yield from _field_types(field_type.element)


def _uses_number(api: GeneratedAPI) -> bool:
    return any(
        _is_decimal_scalar(ft)
        for field in _all_fields(api)
        for ft in _field_types(field.field_type)
    )


def _uses_decimal_default(api: GeneratedAPI) -> bool:
    return any(
        field.optional
        and field.default is not None
        and not isinstance(field.default, bool)
        and _is_decimal_scalar(field.field_type)
        for field in _all_fields(api)
    )


# ------------------------------------------------------------------ #
# CRD manifests
# ------------------------------------------------------------------ #


def render_crd(api: GeneratedAPI, provider: str) -> str:
    """YAML CustomResourceDefinition for *api*."""
    return yaml.safe_dump(
        crd_manifest(api, provider),
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
        width=100,
    )


def crd_manifest(api: GeneratedAPI, provider: str) -> dict[str, Any]:
    """CustomResourceDefinition of *api* as a plain dict.

    Provider defaults are not emitted: the apiserver would materialize them
    into every object and they would be sent to the provider as if the user
    had set them.
    """
    status = _object_schema(api.all_status_fields())
    status.setdefault("properties", {}).update(
        {
            "conditions": {
                "type": "array",
                "items": _CONDITION_SCHEMA,
                "x-kubernetes-list-type": "map",
                "x-kubernetes-list-map-keys": ["type"],
            },
            "observedGeneration": {"type": "integer", "format": "int64"},
            "reconciliation": {
                "type": "object",
                "x-kubernetes-preserve-unknown-fields": True,
            },
        }
    )
    status.pop("required", None)
    status["x-kubernetes-preserve-unknown-fields"] = True

    root: dict[str, Any] = {"type": "object"}
    if api.description:
        root["description"] = api.description
    root["required"] = ["spec"]
    root["properties"] = {
        "apiVersion": {"type": "string"},
        "kind": {"type": "string"},
        "metadata": {"type": "object"},
        "spec": _object_schema(api.spec_fields),
        "status": status,
    }

    version: dict[str, Any] = {
        "name": api.version,
        "served": True,
        "storage": True,
    }
    if api.deprecated:
        version["deprecated"] = True
        version["deprecationWarning"] = (
            f"{api.api_version} {api.kind} wraps the deprecated provider resource "
            f"{api.resource_name}"
        )
    version["subresources"] = {"status": {}}
    version["additionalPrinterColumns"] = [
        {"name": "Phase", "type": "string", "jsonPath": ".status.reconciliation.phase"},
        {
            "name": "Ready",
            "type": "string",
            "jsonPath": '.status.conditions[?(@.type=="Ready")].status',
        },
        {"name": "Age", "type": "date", "jsonPath": ".metadata.creationTimestamp"},
    ]
    version["schema"] = {"openAPIV3Schema": root}

    return {
        "apiVersion": "apiextensions.k8s.io/v1",
        "kind": "CustomResourceDefinition",
        "metadata": {
            "name": api.crd_name,
            "labels": {"app.kubernetes.io/managed-by": "kfgen"},
        },
        "spec": {
            "group": api.group,
            "names": {
                "kind": api.kind,
                "listKind": f"{api.kind}List",
                "plural": api.plural,
                "singular": api.kind.lower(),
                "categories": ["kubeform", provider.replace("_", "")],
            },
            "scope": "Namespaced",
            "versions": [version],
        },
    }


def _object_schema(fields: Iterable[TypeMapping]) -> dict[str, Any]:
    properties: dict[str, Any] = {}
    required: list[str] = []
    for mapping in fields:
        properties[mapping.serialization_key] = _property_schema(mapping)
        if not mapping.optional:
            required.append(mapping.serialization_key)
    schema: dict[str, Any] = {"type": "object"}
    if required:
        schema["required"] = required
    if properties:
        schema["properties"] = properties
    return schema


def _property_schema(mapping: TypeMapping) -> dict[str, Any]:
    schema = _type_schema(mapping.field_type)
    if mapping.description:
        schema = {"description": mapping.description, **schema}
    is_array = mapping.field_type.kind in (FieldTypeKind.SEQUENCE, FieldTypeKind.SET)
    for name, value in mapping.constraints.items():
        value = _tidy_number(value)
        if name == "ge":
            schema["minimum"] = value
        elif name == "le":
            schema["maximum"] = value
        elif name == "min_length":
            schema["minItems" if is_array else "minLength"] = value
        elif name == "max_length":
            schema["maxItems" if is_array else "maxLength"] = value
        elif name == "pattern":
            schema["pattern"] = value
    return schema


def _type_schema(field_type: FieldType) -> dict[str, Any]:
    kind = field_type.kind
    if kind == FieldTypeKind.SCALAR:
        if field_type.python == "Number":
            return dict(_NUMBER_SCHEMA)
        crd_type = _CRD_SCALAR_TYPES[field_type.source_kind]
        if field_type.python == "int":
            crd_type = "integer"
        schema: dict[str, Any] = {"type": crd_type}
        if field_type.choices:
            schema["enum"] = list(field_type.choices)
        return schema
    if kind in (FieldTypeKind.SEQUENCE, FieldTypeKind.SET):
        assert field_type.element is not None
        schema = {"type": "array", "items": _type_schema(field_type.element)}
        if kind == FieldTypeKind.SET and field_type.element.kind == FieldTypeKind.SCALAR:
            schema["x-kubernetes-list-type"] = "set"
        return schema
    if kind == FieldTypeKind.MAPPING:
        assert field_type.element is not None
        return {"type": "object", "additionalProperties": _type_schema(field_type.element)}
    assert field_type.nested is not None
    return _object_schema(field_type.nested.fields)
