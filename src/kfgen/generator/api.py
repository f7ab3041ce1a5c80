"""Assemble per-kind Spec/Status definitions from resource schemas.

For every :class:`~kfgen.schema.model.ResourceSchema` the synthesizer
partitions the top-level attributes:

* **Status only** -- ``computed`` and not ``optional``. The user can never
  set these.
* **Spec** -- everything else. An attribute that is both computed and
  optional is an optional Spec field (the user may override the provider's
  computed default) and is also mirrored into Status so the last observed
  value stays visible.

Every attribute lands in exactly one of Spec or Status. The synthesizer
also produces the :class:`Registry`, an explicit list of all kinds that the
generated ``add_to_scheme`` hands to the runtime scheme.
"""

from __future__ import annotations

from typing import Iterable, Optional

from pydantic import BaseModel, ConfigDict

from kfgen.exceptions import BindingError
from kfgen.generator.naming import NameScope, kind_name, module_name, plural_name
from kfgen.generator.type_mapper import NestedType, TypeMapper, TypeMapping
from kfgen.models import NumberType
from kfgen.schema.model import ResourceSchema

RESERVED_STATUS_KEYS = ("conditions", "observedGeneration", "reconciliation")
"""Status wire keys owned by the reconciliation engine."""

_RESERVED_STATUS_FIELDS = frozenset({"conditions", "observed_generation", "reconciliation"})

# Names imported by the generated API module; nested types must not shadow them.
_MODULE_NAMES = frozenset({
    "BaseModel",
    "ConfigDict",
    "Condition",
    "Decimal",
    "Field",
    "Literal",
    "Number",
    "ObjectMeta",
    "Optional",
    "ReconciliationRecord",
})


class GeneratedAPI(BaseModel):
    """Everything needed to render one kind's API module and CRD."""

    model_config = ConfigDict(frozen=True)

    kind: str
    plural: str
    resource_name: str
    group: str
    version: str
    module_name: str
    spec_fields: tuple[TypeMapping, ...]
    status_fields: tuple[TypeMapping, ...]
    observed_fields: tuple[TypeMapping, ...] = ()
    nested_types: tuple[NestedType, ...] = ()
    description: Optional[str] = None
    deprecated: bool = False
    schema_version: int = 0

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    @property
    def spec_class(self) -> str:
        return f"{self.kind}Spec"

    @property
    def status_class(self) -> str:
        return f"{self.kind}Status"

    @property
    def crd_name(self) -> str:
        return f"{self.plural}.{self.group}"

    def all_status_fields(self) -> tuple[TypeMapping, ...]:
        """Status-only fields followed by the observed mirrors."""
        return self.status_fields + self.observed_fields


class RegistryEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    plural: str
    module_name: str
    resource_name: str


class Registry(BaseModel):
    """Explicit listing of all kinds generated in one run."""

    model_config = ConfigDict(frozen=True)

    group: str
    version: str
    entries: tuple[RegistryEntry, ...] = ()

    @property
    def kinds(self) -> list[str]:
        return [entry.kind for entry in self.entries]


def assign_kinds(
    schemas: Iterable[ResourceSchema], provider: str
) -> list[tuple[ResourceSchema, str]]:
    """Pair each resource with a unique kind name.

    Resources are taken in name order; two resources deriving the same kind
    get a numeric suffix on the later one.
    """
    scope = NameScope()
    return [
        (resource, scope.claim(kind_name(resource.name, provider), separator=""))
        for resource in sorted(schemas, key=lambda r: r.name)
    ]


def synthesize_api(
    resource: ResourceSchema,
    kind: str,
    group: str,
    version: str,
    number_type: NumberType = NumberType.DECIMAL,
) -> GeneratedAPI:
    """Build the :class:`GeneratedAPI` of a single resource.

    Raises:
        BindingError: If a Status attribute uses a wire key reserved for the
            reconciliation engine.
        UnsupportedSchemaKindError: Propagated from the type mapper.
    """
    reserved_types = _MODULE_NAMES | {f"{kind}Spec", f"{kind}Status", f"{kind}List"}
    mapper = TypeMapper(resource.name, kind, number_type, reserved=frozenset(reserved_types))
    spec_scope = NameScope()
    status_scope = NameScope(_RESERVED_STATUS_FIELDS)

    spec_fields: list[TypeMapping] = []
    status_fields: list[TypeMapping] = []
    observed_keys: list[str] = []

    for name, attr in resource.attributes.items():
        mapping = mapper.map(attr, name)
        if attr.is_status_only:
            _check_status_key(resource.name, name)
            status_fields.append(_as_status(mapping, status_scope))
            continue
        field_name = spec_scope.claim(mapping.field_name)
        spec_fields.append(mapping.model_copy(update={"field_name": field_name}))
        if attr.computed:
            observed_keys.append(name)

    observed_fields: list[TypeMapping] = []
    for name in observed_keys:
        _check_status_key(resource.name, name)
        mapping = mapper.map(resource.attributes[name], name)
        observed_fields.append(_as_status(mapping, status_scope))

    return GeneratedAPI(
        kind=kind,
        plural=plural_name(kind),
        resource_name=resource.name,
        group=group,
        version=version,
        module_name=module_name(kind),
        spec_fields=tuple(spec_fields),
        status_fields=tuple(status_fields),
        observed_fields=tuple(observed_fields),
        nested_types=_collect_nested(spec_fields + status_fields + observed_fields),
        description=resource.description,
        deprecated=resource.deprecated,
        schema_version=resource.version,
    )


def synthesize_apis(
    schemas: Iterable[ResourceSchema],
    provider: str,
    group: str,
    version: str,
    number_type: NumberType = NumberType.DECIMAL,
) -> tuple[list[GeneratedAPI], Registry]:
    """Synthesize every resource and build the registry listing.

    Example::

        apis, registry = synthesize_apis(resources, "wavefront",
                                         "wavefront.kubeform.com", "v1alpha1")
    """
    apis = [
        synthesize_api(resource, kind, group, version, number_type)
        for resource, kind in assign_kinds(schemas, provider)
    ]
    return apis, build_registry(apis, group, version)


def build_registry(apis: Iterable[GeneratedAPI], group: str, version: str) -> Registry:
    """Build the registry once all per-kind work has finished."""
    entries = tuple(
        RegistryEntry(
            kind=api.kind,
            plural=api.plural,
            module_name=api.module_name,
            resource_name=api.resource_name,
        )
        for api in sorted(apis, key=lambda a: a.kind)
    )
    return Registry(group=group, version=version, entries=entries)


def _check_status_key(resource_name: str, key: str) -> None:
    if key in RESERVED_STATUS_KEYS:
        raise BindingError(
            f"{resource_name}.{key}: computed attribute collides with the reserved "
            f"status key {key!r}"
        )


def _as_status(mapping: TypeMapping, scope: NameScope) -> TypeMapping:
    """Status fields are always optional and carry no defaults or constraints."""
    return mapping.model_copy(
        update={
            "field_name": scope.claim(mapping.field_name),
            "optional": True,
            "default": None,
            "constraints": {},
        }
    )


def _collect_nested(fields: Iterable[TypeMapping]) -> tuple[NestedType, ...]:
    seen: dict[str, NestedType] = {}
    for mapping in fields:
        for nested in mapping.field_type.nested_types():
            seen.setdefault(nested.name, nested)
    return tuple(seen.values())
