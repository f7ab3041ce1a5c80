"""Bind generated API fields to the provider adapter's argument shape.

The controller synthesizer emits no business logic. A generated controller
is a :class:`~kfgen.runtime.controller.ResourceController` subclass whose
only content is which API class it reconciles, which provider resource it
drives, and how each typed field maps to a wire key of the CRUD adapter.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from kfgen.exceptions import BindingError
from kfgen.generator.api import GeneratedAPI
from kfgen.generator.type_mapper import TypeMapping


class FieldBinding(BaseModel):
    """One typed field and the wire key the adapter expects for it."""

    model_config = ConfigDict(frozen=True)

    field_name: str
    serialization_key: str


class GeneratedController(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: str
    class_name: str
    module_name: str
    api_module: str
    resource_name: str
    spec_bindings: tuple[FieldBinding, ...]
    status_bindings: tuple[FieldBinding, ...]


def synthesize_controller(api: GeneratedAPI) -> GeneratedController:
    """Produce the controller bindings of one :class:`GeneratedAPI`.

    Raises:
        BindingError: When a field has no mapping or serialization key, or
            when two fields of the same type share a wire key. Either means
            the API synthesizer produced an inconsistent partition.
    """
    return GeneratedController(
        kind=api.kind,
        class_name=f"{api.kind}Controller",
        module_name=api.module_name,
        api_module=api.module_name,
        resource_name=api.resource_name,
        spec_bindings=_bind(api, "Spec", api.spec_fields),
        status_bindings=_bind(api, "Status", api.all_status_fields()),
    )


def _bind(
    api: GeneratedAPI, section: str, fields: tuple[TypeMapping, ...]
) -> tuple[FieldBinding, ...]:
    bindings: list[FieldBinding] = []
    seen_keys: dict[str, str] = {}
    seen_fields: set[str] = set()
    for mapping in fields:
        if not isinstance(mapping, TypeMapping):
            raise BindingError(f"{api.kind}{section}: field {mapping!r} has no type mapping")
        if not mapping.serialization_key:
            raise BindingError(
                f"{api.kind}{section}.{mapping.field_name}: missing serialization key"
            )
        if mapping.serialization_key in seen_keys:
            raise BindingError(
                f"{api.kind}{section}: fields {seen_keys[mapping.serialization_key]!r} and "
                f"{mapping.field_name!r} share the wire key {mapping.serialization_key!r}"
            )
        if mapping.field_name in seen_fields:
            raise BindingError(
                f"{api.kind}{section}: duplicate field name {mapping.field_name!r}"
            )
        seen_keys[mapping.serialization_key] = mapping.field_name
        seen_fields.add(mapping.field_name)
        bindings.append(
            FieldBinding(field_name=mapping.field_name, serialization_key=mapping.serialization_key)
        )
    return tuple(bindings)
