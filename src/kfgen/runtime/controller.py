"""Base class of every generated controller.

A generated controller only declares *what* it reconciles::

    class AlertController(ResourceController):
        api_type = Alert
        spec_type = AlertSpec
        status_type = AlertStatus
        resource_name = "wavefront_alert"
        spec_bindings = (("name", "name"), ("condition", "condition"), ...)
        status_bindings = (("id", "id"),)

Everything else -- turning the typed Spec into the adapter's wire shape,
computing changed and drifted fields, and projecting provider state into
Status -- lives here and is shared by all kinds.
"""

from __future__ import annotations

from typing import Any, ClassVar, Optional

from pydantic import BaseModel, ValidationError

from kfgen.output import get_output
from kfgen.runtime.adapter import ProviderAdapter
from kfgen.runtime.types import canonical_json

Binding = tuple[str, str]
"""``(field_name, serialization_key)``."""


class ResourceController:
    """Bindings between one generated API kind and the provider adapter.

    Args:
        adapter: CRUD adapter shared by every controller in the process.
    """

    api_type: ClassVar[type[BaseModel]]
    spec_type: ClassVar[type[BaseModel]]
    status_type: ClassVar[type[BaseModel]]
    resource_name: ClassVar[str]
    group: ClassVar[str]
    version: ClassVar[str]
    kind: ClassVar[str]
    plural: ClassVar[str]
    spec_bindings: ClassVar[tuple[Binding, ...]] = ()
    status_bindings: ClassVar[tuple[Binding, ...]] = ()

    def __init__(self, adapter: ProviderAdapter) -> None:
        self.adapter = adapter

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind!r}, resource={self.resource_name!r})"

    @property
    def api_version(self) -> str:
        return f"{self.group}/{self.version}"

    # ------------------------------------------------------------------ #
    # Spec
    # ------------------------------------------------------------------ #

    def parse_spec(self, raw: dict[str, Any]) -> BaseModel:
        """Validate a raw Spec dict into the generated Spec model.

        Raises:
            pydantic.ValidationError: If the Spec does not match the schema.
        """
        return self.spec_type.model_validate(raw)

    def spec_to_wire(self, spec: BaseModel) -> dict[str, Any]:
        """Attributes the user set, keyed by provider wire name.

        Unset and null fields are omitted, so provider-side defaults are
        never overridden by values the user did not write.
        """
        dumped = spec.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)
        return {key: dumped[key] for _, key in self.spec_bindings if key in dumped}

    @staticmethod
    def changed_fields(
        desired: dict[str, Any], applied: Optional[dict[str, Any]]
    ) -> dict[str, Any]:
        """Keys of *desired* that are new or differ from *applied*.

        Keys present in *applied* but absent from *desired* are not
        reported; removing an optional attribute leaves the provider's value
        in place.
        """
        applied = applied or {}
        return {
            key: value
            for key, value in desired.items()
            if key not in applied or not _same(applied[key], value)
        }

    # ------------------------------------------------------------------ #
    # Status
    # ------------------------------------------------------------------ #

    def status_from_state(
        self, state: dict[str, Any], external_id: Optional[str] = None
    ) -> dict[str, Any]:
        """Project provider state onto the Status wire keys.

        Values are validated through the Status model; when the provider
        returns something the model rejects, the raw values are kept and a
        warning is logged.
        """
        picked = {key: state[key] for _, key in self.status_bindings if key in state}
        if external_id is not None and "id" in {key for _, key in self.status_bindings}:
            picked.setdefault("id", external_id)
        try:
            model = self.status_type.model_validate(picked)
        except ValidationError as exc:
            get_output().warning(
                f"{self.kind}: provider state does not match {self.status_type.__name__}: "
                f"{exc.error_count()} error(s); storing raw values"
            )
            return picked
        return model.model_dump(by_alias=True, exclude_unset=True, exclude_none=True)

    def status_keys(self) -> set[str]:
        return {key for _, key in self.status_bindings}

    # ------------------------------------------------------------------ #
    # Drift
    # ------------------------------------------------------------------ #

    @staticmethod
    def drifted_fields(applied: Optional[dict[str, Any]], observed: dict[str, Any]) -> list[str]:
        """Applied keys whose observed value diverges, sorted.

        Only attributes the controller applied are compared; values the
        provider computes on its own are not drift.
        """
        return sorted(
            key
            for key, value in (applied or {}).items()
            if key in observed and not _same(observed[key], value)
        )


def _same(left: Any, right: Any) -> bool:
    """Compare wire values ignoring numeric representation (``5`` vs ``5.0``)."""
    return canonical_json(left) == canonical_json(right)
