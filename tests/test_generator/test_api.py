"""Tests for kfgen.generator.api -- Spec/Status partition and the registry."""

from __future__ import annotations

import pytest

from kfgen.exceptions import BindingError
from kfgen.generator.api import (
    assign_kinds,
    build_registry,
    synthesize_api,
    synthesize_apis,
)
from kfgen.schema.model import AttributeKind, AttributeSchema, ResourceSchema

GROUP = "wavefront.kubeform.com"


def _keys(fields) -> list[str]:
    return [f.serialization_key for f in fields]


@pytest.fixture
def alert_api(wavefront_resources):
    return synthesize_api(wavefront_resources[0], "Alert", GROUP, "v1alpha1")


class TestPartition:
    def test_spec_fields(self, alert_api) -> None:
        assert _keys(alert_api.spec_fields) == [
            "id",
            "name",
            "condition",
            "display_expression",
            "minutes",
            "resolve_after_minutes",
            "severity",
            "tags",
            "target",
            "alert_type",
            "notification",
        ]

    def test_status_fields(self, alert_api) -> None:
        assert _keys(alert_api.status_fields) == ["created_at"]
        assert _keys(alert_api.observed_fields) == ["id", "alert_type"]

    def test_every_attribute_in_exactly_one_section(
        self, wavefront_resources
    ) -> None:
        for resource in wavefront_resources:
            api = synthesize_api(resource, "X", GROUP, "v1alpha1")
            spec = set(_keys(api.spec_fields))
            status = set(_keys(api.status_fields))
            assert spec.isdisjoint(status)
            assert spec | status == set(resource.attributes)

    def test_status_fields_are_optional_without_constraints(self) -> None:
        resource = ResourceSchema(
            name="acme_thing",
            attributes={
                "size": AttributeSchema(kind=AttributeKind.STRING, computed=True),
                "id": AttributeSchema(kind=AttributeKind.STRING, required=True),
            },
        )
        api = synthesize_api(resource, "Thing", "acme.kubeform.com", "v1alpha1")
        assert _keys(api.status_fields) == ["size"]
        assert all(f.optional and not f.constraints for f in api.status_fields)

    def test_required_id_is_a_spec_field(self) -> None:
        resource = ResourceSchema(
            name="acme_thing",
            attributes={
                "id": AttributeSchema(kind=AttributeKind.STRING, required=True),
                "value": AttributeSchema(kind=AttributeKind.STRING, optional=True),
            },
        )
        api = synthesize_api(resource, "Thing", "acme.kubeform.com", "v1alpha1")
        assert _keys(api.spec_fields) == ["id", "value"]
        assert api.status_fields == ()
        assert api.observed_fields == ()

    def test_computed_id_is_status_only(self) -> None:
        resource = ResourceSchema(
            name="acme_thing",
            attributes={
                "id": AttributeSchema(kind=AttributeKind.STRING, computed=True),
                "name": AttributeSchema(kind=AttributeKind.STRING, required=True),
            },
        )
        api = synthesize_api(resource, "Thing", "acme.kubeform.com", "v1alpha1")
        assert _keys(api.spec_fields) == ["name"]
        assert _keys(api.status_fields) == ["id"]

    def test_alert_with_defaulted_severity(self) -> None:
        resource = ResourceSchema(
            name="acme_alert",
            attributes={
                "name": AttributeSchema(kind=AttributeKind.STRING, required=True),
                "condition": AttributeSchema(kind=AttributeKind.STRING, required=True),
                "severity": AttributeSchema(
                    kind=AttributeKind.STRING, optional=True, default="warn"
                ),
                "id": AttributeSchema(kind=AttributeKind.STRING, computed=True),
            },
        )
        api = synthesize_api(resource, "Alert", "acme.kubeform.com", "v1alpha1")
        assert _keys(api.spec_fields) == ["name", "condition", "severity"]
        assert _keys(api.status_fields) == ["id"]
        assert api.observed_fields == ()

    def test_metadata(self, alert_api) -> None:
        assert alert_api.kind == "Alert"
        assert alert_api.plural == "alerts"
        assert alert_api.module_name == "alert"
        assert alert_api.api_version == "wavefront.kubeform.com/v1alpha1"
        assert alert_api.crd_name == "alerts.wavefront.kubeform.com"
        assert alert_api.description == "A Wavefront alert."
        assert [n.name for n in alert_api.nested_types] == ["AlertNotification"]

    def test_reserved_status_key(self) -> None:
        resource = ResourceSchema(
            name="acme_thing",
            attributes={
                "conditions": AttributeSchema(kind=AttributeKind.STRING, computed=True),
            },
        )
        with pytest.raises(BindingError, match="reserved"):
            synthesize_api(resource, "Thing", "acme.kubeform.com", "v1alpha1")

    def test_spec_field_named_like_reserved_status_key_is_fine(self) -> None:
        resource = ResourceSchema(
            name="acme_thing",
            attributes={
                "conditions": AttributeSchema(kind=AttributeKind.STRING, optional=True),
            },
        )
        api = synthesize_api(resource, "Thing", "acme.kubeform.com", "v1alpha1")
        assert _keys(api.spec_fields) == ["conditions"]

    def test_nested_type_does_not_shadow_generated_classes(self) -> None:
        resource = ResourceSchema(
            name="acme_thing",
            attributes={
                "spec": AttributeSchema(
                    kind=AttributeKind.BLOCK,
                    optional=True,
                    attributes={"x": AttributeSchema(kind=AttributeKind.STRING)},
                ),
            },
        )
        api = synthesize_api(resource, "Thing", "acme.kubeform.com", "v1alpha1")
        assert api.nested_types[0].name == "ThingSpec2"


class TestKindsAndRegistry:
    def test_assign_kinds(self, wavefront_resources) -> None:
        pairs = assign_kinds(reversed(wavefront_resources), "wavefront")
        assert [kind for _, kind in pairs] == ["Alert", "AlertTarget", "Dashboard"]

    def test_colliding_kinds_get_suffix(self) -> None:
        resources = [
            ResourceSchema(name="acme_a_b"),
            ResourceSchema(name="acme_a__b"),
        ]
        pairs = assign_kinds(resources, "acme")
        assert [kind for _, kind in pairs] == ["AB", "AB2"]

    def test_registry_lists_all_kinds(self, wavefront_resources) -> None:
        apis, registry = synthesize_apis(wavefront_resources, "wavefront", GROUP, "v1alpha1")
        assert registry.kinds == ["Alert", "AlertTarget", "Dashboard"]
        assert registry.group == GROUP
        entry = registry.entries[1]
        assert (entry.module_name, entry.plural, entry.resource_name) == (
            "alert_target",
            "alerttargets",
            "wavefront_alert_target",
        )
        assert build_registry(reversed(apis), GROUP, "v1alpha1") == registry
