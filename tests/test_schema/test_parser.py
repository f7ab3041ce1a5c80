"""Tests for kfgen.schema.parser and the attribute tree model."""

from __future__ import annotations

import copy
from typing import Any

import pytest

from kfgen.exceptions import SchemaLoadError, UnsupportedSchemaKindError
from kfgen.schema import AttributeKind, load, walk
from kfgen.schema.model import AttributeSchema, depth


def _terraform(resources: dict[str, Any], address: str = "registry.terraform.io/acme/acme"):
    return {
        "format_version": "1.0",
        "provider_schemas": {address: {"resource_schemas": resources}},
    }


# ---------------------------------------------------------------------------
# Terraform descriptors
# ---------------------------------------------------------------------------


class TestTerraformDescriptor:
    def test_resources_sorted_by_name(self, wavefront_resources) -> None:
        assert [r.name for r in wavefront_resources] == [
            "wavefront_alert",
            "wavefront_alert_target",
            "wavefront_dashboard",
        ]

    def test_attributes_then_blocks_in_declared_order(self, wavefront_resources) -> None:
        alert = wavefront_resources[0]
        assert list(alert.attributes) == [
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
            "created_at",
            "notification",
        ]
        assert alert.description == "A Wavefront alert."

    def test_flags(self, wavefront_resources) -> None:
        attrs = wavefront_resources[0].attributes
        assert attrs["name"].required and not attrs["name"].optional
        assert attrs["alert_type"].optional and attrs["alert_type"].computed
        assert attrs["created_at"].is_status_only
        assert not attrs["alert_type"].is_status_only

    def test_collection_types(self, wavefront_resources) -> None:
        alert, target, _ = wavefront_resources
        tags = alert.attributes["tags"]
        assert tags.kind == AttributeKind.SET
        assert tags.element is not None and tags.element.kind == AttributeKind.STRING
        headers = target.attributes["custom_headers"]
        assert headers.kind == AttributeKind.MAP

    def test_list_block(self, wavefront_resources) -> None:
        notification = wavefront_resources[0].attributes["notification"]
        assert notification.kind == AttributeKind.LIST
        assert notification.optional
        element = notification.element
        assert element is not None and element.kind == AttributeKind.BLOCK
        assert element.attributes["channel"].required

    def test_min_items_makes_block_required(self, wavefront_resources) -> None:
        section = wavefront_resources[2].attributes["section"]
        assert section.required
        assert section.validation is not None and section.validation.min_items == 1

    def test_single_item_list_block_becomes_nested_block(self) -> None:
        raw = _terraform({
            "acme_thing": {"block": {"block_types": {
                "settings": {
                    "nesting_mode": "list",
                    "max_items": 1,
                    "block": {"attributes": {"mode": {"type": "string", "optional": True}}},
                },
            }}},
        })
        thing = load(raw)[0]
        assert thing.attributes["settings"].kind == AttributeKind.BLOCK

    def test_object_type_expression(self) -> None:
        raw = _terraform({
            "acme_thing": {"block": {"attributes": {
                "limits": {"type": ["object", {"cpu": "number", "mem": "string"}],
                           "optional": True},
            }}},
        })
        limits = load(raw)[0].attributes["limits"]
        assert limits.kind == AttributeKind.BLOCK
        assert set(limits.attributes) == {"cpu", "mem"}

    def test_nested_type_attribute(self) -> None:
        raw = _terraform({
            "acme_thing": {"block": {"attributes": {
                "rules": {
                    "optional": True,
                    "nested_type": {
                        "nesting_mode": "set",
                        "attributes": {"port": {"type": "number", "required": True}},
                    },
                },
            }}},
        })
        rules = load(raw)[0].attributes["rules"]
        assert rules.kind == AttributeKind.SET
        assert rules.element is not None and rules.element.kind == AttributeKind.BLOCK


class TestProviderSelection:
    def test_by_short_name(self, wavefront_raw) -> None:
        assert len(load(wavefront_raw, provider="wavefront")) == 3

    def test_by_full_address(self, wavefront_raw) -> None:
        resources = load(wavefront_raw, provider="registry.terraform.io/vmware/wavefront")
        assert len(resources) == 3

    def test_unknown_provider(self, wavefront_raw) -> None:
        with pytest.raises(SchemaLoadError, match="not found"):
            load(wavefront_raw, provider="datadog")

    def test_several_providers_need_a_name(self, wavefront_raw) -> None:
        raw = copy.deepcopy(wavefront_raw)
        raw["provider_schemas"]["registry.terraform.io/acme/acme"] = {"resource_schemas": {}}
        with pytest.raises(SchemaLoadError, match="several providers"):
            load(raw)
        assert len(load(raw, provider="wavefront")) == 3


class TestTerraformErrors:
    def test_unsupported_type(self) -> None:
        raw = _terraform({
            "acme_thing": {"block": {"attributes": {"x": {"type": "dynamic"}}}},
        })
        with pytest.raises(UnsupportedSchemaKindError) as exc_info:
            load(raw)
        assert exc_info.value.path == "acme_thing.x"

    def test_tuple_type(self) -> None:
        raw = _terraform({
            "acme_thing": {"block": {"attributes": {
                "pair": {"type": ["tuple", ["string", "number"]], "optional": True},
            }}},
        })
        with pytest.raises(UnsupportedSchemaKindError, match="tuple"):
            load(raw)

    def test_depth_bound(self, wavefront_raw) -> None:
        with pytest.raises(SchemaLoadError, match="depth bound"):
            load(wavefront_raw, provider="wavefront", max_depth=2)

    def test_missing_block(self) -> None:
        with pytest.raises(SchemaLoadError, match="'block'"):
            load(_terraform({"acme_thing": {"version": 0}}))

    def test_computed_and_required(self) -> None:
        raw = _terraform({
            "acme_thing": {"block": {"attributes": {
                "x": {"type": "string", "required": True, "computed": True},
            }}},
        })
        with pytest.raises(SchemaLoadError, match="acme_thing.x"):
            load(raw)

    def test_unrecognised_descriptor(self) -> None:
        with pytest.raises(SchemaLoadError, match="Unrecognised"):
            load({"openapi": "3.0.0"})

    def test_no_resources(self) -> None:
        with pytest.raises(SchemaLoadError, match="no resources"):
            load(_terraform({}))


# ---------------------------------------------------------------------------
# Native descriptors
# ---------------------------------------------------------------------------


class TestNativeDescriptor:
    def test_resource(self, native_resources) -> None:
        (bucket,) = native_resources
        assert bucket.name == "example_bucket"
        assert bucket.version == 2
        assert bucket.description == "A storage bucket."

    def test_validation_and_default(self, native_resources) -> None:
        attrs = native_resources[0].attributes
        assert attrs["class"].default == "standard"
        assert attrs["class"].validation.one_of == ("standard", "archive")
        assert attrs["size_gb"].validation.integer
        assert attrs["name"].validation.pattern == "^[a-z0-9-]+$"

    def test_unmarked_attribute_defaults_to_optional(self) -> None:
        raw = {"resources": {"x_thing": {"attributes": {"note": "string"}}}}
        note = load(raw)[0].attributes["note"]
        assert note.kind == AttributeKind.STRING
        assert note.optional

    def test_map_element_flags_cleared(self, native_resources) -> None:
        labels = native_resources[0].attributes["labels"]
        assert labels.element is not None
        assert not labels.element.optional and not labels.element.required

    def test_provider_mismatch(self, native_raw) -> None:
        with pytest.raises(SchemaLoadError, match="not 'other'"):
            load(native_raw, provider="other")

    def test_list_form_with_duplicates(self) -> None:
        raw = {"resources": [
            {"name": "x_a", "attributes": {}},
            {"name": "x_a", "attributes": {}},
        ]}
        with pytest.raises(SchemaLoadError, match="Duplicate"):
            load(raw)

    def test_unknown_type(self) -> None:
        raw = {"resources": {"x_a": {"attributes": {"v": {"type": "tuple"}}}}}
        with pytest.raises(UnsupportedSchemaKindError):
            load(raw)

    def test_invalid_validation(self) -> None:
        raw = {"resources": {"x_a": {"attributes": {
            "v": {"type": "string", "validation": {"shape": "round"}},
        }}}}
        with pytest.raises(SchemaLoadError, match="invalid validation"):
            load(raw)

    @pytest.mark.parametrize(
        "attribute, reason",
        [
            ({"type": "number", "default": "big"}, "is not a number"),
            ({"type": "number", "default": "Infinity"}, "not a finite number"),
            ({"type": "bool", "default": "yes"}, "is not a bool"),
            ({"type": "string", "default": 3}, "is not a string"),
            ({"type": "list", "element": "number", "default": [1, "x"]}, "is not a number"),
            (
                {"type": "string", "default": "loud", "validation": {"one_of": ["warn"]}},
                "is not one of 'warn'",
            ),
        ],
    )
    def test_default_must_match_kind(self, attribute: dict[str, Any], reason: str) -> None:
        raw = {"resources": {"x_a": {"attributes": {"size": attribute}}}}
        with pytest.raises(SchemaLoadError, match=reason) as excinfo:
            load(raw)
        assert str(excinfo.value).startswith("x_a.size:")

    def test_default_of_nested_block(self) -> None:
        raw = {"resources": {"x_a": {"attributes": {"opts": {
            "type": "block",
            "attributes": {"retries": {"type": "number"}},
            "default": {"retries": "many"},
        }}}}}
        with pytest.raises(SchemaLoadError, match="retries: 'many' is not a number"):
            load(raw)

    def test_numeric_defaults_accepted(self) -> None:
        raw = {"resources": {"x_a": {"attributes": {
            "ratio": {"type": "number", "default": "0.10000000000000000001"},
            "minutes": {"type": "number", "default": 5, "validation": {"one_of": [1, 5.0]}},
        }}}}
        attrs = load(raw)[0].attributes
        assert attrs["ratio"].default == "0.10000000000000000001"
        assert attrs["minutes"].default == 5


# ---------------------------------------------------------------------------
# Tree helpers
# ---------------------------------------------------------------------------


class TestTreeHelpers:
    def test_walk_descends_into_collections(self, wavefront_resources) -> None:
        paths = [path for path, _ in walk(wavefront_resources[2])]
        assert "section" in paths
        assert "section.row.height" in paths

    def test_depth(self, wavefront_resources) -> None:
        dashboard = wavefront_resources[2]
        assert depth(dashboard.attributes["name"]) == 1
        assert depth(dashboard.attributes["section"]) == 3

    def test_shape_validation(self) -> None:
        with pytest.raises(ValueError):
            AttributeSchema(kind=AttributeKind.LIST)
