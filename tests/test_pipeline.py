"""End-to-end tests for kfgen.pipeline -- descriptor to importable packages."""

from __future__ import annotations

import asyncio
import importlib
import sys
from pathlib import Path

import pytest
import yaml

from kfgen.exceptions import BindingError, WriteError
from kfgen.models import GeneratorOptions, RuntimeConfig
from kfgen.pipeline import generate
from kfgen.runtime.manager import ControllerManager
from kfgen.runtime.phases import Phase
from kfgen.runtime.store import InMemoryObjectStore, ObjectKey
from kfgen.writer import BEGIN_MARKER

_GENERATED_PACKAGES = ("provider_wavefront_api", "provider_wavefront_controller")


@pytest.fixture
def generated_modules(monkeypatch: pytest.MonkeyPatch):
    """Drop imported generated packages so each test sees its own tmp_path copy."""
    yield
    for name in list(sys.modules):
        if name.split(".", 1)[0] in _GENERATED_PACKAGES:
            del sys.modules[name]


def _tree(root: Path) -> dict[str, str]:
    return {
        str(p.relative_to(root)): p.read_text() for p in sorted(root.rglob("*")) if p.is_file()
    }


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class TestGenerate:
    def test_layout(self, wavefront_options: GeneratorOptions, quiet_output) -> None:
        result = generate(wavefront_options)
        apis = result.apis_path
        controllers = result.controller_path

        assert [k.kind for k in result.kinds] == ["Alert", "AlertTarget", "Dashboard"]
        assert len(result.written) == 12
        for relative in (
            "provider_wavefront_api/__init__.py",
            "provider_wavefront_api/v1alpha1/__init__.py",
            "provider_wavefront_api/v1alpha1/alert.py",
            "provider_wavefront_api/v1alpha1/alert_target.py",
            "provider_wavefront_api/v1alpha1/dashboard.py",
            "crds/wavefront.kubeform.com_alerttargets.yaml",
        ):
            assert (apis / relative).is_file(), relative
        assert (controllers / "provider_wavefront_controller" / "dashboard.py").is_file()

    def test_kind_summary(self, wavefront_options: GeneratorOptions, quiet_output) -> None:
        result = generate(wavefront_options)
        alert = result.kinds[0]
        assert alert.resource_name == "wavefront_alert"
        assert alert.plural == "alerts"
        # created_at is Status only; id and alert_type are mirrored.
        assert alert.spec_fields == 11
        assert alert.status_fields == 3

    def test_files_carry_markers(self, wavefront_options: GeneratorOptions, quiet_output) -> None:
        result = generate(wavefront_options)
        crd = result.apis_path / "crds" / "wavefront.kubeform.com_alerts.yaml"
        text = crd.read_text()
        assert text.startswith(BEGIN_MARKER)
        assert yaml.safe_load(text)["kind"] == "CustomResourceDefinition"

    def test_regeneration_is_a_no_op(
        self, wavefront_options: GeneratorOptions, quiet_output
    ) -> None:
        generate(wavefront_options)
        second = generate(wavefront_options)
        assert second.written == []
        assert len(second.unchanged) == 12

    def test_user_code_outside_markers_survives(
        self, wavefront_options: GeneratorOptions, quiet_output
    ) -> None:
        first = generate(wavefront_options)
        module = first.controller_path / "provider_wavefront_controller" / "alert.py"
        module.write_text(module.read_text() + "\n\ndef custom_hook():\n    return 42\n")

        generate(wavefront_options)
        assert "def custom_hook():" in module.read_text()

    def test_parallel_synthesis_matches_serial(
        self, wavefront_options: GeneratorOptions, tmp_path: Path, quiet_output
    ) -> None:
        serial = generate(wavefront_options)
        parallel_options = wavefront_options.model_copy(
            update={"jobs": 4, "output_root": tmp_path / "parallel"}
        )
        parallel = generate(parallel_options)
        assert _tree(serial.apis_path) == _tree(parallel.apis_path)
        assert _tree(serial.controller_path) == _tree(parallel.controller_path)

    def test_dry_run_writes_nothing(
        self, wavefront_options: GeneratorOptions, quiet_output
    ) -> None:
        result = generate(wavefront_options, dry_run=True)
        assert result.dry_run
        assert len(result.written) == 12
        assert not result.apis_path.exists()
        assert not result.controller_path.exists()

    def test_hand_written_file_aborts_before_any_write(
        self, wavefront_options: GeneratorOptions, quiet_output
    ) -> None:
        package = wavefront_options.resolved_controller_path() / "provider_wavefront_controller"
        package.mkdir(parents=True)
        (package / "dashboard.py").write_text("# mine\n")

        with pytest.raises(WriteError):
            generate(wavefront_options)
        assert not wavefront_options.resolved_apis_path().exists()
        assert (package / "dashboard.py").read_text() == "# mine\n"

    def test_preloaded_descriptor(self, native_raw, tmp_path: Path, quiet_output) -> None:
        options = GeneratorOptions(
            provider_name="example", schema_source="unused.yaml", output_root=tmp_path
        )
        result = generate(options, descriptor=native_raw)
        assert [k.kind for k in result.kinds] == ["Bucket"]
        assert result.group == "example.kubeform.com"

    def test_reserved_status_key_is_fatal(self, tmp_path: Path, quiet_output) -> None:
        descriptor = {
            "provider": "acme",
            "resources": {
                "acme_widget": {
                    "attributes": {
                        "name": {"type": "string", "required": True},
                        "conditions": {"type": "string", "computed": True},
                    }
                }
            },
        }
        options = GeneratorOptions(
            provider_name="acme", schema_source="unused.yaml", output_root=tmp_path
        )
        with pytest.raises(BindingError, match="conditions"):
            generate(options, descriptor=descriptor)
        assert not options.resolved_apis_path().exists()

    def test_to_dict_is_json_ready(
        self, wavefront_options: GeneratorOptions, quiet_output
    ) -> None:
        data = generate(wavefront_options, dry_run=True).to_dict()
        assert data["provider"] == "wavefront"
        assert data["kinds"][0]["kind"] == "Alert"
        assert all(isinstance(p, str) for p in data["written"])


# ---------------------------------------------------------------------------
# Generated code
# ---------------------------------------------------------------------------


class TestGeneratedCode:
    def test_packages_import_and_reconcile(
        self,
        wavefront_options: GeneratorOptions,
        quiet_output,
        fake_adapter,
        generated_modules,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        result = generate(wavefront_options)
        monkeypatch.syspath_prepend(str(result.apis_path))
        monkeypatch.syspath_prepend(str(result.controller_path))
        api = importlib.import_module("provider_wavefront_api.v1alpha1")
        controllers = importlib.import_module("provider_wavefront_controller")
        assert api.KINDS == ("Alert", "AlertTarget", "Dashboard")

        fake_adapter.computed = {"created_at": "2026-01-01T00:00:00Z", "alert_type": "CLASSIC"}
        key = ObjectKey("Alert", "monitoring", "cpu-high")

        async def scenario():
            store = InMemoryObjectStore()
            manager = ControllerManager(store, RuntimeConfig(workers=1))
            registered = controllers.setup(manager, fake_adapter)
            assert [c.kind for c in registered] == ["Alert", "AlertTarget", "Dashboard"]
            assert len(manager.scheme) == 3
            store.apply(
                {
                    "apiVersion": "wavefront.kubeform.com/v1alpha1",
                    "kind": "Alert",
                    "metadata": {"name": "cpu-high", "namespace": "monitoring"},
                    "spec": {"name": "cpu-high", "condition": "ts(cpu) > 90", "minutes": 5},
                }
            )
            outcome = await manager.process(key)
            return outcome, await store.get(key)

        outcome, obj = asyncio.run(scenario())
        assert outcome.phase == Phase.READY
        assert fake_adapter.calls[0] == (
            "create",
            "wavefront_alert",
            {"name": "cpu-high", "condition": "ts(cpu) > 90", "minutes": 5},
        )
        assert obj.status["id"] == "wavefront_alert-1"
        assert obj.status["created_at"] == "2026-01-01T00:00:00Z"
        assert obj.status["alert_type"] == "CLASSIC"
        assert obj.status["reconciliation"]["externalId"] == "wavefront_alert-1"
        assert "kubeform.com/finalizer" in obj.metadata.finalizers

    def test_typed_model_round_trip(
        self,
        wavefront_options: GeneratorOptions,
        quiet_output,
        generated_modules,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        result = generate(wavefront_options)
        monkeypatch.syspath_prepend(str(result.apis_path))
        alert = importlib.import_module("provider_wavefront_api.v1alpha1.alert")

        obj = alert.Alert.model_validate(
            {
                "apiVersion": "wavefront.kubeform.com/v1alpha1",
                "kind": "Alert",
                "metadata": {"name": "disk"},
                "spec": {
                    "name": "disk",
                    "condition": "ts(disk) > 80",
                    "minutes": "2.5",
                    "notification": [{"channel": "ops"}],
                },
            }
        )
        assert obj.spec.notification[0].channel == "ops"
        dumped = obj.model_dump(mode="json", by_alias=True, exclude_none=True)
        assert dumped["apiVersion"] == "wavefront.kubeform.com/v1alpha1"
        assert dumped["spec"]["minutes"] == 2.5

        with pytest.raises(ValueError):
            alert.AlertSpec.model_validate(
                {"name": "x", "condition": "y", "minutes": 1, "bogus": 1}
            )
