"""Shared test fixtures for kfgen.

Provides reusable fixtures for loading descriptor fixtures, creating
isolated config environments, managing output state, and running CLI
commands. These fixtures are automatically discovered by pytest and
available to all test modules without explicit imports.
"""

from __future__ import annotations

import asyncio
import itertools
import json
from pathlib import Path
from typing import Any, Optional

import pytest
import yaml
from pydantic import BaseModel, ConfigDict, Field

from kfgen.exceptions import ResourceNotFound
from kfgen.models import GeneratorOptions, RuntimeConfig
from kfgen import output as output_module
from kfgen.output import OutputFormat, OutputManager, set_output
from kfgen.runtime.adapter import CreateResult, ProviderAdapter
from kfgen.runtime.controller import ResourceController
from kfgen.runtime.reconciler import Reconciler
from kfgen.runtime.store import InMemoryObjectStore, ObjectKey
from kfgen.runtime.types import Number
from kfgen.schema.model import ResourceSchema


FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Auto-reset global output state between tests
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_output_between_tests(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test without an installed OutputManager.

    A manager holds the sys.stdout/sys.stderr of the moment it was built;
    after CliRunner or capfd swaps those streams a stale one writes to a
    closed file.
    """
    monkeypatch.setattr(output_module, "_output", None)


# ---------------------------------------------------------------------------
# Descriptor fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def wavefront_path() -> Path:
    return FIXTURES_DIR / "wavefront_schema.json"


@pytest.fixture
def wavefront_raw(wavefront_path: Path) -> dict[str, Any]:
    """Raw Terraform provider schema for a cut-down wavefront provider."""
    with open(wavefront_path) as f:
        return json.load(f)


@pytest.fixture
def native_raw() -> dict[str, Any]:
    """Raw native descriptor with validations, defaults and a nested block."""
    with open(FIXTURES_DIR / "native_schema.yaml") as f:
        return yaml.safe_load(f)


@pytest.fixture
def wavefront_resources(wavefront_raw: dict[str, Any]) -> list[ResourceSchema]:
    from kfgen.schema import load

    return load(wavefront_raw, provider="wavefront")


@pytest.fixture
def native_resources(native_raw: dict[str, Any]) -> list[ResourceSchema]:
    from kfgen.schema import load

    return load(native_raw, provider="example")


@pytest.fixture
def wavefront_options(tmp_path: Path, wavefront_path: Path) -> GeneratorOptions:
    """Generator options writing under ``tmp_path/out``."""
    return GeneratorOptions(
        provider_name="wavefront",
        schema_source=str(wavefront_path),
        output_root=tmp_path / "out",
    )


# ---------------------------------------------------------------------------
# Config isolation fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def isolated_config(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate configuration to a temporary directory.

    Sets XDG_DATA_HOME to a subdirectory of tmp_path so that crash logs
    never touch the real user directory, clears all KFGEN_* environment
    variables and changes the working directory to tmp_path.

    Returns:
        The tmp_path root directory for additional file creation.
    """
    monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))

    # Clear any KFGEN env vars that might leak into tests.
    for var in [
        "KFGEN_PROVIDER",
        "KFGEN_PROVIDER_ORIGINAL",
        "KFGEN_SCHEMA",
        "KFGEN_VERSION",
        "KFGEN_APIS_PATH",
        "KFGEN_CONTROLLER_PATH",
        "KFGEN_OUTPUT_ROOT",
        "KFGEN_NUMBER_TYPE",
        "KFGEN_PLUGIN_URL",
        "KFGEN_PLUGIN_TOKEN",
        "KFGEN_KUBE_SERVER",
        "KFGEN_KUBE_TOKEN",
        "KFGEN_WORKERS",
    ]:
        monkeypatch.delenv(var, raising=False)

    monkeypatch.chdir(tmp_path)
    return tmp_path


# ---------------------------------------------------------------------------
# Output fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def quiet_output() -> OutputManager:
    """Set up a quiet output manager for tests that don't care about output.

    Installs a PLAIN-format, quiet OutputManager as the global output
    for the duration of the test.
    """
    output = OutputManager(format=OutputFormat.PLAIN, quiet=True)
    set_output(output)
    return output


# ---------------------------------------------------------------------------
# CLI runner fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_runner():
    """Typer CLI test runner.

    Returns a CliRunner instance that captures stdout/stderr and
    provides a consistent interface for invoking Typer apps in tests.
    """
    from typer.testing import CliRunner

    return CliRunner()


# ---------------------------------------------------------------------------
# Provider adapter double
# ---------------------------------------------------------------------------


class FakeProviderAdapter(ProviderAdapter):
    """In-memory provider plugin.

    ``fail`` maps an operation name (``create``, ``read``, ``update``,
    ``delete``) to a list of exceptions raised by its next calls.
    ``read_gate``, when set, blocks every read until the event is set.
    """

    def __init__(self, computed: Optional[dict[str, Any]] = None) -> None:
        self.resources: dict[str, dict[str, Any]] = {}
        self.calls: list[tuple[str, str, Any]] = []
        self.fail: dict[str, list[Exception]] = {}
        self.computed = computed or {}
        self.read_gate: Optional[asyncio.Event] = None
        self._ids = itertools.count(1)

    def _maybe_fail(self, op: str) -> None:
        pending = self.fail.get(op)
        if pending:
            raise pending.pop(0)

    async def create(self, resource: str, config: dict[str, Any]) -> CreateResult:
        self.calls.append(("create", resource, config))
        self._maybe_fail("create")
        external_id = f"{resource}-{next(self._ids)}"
        state = {**self.computed, **config, "id": external_id}
        self.resources[external_id] = state
        return CreateResult(id=external_id, state=dict(state))

    async def read(self, resource: str, external_id: str) -> dict[str, Any]:
        self.calls.append(("read", resource, external_id))
        if self.read_gate is not None:
            await self.read_gate.wait()
        self._maybe_fail("read")
        if external_id not in self.resources:
            raise ResourceNotFound(f"{resource}/{external_id} not found")
        return dict(self.resources[external_id])

    async def update(
        self, resource: str, external_id: str, changes: dict[str, Any]
    ) -> dict[str, Any]:
        self.calls.append(("update", resource, changes))
        self._maybe_fail("update")
        if external_id not in self.resources:
            raise ResourceNotFound(f"{resource}/{external_id} not found")
        self.resources[external_id].update(changes)
        return dict(self.resources[external_id])

    async def delete(self, resource: str, external_id: str) -> None:
        self.calls.append(("delete", resource, external_id))
        self._maybe_fail("delete")
        self.resources.pop(external_id, None)

    def ops(self) -> list[str]:
        return [op for op, _, _ in self.calls]


@pytest.fixture
def fake_adapter() -> FakeProviderAdapter:
    return FakeProviderAdapter()


# ---------------------------------------------------------------------------
# Hand-written controller for runtime tests
# ---------------------------------------------------------------------------


class WidgetSpec(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    name: str
    size: Optional[Number] = Field(default=None)
    tags: Optional[list[str]] = Field(default=None)
    class_: Optional[str] = Field(default=None, alias="class")


class WidgetStatus(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: Optional[str] = Field(default=None)
    created_at: Optional[str] = Field(default=None)
    revision: Optional[int] = Field(default=None)


class Widget(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    api_version: str = Field(default="acme.kubeform.com/v1alpha1", alias="apiVersion")
    kind: str = "Widget"
    metadata: dict[str, Any] = Field(default_factory=dict)
    spec: WidgetSpec
    status: Optional[WidgetStatus] = None


class WidgetController(ResourceController):
    api_type = Widget
    spec_type = WidgetSpec
    status_type = WidgetStatus
    resource_name = "acme_widget"
    group = "acme.kubeform.com"
    version = "v1alpha1"
    kind = "Widget"
    plural = "widgets"
    spec_bindings = (("name", "name"), ("size", "size"), ("tags", "tags"), ("class_", "class"))
    status_bindings = (("id", "id"), ("created_at", "created_at"), ("revision", "revision"))


def widget_body(name: str = "w1", namespace: str = "default", **spec: Any) -> dict[str, Any]:
    """A Widget manifest as ``kubectl apply`` would send it."""
    return {
        "apiVersion": "acme.kubeform.com/v1alpha1",
        "kind": "Widget",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {"name": name, **spec},
    }


@pytest.fixture
def widget_key() -> ObjectKey:
    return ObjectKey("Widget", "default", "w1")


@pytest.fixture
def store() -> InMemoryObjectStore:
    return InMemoryObjectStore()


@pytest.fixture
def runtime_config() -> RuntimeConfig:
    return RuntimeConfig(workers=2, drift_interval=60, backoff_base=1, backoff_max=300)


@pytest.fixture
def reconciler(
    store: InMemoryObjectStore,
    fake_adapter: FakeProviderAdapter,
    runtime_config: RuntimeConfig,
) -> Reconciler:
    fake_adapter.computed = {"created_at": "2026-01-01T00:00:00Z", "revision": 1}
    return Reconciler(WidgetController(fake_adapter), store, runtime_config)


@pytest.fixture
def make_widget():
    return widget_body


@pytest.fixture
def widget_controller(fake_adapter: FakeProviderAdapter) -> WidgetController:
    return WidgetController(fake_adapter)
