"""Configuration models shared across kfgen modules.

These Pydantic models describe everything a user can configure, either via
CLI flags, ``KFGEN_*`` environment variables, or the project-local
``kfgen.json`` / ``kfgen.yaml`` file:

* :class:`GeneratorOptions` -- what to generate and where (the generation
  engine's input, mirroring the provider name/version/paths the thin
  command forwards).
* :class:`AdapterConfig` -- how generated controllers reach the provider
  plugin.
* :class:`KubeConfig` -- how the controller runtime reaches the cluster.
* :class:`RuntimeConfig` -- worker count, drift interval and backoff tuning
  for the controller manager.
* :class:`ProjectConfig` -- the on-disk shape of the project config file.

Schema-model and generated-artifact types live in :mod:`kfgen.schema` and
:mod:`kfgen.generator`; this module only holds configuration.
"""

from __future__ import annotations

import enum
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


_VERSION_RE = re.compile(r"^v\d+((alpha|beta)\d+)?$")


class NumberType(str, enum.Enum):
    """Python representation chosen for provider ``number`` attributes."""

    DECIMAL = "decimal"
    INT = "int"
    FLOAT = "float"


class GeneratorOptions(BaseModel):
    """Inputs of one generation run.

    ``apis_path`` and ``controller_path`` are the two overrides exposed by the
    thin command. When they are ``None`` they resolve to
    ``<output_root>/provider-<name>-api`` and
    ``<output_root>/provider-<name>-controller`` (see
    :meth:`resolved_apis_path`).

    Example::

        GeneratorOptions(
            provider_name="wavefront",
            schema_source="schemas/wavefront.json",
            version="v1alpha1",
        )
    """

    provider_name: str = Field(description="Short provider name, e.g. 'wavefront'")
    provider_name_original: Optional[str] = Field(
        default=None,
        description="Name used in the descriptor when it differs (e.g. registry suffix)",
    )
    schema_source: str = Field(description="File path, URL or '-' for the provider descriptor")
    version: str = Field(default="v1alpha1", description="API version of generated kinds")
    group_suffix: str = Field(default="kubeform.com")
    apis_path: Optional[Path] = None
    controller_path: Optional[Path] = None
    output_root: Path = Field(default_factory=Path.cwd)
    number_type: NumberType = NumberType.DECIMAL
    max_depth: int = Field(default=16, ge=1, description="Nesting bound (cycle guard)")
    jobs: int = Field(default=1, ge=1, description="Parallel per-kind synthesis workers")

    @field_validator("provider_name")
    @classmethod
    def _check_provider_name(cls, value: str) -> str:
        if not re.fullmatch(r"[a-z][a-z0-9_]*", value):
            raise ValueError(
                f"provider name must be lowercase alphanumeric/underscore, got {value!r}"
            )
        return value

    @field_validator("version")
    @classmethod
    def _check_version(cls, value: str) -> str:
        if not _VERSION_RE.match(value):
            raise ValueError(f"version must look like v1, v1alpha1, v2beta3; got {value!r}")
        return value

    @property
    def descriptor_provider(self) -> str:
        """Provider name as it appears in the descriptor."""
        return self.provider_name_original or self.provider_name

    @property
    def group(self) -> str:
        """API group of the generated kinds, e.g. ``wavefront.kubeform.com``."""
        return f"{self.provider_name.replace('_', '')}.{self.group_suffix}"

    @property
    def api_package(self) -> str:
        """Import name of the generated API package."""
        return f"provider_{self.provider_name}_api"

    @property
    def controller_package(self) -> str:
        """Import name of the generated controller package."""
        return f"provider_{self.provider_name}_controller"

    def resolved_apis_path(self) -> Path:
        """Return ``apis_path`` or the convention-based default."""
        if self.apis_path is not None:
            return Path(self.apis_path)
        return Path(self.output_root) / f"provider-{self.provider_name}-api"

    def resolved_controller_path(self) -> Path:
        """Return ``controller_path`` or the convention-based default."""
        if self.controller_path is not None:
            return Path(self.controller_path)
        return Path(self.output_root) / f"provider-{self.provider_name}-controller"


class AdapterConfig(BaseModel):
    """Connection settings for the HTTP provider plugin adapter."""

    base_url: str = Field(default="http://127.0.0.1:8700", description="Plugin endpoint")
    timeout: float = Field(default=30.0, gt=0, description="Request timeout in seconds")
    max_connections: int = Field(default=20, ge=1, description="Connection pool size")
    token: Optional[str] = Field(default=None, description="Bearer token for the plugin")
    verify_ssl: bool = True


class KubeConfig(BaseModel):
    """How the controller runtime reaches the Kubernetes API server.

    An explicit ``server`` (with ``token`` and ``ca_file``) is used as is.
    Otherwise ``in_cluster`` loads the pod's service account, and without it
    the kubeconfig file is read (``kubeconfig``, else ``$KUBECONFIG`` or
    ``~/.kube/config``) using ``context`` or the file's current context.
    """

    server: Optional[str] = None
    token: Optional[str] = None
    ca_file: Optional[str] = None
    verify_ssl: bool = True
    in_cluster: bool = False
    kubeconfig: Optional[str] = None
    context: Optional[str] = None
    namespace: Optional[str] = Field(
        default=None, description="Watch a single namespace instead of the whole cluster"
    )


class RuntimeConfig(BaseModel):
    """Tuning knobs of the controller manager."""

    workers: int = Field(default=4, ge=1, description="Concurrent reconcile workers")
    drift_interval: float = Field(
        default=300.0, gt=0, description="Seconds between drift checks of Ready objects"
    )
    backoff_base: float = Field(default=1.0, gt=0, description="First retry delay in seconds")
    backoff_max: float = Field(default=300.0, gt=0, description="Retry delay ceiling in seconds")
    finalizer: str = "kubeform.com/finalizer"
    adapter: AdapterConfig = Field(default_factory=AdapterConfig)
    kube: KubeConfig = Field(default_factory=KubeConfig)


class ProjectConfig(BaseModel):
    """On-disk shape of ``kfgen.json`` / ``kfgen.yaml``.

    Every generator field is optional here; missing values are filled from
    CLI flags and environment variables by :func:`~kfgen.config.resolve_options`.
    Unknown keys are kept in ``model_extra`` for forward compatibility.
    """

    model_config = ConfigDict(extra="allow")

    provider_name: Optional[str] = None
    provider_name_original: Optional[str] = None
    schema_source: Optional[str] = None
    version: Optional[str] = None
    group_suffix: Optional[str] = None
    apis_path: Optional[str] = None
    controller_path: Optional[str] = None
    output_root: Optional[str] = None
    number_type: Optional[NumberType] = None
    max_depth: Optional[int] = None
    jobs: Optional[int] = None
    runtime: RuntimeConfig = Field(default_factory=RuntimeConfig)
