"""Configuration resolution with XDG paths and precedence rules.

This module handles all configuration for kfgen:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.kfgen/`` on macOS and Windows. Only the data directory is used
  (crash logs); see :func:`get_data_dir`.
* **Project config** -- an optional ``kfgen.json`` or ``kfgen.yaml`` in the
  working directory, deserialised into :class:`~kfgen.models.ProjectConfig`.
* **Precedence resolution** -- :func:`resolve_options` merges CLI flags,
  ``KFGEN_*`` environment variables, the project config and model defaults
  into the effective :class:`~kfgen.models.GeneratorOptions`;
  :func:`resolve_runtime_config` does the same for the controller runtime.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from kfgen.exceptions import ConfigError, InvalidUsageError
from kfgen.models import GeneratorOptions, ProjectConfig, RuntimeConfig

_APP_NAME = "kfgen"
_PROJECT_CONFIG_FILENAMES = ("kfgen.json", "kfgen.yaml", "kfgen.yml")

# Environment variable -> GeneratorOptions field.
_ENV_OPTIONS = {
    "KFGEN_PROVIDER": "provider_name",
    "KFGEN_PROVIDER_ORIGINAL": "provider_name_original",
    "KFGEN_SCHEMA": "schema_source",
    "KFGEN_VERSION": "version",
    "KFGEN_APIS_PATH": "apis_path",
    "KFGEN_CONTROLLER_PATH": "controller_path",
    "KFGEN_OUTPUT_ROOT": "output_root",
    "KFGEN_NUMBER_TYPE": "number_type",
}


# --- XDG path resolution ---


def _is_xdg_platform() -> bool:
    """Return True if the platform supports XDG Base Directory spec (Linux/FreeBSD)."""
    return platform.system() == "Linux" or platform.system().endswith("BSD")


def get_data_dir() -> Path:
    """Return the data directory (crash logs), creating it if necessary.

    On Linux/BSD: ``$XDG_DATA_HOME/kfgen/`` (default ``~/.local/share/kfgen/``).
    On macOS/Windows: ``~/.kfgen/``.
    """
    if _is_xdg_platform():
        env_value = os.environ.get("XDG_DATA_HOME", "")
        base = Path(env_value) if env_value else Path.home() / ".local" / "share"
        path = base / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}"
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Project-local config ---


def find_project_config(directory: Optional[Path] = None) -> Optional[Path]:
    """Return the first project config file found in *directory* (default: cwd)."""
    base = directory or Path.cwd()
    for name in _PROJECT_CONFIG_FILENAMES:
        candidate = base / name
        if candidate.is_file():
            return candidate
    return None


def load_project_config(path: Optional[Path] = None) -> ProjectConfig:
    """Load the project-local configuration.

    Args:
        path: Explicit config file. When ``None`` the working directory is
            searched for ``kfgen.json``, ``kfgen.yaml`` and ``kfgen.yml``.

    Returns:
        The parsed :class:`~kfgen.models.ProjectConfig`, or a default
        instance when no file exists.

    Raises:
        ConfigError: If the file cannot be parsed or fails validation.
    """
    if path is None:
        path = find_project_config()
        if path is None:
            return ProjectConfig()
    elif not path.is_file():
        raise ConfigError(f"Project config not found: {path}")

    try:
        text = path.read_text(encoding="utf-8")
        if path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(text) or {}
        else:
            data = json.loads(text)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Project config at {path} must be an object")
    try:
        return ProjectConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid project config at {path}: {exc}") from exc


# --- Precedence resolution ---


def resolve_options(
    cli: Optional[dict[str, Any]] = None,
    project: Optional[ProjectConfig] = None,
) -> GeneratorOptions:
    """Resolve generator options with the full precedence chain.

    Precedence (high to low):
        1. CLI flags (non-``None`` entries of *cli*)
        2. Environment variables (``KFGEN_PROVIDER``, ``KFGEN_SCHEMA``, ...)
        3. Project config (``./kfgen.json`` or ``./kfgen.yaml``)
        4. Model defaults

    Args:
        cli: Flag values keyed by :class:`~kfgen.models.GeneratorOptions`
            field name. ``None`` values mean "not given".
        project: Pre-loaded project config; loaded from cwd when ``None``.

    Returns:
        The effective :class:`~kfgen.models.GeneratorOptions`.

    Raises:
        InvalidUsageError: If a required option (provider name, schema
            source) is missing after merging, or a value is invalid.
    """
    if project is None:
        project = load_project_config()

    merged: dict[str, Any] = {}
    # 3. Project config
    for key, value in project.model_dump(exclude={"runtime"}, exclude_none=True).items():
        if key in GeneratorOptions.model_fields:
            merged[key] = value
    # 2. Environment variables
    for env_var, field_name in _ENV_OPTIONS.items():
        value = os.environ.get(env_var)
        if value:
            merged[field_name] = value
    # 1. CLI flags
    for key, value in (cli or {}).items():
        if value is not None:
            merged[key] = value

    missing = [name for name in ("provider_name", "schema_source") if not merged.get(name)]
    if missing:
        flags = ", ".join("--" + name.split("_")[0] for name in missing)
        raise InvalidUsageError(
            f"Missing required option(s): {flags} (or set them in kfgen.json)"
        )

    try:
        return GeneratorOptions.model_validate(merged)
    except ValidationError as exc:
        raise InvalidUsageError(f"Invalid generator options: {exc}") from exc


def resolve_runtime_config(
    cli: Optional[dict[str, Any]] = None,
    project: Optional[ProjectConfig] = None,
) -> RuntimeConfig:
    """Resolve the controller runtime configuration.

    Reads ``KFGEN_PLUGIN_URL``, ``KFGEN_PLUGIN_TOKEN``, ``KFGEN_KUBE_SERVER``,
    ``KFGEN_KUBE_TOKEN``, ``KFGEN_KUBE_CONTEXT`` and ``KFGEN_WORKERS`` from the
    environment; CLI values (keyed by dotted field path, e.g.
    ``"adapter.base_url"``) take precedence.
    """
    if project is None:
        project = load_project_config()
    data = project.runtime.model_dump()

    env_map = {
        "KFGEN_PLUGIN_URL": "adapter.base_url",
        "KFGEN_PLUGIN_TOKEN": "adapter.token",
        "KFGEN_KUBE_SERVER": "kube.server",
        "KFGEN_KUBE_TOKEN": "kube.token",
        "KFGEN_KUBE_CONTEXT": "kube.context",
        "KFGEN_WORKERS": "workers",
    }
    overrides: dict[str, Any] = {}
    for env_var, dotted in env_map.items():
        value = os.environ.get(env_var)
        if value:
            overrides[dotted] = value
    for dotted, value in (cli or {}).items():
        if value is not None:
            overrides[dotted] = value

    for dotted, value in overrides.items():
        target = data
        *parents, leaf = dotted.split(".")
        for parent in parents:
            target = target.setdefault(parent, {})
        target[leaf] = value

    try:
        return RuntimeConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid runtime configuration: {exc}") from exc
