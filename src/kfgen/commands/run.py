"""Run command -- host generated controllers in a controller manager.

``kfgen run provider_wavefront_controller`` imports the generated
controller package, builds the object store (the Kubernetes API server, or
an in-memory store for local runs) and the HTTP provider adapter, calls the
package's ``setup(manager, adapter)`` and reconciles until SIGINT/SIGTERM.
"""

from __future__ import annotations

import asyncio
import importlib
import signal
import sys
from pathlib import Path
from types import ModuleType
from typing import Optional

import typer
import yaml

from kfgen.exceptions import ConfigError, InvalidUsageError
from kfgen.models import RuntimeConfig
from kfgen.output import debug, info


def run_command(
    package: str = typer.Argument(
        ..., help="Generated controller package, e.g. provider_wavefront_controller."
    ),
    path: list[Path] = typer.Option(
        [], "--path", help="Directory to put on sys.path before importing (repeatable)."
    ),
    plugin_url: Optional[str] = typer.Option(
        None, "--plugin-url", help="Base URL of the provider plugin."
    ),
    workers: Optional[int] = typer.Option(
        None, "--workers", "-w", min=1, help="Concurrent reconcile workers."
    ),
    drift_interval: Optional[float] = typer.Option(
        None, "--drift-interval", help="Seconds between drift checks of Ready objects."
    ),
    kube_server: Optional[str] = typer.Option(
        None, "--kube-server", help="Kubernetes API server URL."
    ),
    in_cluster: bool = typer.Option(
        False, "--in-cluster", help="Use the pod's service-account credentials."
    ),
    kubeconfig: Optional[Path] = typer.Option(
        None, "--kubeconfig", help="Kubeconfig file (default $KUBECONFIG or ~/.kube/config)."
    ),
    context: Optional[str] = typer.Option(
        None, "--context", help="Kubeconfig context to use."
    ),
    namespace: Optional[str] = typer.Option(
        None, "--namespace", help="Watch one namespace instead of the whole cluster."
    ),
    in_memory: bool = typer.Option(
        False, "--in-memory", help="Use a process-local object store instead of a cluster."
    ),
    manifests: list[Path] = typer.Option(
        [], "--apply", help="YAML manifest to load into the in-memory store (repeatable)."
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", help="Project config file (default ./kfgen.json or ./kfgen.yaml)."
    ),
) -> None:
    """Run generated controllers until interrupted.

    Example::

        kfgen run provider_wavefront_controller \\
            --path ./provider-wavefront-api --path ./provider-wavefront-controller \\
            --plugin-url http://127.0.0.1:8700 --in-cluster
    """
    from kfgen.config import load_project_config, resolve_runtime_config

    if manifests and not in_memory:
        raise InvalidUsageError("--apply requires --in-memory")

    runtime = resolve_runtime_config(
        cli={
            "adapter.base_url": plugin_url,
            "workers": workers,
            "drift_interval": drift_interval,
            "kube.server": kube_server,
            "kube.in_cluster": True if in_cluster else None,
            "kube.kubeconfig": str(kubeconfig) if kubeconfig else None,
            "kube.context": context,
            "kube.namespace": namespace,
        },
        project=load_project_config(config_file),
    )
    module = import_controllers(package, path)
    bodies = [body for manifest in manifests for body in _load_manifests(manifest)]
    asyncio.run(serve(module, runtime, in_memory=in_memory, manifests=bodies))


def import_controllers(package: str, paths: list[Path]) -> ModuleType:
    """Import a generated controller package, extending ``sys.path`` first.

    Raises:
        InvalidUsageError: If the package cannot be imported or has no
            ``setup`` function.
    """
    for entry in reversed(paths):
        resolved = str(entry.resolve())
        if resolved not in sys.path:
            sys.path.insert(0, resolved)
    try:
        module = importlib.import_module(package)
    except ImportError as exc:
        raise InvalidUsageError(f"Cannot import controller package {package!r}: {exc}") from exc
    if not callable(getattr(module, "setup", None)):
        raise InvalidUsageError(f"{package!r} is not a generated controller package (no setup)")
    return module


async def serve(
    module: ModuleType,
    runtime: RuntimeConfig,
    in_memory: bool = False,
    manifests: Optional[list[dict]] = None,
) -> None:
    """Build store, adapter and manager, then run until a stop signal."""
    from kfgen.runtime import (
        ControllerManager,
        HttpProviderAdapter,
        InMemoryObjectStore,
        KubernetesObjectStore,
        Scheme,
    )
    from kfgen.runtime.store import ObjectStore

    scheme = Scheme()
    store: ObjectStore
    if in_memory:
        memory = InMemoryObjectStore()
        for body in manifests or []:
            memory.apply(body)
        store = memory
    else:
        store = KubernetesObjectStore(scheme, runtime.kube)
    adapter = HttpProviderAdapter(runtime.adapter)
    manager = ControllerManager(store, runtime, scheme)

    try:
        controllers = module.setup(manager, adapter)
        debug(f"Loaded {len(controllers)} controller(s) from {module.__name__}")
        loop = asyncio.get_running_loop()
        for signum in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(signum, manager.request_stop)
        await manager.run()
        info("Controller manager stopped")
    finally:
        await adapter.aclose()
        await store.close()


def _load_manifests(path: Path) -> list[dict]:
    try:
        documents = list(yaml.safe_load_all(path.read_text(encoding="utf-8")))
    except (OSError, yaml.YAMLError) as exc:
        raise ConfigError(f"Cannot load manifest {path}: {exc}") from exc
    bodies = [doc for doc in documents if doc]
    for body in bodies:
        if not isinstance(body, dict) or "kind" not in body:
            raise ConfigError(f"{path}: every document must be an object with a 'kind'")
    return bodies
