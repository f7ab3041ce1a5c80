"""kfgen -- generate Kubernetes API types and controllers from provider schemas.

This package reads a provider's resource schema (``terraform providers
schema -json`` output or a native descriptor) and generates, per resource,
a typed Kubernetes-style API kind (Spec/Status pydantic models plus a CRD)
and a controller that reconciles objects of that kind by driving the
provider's CRUD plugin.

Typical workflow::

    kfgen generate --provider wavefront --schema wavefront.json
    kfgen run provider_wavefront_controller --path ... --in-cluster

Modules:
    app: Typer application and CLI entry point.
    pipeline: The end-to-end generation run.
    schema: Provider descriptor loading and the attribute tree model.
    generator: Type mapping, API/controller synthesis and rendering.
    writer: Marker-preserving, atomic emission of generated files.
    runtime: The reconciliation engine generated controllers run on.
    models: Pydantic configuration models.
    config: XDG-aware configuration and precedence resolution.
    exceptions: Exception hierarchy with exit-code mapping.
    exit_codes: Numeric exit codes following clig.dev conventions.
    output: stdout/stderr formatting system with Rich support.
"""

__version__ = "0.1.0"
