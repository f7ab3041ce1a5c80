"""Inspect commands -- examine a provider descriptor before generating.

Provides the ``kfgen inspect`` sub-command group with read-only commands:
``resources`` lists what the descriptor declares, ``kinds`` shows the API
kinds generation would produce from it. Neither writes anything.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from kfgen.output import get_output, info


inspect_app = typer.Typer(no_args_is_help=True)


def _options(
    provider: Optional[str], schema: Optional[str], config_file: Optional[Path]
):  # noqa: ANN202
    from kfgen.config import load_project_config, resolve_options

    return resolve_options(
        cli={"provider_name": provider, "schema_source": schema},
        project=load_project_config(config_file),
    )


def _resources(
    provider: Optional[str], schema: Optional[str], config_file: Optional[Path]
):  # noqa: ANN202
    from kfgen.schema import load, load_descriptor

    options = _options(provider, schema, config_file)
    raw = load_descriptor(options.schema_source)
    return options, load(raw, provider=options.descriptor_provider, max_depth=options.max_depth)


@inspect_app.command("resources")
def inspect_resources(
    provider: Optional[str] = typer.Option(None, "--provider", help="Short provider name."),
    schema: Optional[str] = typer.Option(None, "--schema", "-s", help="Descriptor source."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Project config file."),
) -> None:
    """List the resources declared by the descriptor.

    Example::

        kfgen inspect resources --provider wavefront --schema wavefront.json
    """
    from kfgen.schema.model import depth

    _, resources = _resources(provider, schema, config_file)
    rows: list[list[str]] = []
    for resource in resources:
        rows.append([
            resource.name,
            str(resource.version),
            str(len(resource.attributes)),
            str(max((depth(a) for a in resource.attributes.values()), default=0)),
            "Yes" if resource.deprecated else "",
        ])
    get_output().print_table(
        ["Resource", "Version", "Attributes", "Depth", "Deprecated"],
        rows,
        title=f"Resources ({len(rows)})",
    )


@inspect_app.command("kinds")
def inspect_kinds(
    provider: Optional[str] = typer.Option(None, "--provider", help="Short provider name."),
    schema: Optional[str] = typer.Option(None, "--schema", "-s", help="Descriptor source."),
    config_file: Optional[Path] = typer.Option(None, "--config", help="Project config file."),
) -> None:
    """Show the kinds generation would produce, with their field partition.

    Example::

        kfgen inspect kinds --provider wavefront --schema wavefront.json
    """
    from kfgen.generator.api import synthesize_apis

    options, resources = _resources(provider, schema, config_file)
    apis, _ = synthesize_apis(
        resources, options.provider_name, options.group, options.version, options.number_type
    )
    if not apis:
        info("No kinds.")
        return

    rows: list[list[str]] = []
    for api in sorted(apis, key=lambda a: a.kind):
        rows.append([
            api.kind,
            api.resource_name,
            api.plural,
            ", ".join(f.serialization_key for f in api.spec_fields) or "-",
            ", ".join(f.serialization_key for f in api.all_status_fields()) or "-",
            str(len(api.nested_types)),
        ])
    get_output().print_table(
        ["Kind", "Resource", "Plural", "Spec", "Status", "Nested"],
        rows,
        title=f"{options.group}/{options.version} ({len(rows)} kinds)",
    )
