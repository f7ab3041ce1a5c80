"""Generate command -- the thin front end of the generation pipeline.

``kfgen generate`` resolves :class:`~kfgen.models.GeneratorOptions` from
flags, ``KFGEN_*`` environment variables and the project config, runs
:func:`~kfgen.pipeline.generate` and prints a report of the generated kinds.
Every fatal error propagates as a :class:`~kfgen.exceptions.KfgenError`, so
the process exits non-zero with the error's exit code.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

import typer

from kfgen.models import NumberType
from kfgen.output import OutputFormat, get_output, suggest


def generate_command(
    provider: Optional[str] = typer.Option(
        None, "--provider", help="Short provider name, e.g. 'wavefront'."
    ),
    provider_original: Optional[str] = typer.Option(
        None,
        "--provider-original",
        help="Provider name used in the descriptor, when it differs.",
    ),
    schema: Optional[str] = typer.Option(
        None, "--schema", "-s", help="Descriptor file, URL, or '-' for stdin."
    ),
    version: Optional[str] = typer.Option(
        None, "--version", help="API version of the generated kinds (default v1alpha1)."
    ),
    apis_path: Optional[Path] = typer.Option(
        None, "--apis-path", help="Output directory of the API package and CRDs."
    ),
    controller_path: Optional[Path] = typer.Option(
        None, "--controller-path", help="Output directory of the controller package."
    ),
    output_root: Optional[Path] = typer.Option(
        None, "--output-root", help="Base directory for the default output paths."
    ),
    number_type: Optional[NumberType] = typer.Option(
        None, "--number-type", help="Python type of provider numbers."
    ),
    max_depth: Optional[int] = typer.Option(
        None, "--max-depth", min=1, help="Maximum attribute nesting depth."
    ),
    jobs: Optional[int] = typer.Option(
        None, "--jobs", "-j", min=1, help="Kinds synthesized in parallel."
    ),
    config_file: Optional[Path] = typer.Option(
        None, "--config", help="Project config file (default ./kfgen.json or ./kfgen.yaml)."
    ),
    dry_run: bool = typer.Option(
        False, "--dry-run", "-n", help="Report the files that would change; write nothing."
    ),
) -> None:
    """Generate typed API packages, CRDs and controllers for a provider.

    Example::

        kfgen generate --provider wavefront --schema wavefront.json
        kfgen generate --provider wavefront --schema wavefront.json \\
            --apis-path ./apis --controller-path ./controllers --dry-run
    """
    from kfgen.config import load_project_config, resolve_options
    from kfgen.pipeline import generate

    options = resolve_options(
        cli={
            "provider_name": provider,
            "provider_name_original": provider_original,
            "schema_source": schema,
            "version": version,
            "apis_path": apis_path,
            "controller_path": controller_path,
            "output_root": output_root,
            "number_type": number_type,
            "max_depth": max_depth,
            "jobs": jobs,
        },
        project=load_project_config(config_file),
    )
    result = generate(options, dry_run=dry_run)

    output = get_output()
    if output.format == OutputFormat.JSON:
        output.print_json(result.to_dict())
        return

    rows = [
        [kind.kind, kind.resource_name, kind.plural, str(kind.spec_fields), str(kind.status_fields)]
        for kind in result.kinds
    ]
    output.print_table(
        ["Kind", "Resource", "Plural", "Spec", "Status"],
        rows,
        title=f"{result.group}/{result.version} ({len(rows)} kinds)",
    )
    if not dry_run:
        suggest(
            f"kfgen run {options.controller_package} "
            f"--path {result.apis_path} --path {result.controller_path}"
        )
