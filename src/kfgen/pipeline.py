"""End-to-end generation: descriptor in, API and controller packages out.

Stages, in order:

1. **Load** -- read the descriptor (file, URL or stdin) and normalise it
   into :class:`~kfgen.schema.model.ResourceSchema` trees.
2. **Synthesize** -- assign kinds, map attributes, partition Spec/Status
   and bind controllers. Kinds are independent, so with ``jobs > 1`` they
   are processed by a thread pool.
3. **Render** -- every kind's artifact set, then the shared registry set,
   which needs the complete list of kinds.
4. **Write** -- each kind set atomically, then the shared set last.

A fatal error in stages 1-3, or an existing file the writer would refuse,
aborts the run before the first file is written.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from kfgen.exceptions import BindingError
from kfgen.generator.api import GeneratedAPI, assign_kinds, build_registry, synthesize_api
from kfgen.generator.controller import GeneratedController, synthesize_controller
from kfgen.generator.render import ArtifactSet, Renderer
from kfgen.models import GeneratorOptions
from kfgen.output import get_output
from kfgen.schema import ResourceSchema, load, load_descriptor
from kfgen.writer import WriteReport, plan_set, write


class GeneratedKind(BaseModel):
    kind: str
    plural: str
    resource_name: str
    spec_fields: int
    status_fields: int


class GenerationResult(BaseModel):
    """Summary of one generation run, printed by ``kfgen generate``."""

    provider: str
    group: str
    version: str
    apis_path: Path
    controller_path: Path
    kinds: list[GeneratedKind] = Field(default_factory=list)
    written: list[Path] = Field(default_factory=list)
    unchanged: list[Path] = Field(default_factory=list)
    dry_run: bool = False

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


def generate(
    options: GeneratorOptions,
    dry_run: bool = False,
    descriptor: Optional[dict[str, Any]] = None,
) -> GenerationResult:
    """Run the whole pipeline for *options*.

    Args:
        options: Resolved generator options.
        dry_run: Render and report which files would change, but write
            nothing.
        descriptor: Already-loaded descriptor; when ``None`` it is read from
            ``options.schema_source``.

    Returns:
        A :class:`GenerationResult`. With *dry_run*, ``written`` lists the
        files that would be written.

    Raises:
        KfgenError: Any subclass raised by a stage; nothing is written.
    """
    out = get_output()
    if descriptor is None:
        descriptor = load_descriptor(options.schema_source)
    resources = load(descriptor, provider=options.descriptor_provider, max_depth=options.max_depth)
    out.info(f"Loaded {len(resources)} resource(s) for provider '{options.provider_name}'")

    renderer = Renderer(options)
    kinds = assign_kinds(resources, options.provider_name)

    def synthesize(pair: tuple[ResourceSchema, str]) -> tuple[GeneratedAPI, GeneratedController]:
        resource, kind = pair
        api = synthesize_api(
            resource, kind, options.group, options.version, options.number_type
        )
        out.debug(f"{resource.name} -> {api.api_version} {kind}")
        return api, synthesize_controller(api)

    if options.jobs > 1 and len(kinds) > 1:
        with ThreadPoolExecutor(max_workers=options.jobs) as pool:
            synthesized = list(pool.map(synthesize, kinds))
    else:
        synthesized = [synthesize(pair) for pair in kinds]

    apis = [api for api, _ in synthesized]
    _check_unique(apis)
    controllers = [controller for _, controller in synthesized]
    registry = build_registry(apis, options.group, options.version)

    artifact_sets: list[ArtifactSet] = [
        renderer.render_kind(api, controller) for api, controller in synthesized
    ]
    artifact_sets.append(renderer.render_shared(registry, controllers))

    result = GenerationResult(
        provider=options.provider_name,
        group=options.group,
        version=options.version,
        apis_path=options.resolved_apis_path(),
        controller_path=options.resolved_controller_path(),
        kinds=[
            GeneratedKind(
                kind=api.kind,
                plural=api.plural,
                resource_name=api.resource_name,
                spec_fields=len(api.spec_fields),
                status_fields=len(api.all_status_fields()),
            )
            for api in sorted(apis, key=lambda a: a.kind)
        ],
        dry_run=dry_run,
    )

    # Plan every set up front so a refused file aborts before any write.
    plans = [plan_set(artifact_set) for artifact_set in artifact_sets]
    if dry_run:
        for planned in (p for plan in plans for p in plan):
            target = result.written if planned.changed else result.unchanged
            target.append(planned.path)
        out.info(f"Dry run: {len(result.written)} file(s) would be written")
        return result

    report: WriteReport = write(artifact_sets)
    result.written = report.written
    result.unchanged = report.unchanged
    out.success(
        f"Generated {len(apis)} kind(s) in {options.group}/{options.version}: "
        f"{len(report.written)} file(s) written, {len(report.unchanged)} unchanged"
    )
    return result


def _check_unique(apis: list[GeneratedAPI]) -> None:
    """Two kinds must not share a module file or a CRD name."""
    modules: dict[str, str] = {}
    plurals: dict[str, str] = {}
    for api in apis:
        for seen, value in ((modules, api.module_name), (plurals, api.plural)):
            if value in seen:
                raise BindingError(
                    f"Kinds {seen[value]!r} and {api.kind!r} both map to {value!r}"
                )
            seen[value] = api.kind
