"""Generator -- turn resource schemas into API types and controllers.

This sub-package is the middle of the kfgen pipeline: taking the
:class:`~kfgen.schema.model.ResourceSchema` trees produced by the schema
loader and producing rendered, not yet written, artifacts.

Typical usage::

    from kfgen.generator import Renderer, synthesize_apis, synthesize_controller

    apis, registry = synthesize_apis(resources, "wavefront",
                                     "wavefront.kubeform.com", "v1alpha1")
    renderer = Renderer(options)
    sets = [renderer.render_kind(api, synthesize_controller(api)) for api in apis]

Sub-modules:

* :mod:`~kfgen.generator.naming` -- identifier, kind and plural rules.
* :mod:`~kfgen.generator.type_mapper` -- attribute schema to typed field.
* :mod:`~kfgen.generator.api` -- Spec/Status partition and the kind registry.
* :mod:`~kfgen.generator.controller` -- field bindings for generated
  controllers.
* :mod:`~kfgen.generator.render` -- Jinja2 templates and CRD manifests.
"""

from kfgen.generator.api import GeneratedAPI, Registry, synthesize_api, synthesize_apis
from kfgen.generator.controller import GeneratedController, synthesize_controller
from kfgen.generator.render import Artifact, ArtifactSet, Renderer
from kfgen.generator.type_mapper import NestedType, TypeMapper, TypeMapping

__all__ = [
    "Artifact",
    "ArtifactSet",
    "GeneratedAPI",
    "GeneratedController",
    "NestedType",
    "Registry",
    "Renderer",
    "TypeMapper",
    "TypeMapping",
    "synthesize_api",
    "synthesize_apis",
    "synthesize_controller",
]
