"""Provider schema model -- load descriptors into resource attribute trees.

This sub-package is the first stage of the kfgen pipeline: turning a raw
provider descriptor (JSON or YAML, local file or remote URL) into a list of
:class:`~kfgen.schema.model.ResourceSchema` trees that the type mapper can
walk.

Typical usage::

    from kfgen.schema import load, load_descriptor

    raw = load_descriptor("schemas/wavefront.json")
    resources = load(raw, provider="wavefront")

Sub-modules:

* :mod:`~kfgen.schema.model` -- the closed tagged-variant attribute tree.
* :mod:`~kfgen.schema.loader` -- I/O layer (URL, file, stdin) plus format
  detection.
* :mod:`~kfgen.schema.parser` -- normalisation of Terraform and native
  descriptors, with a depth bound acting as cycle guard.
"""

from kfgen.schema.loader import load_descriptor
from kfgen.schema.model import (
    AttributeKind,
    AttributeSchema,
    ResourceSchema,
    Validation,
    walk,
)
from kfgen.schema.parser import load

__all__ = [
    "AttributeKind",
    "AttributeSchema",
    "ResourceSchema",
    "Validation",
    "load",
    "load_descriptor",
    "walk",
]
