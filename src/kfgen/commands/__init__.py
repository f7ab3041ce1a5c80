"""Built-in CLI sub-commands for kfgen.

This package groups the Typer sub-command modules that form the CLI's
top-level command tree:

* :mod:`~kfgen.commands.generate` -- generate API types, CRDs and
  controllers from a provider descriptor.
* :mod:`~kfgen.commands.inspect` -- list the resources of a descriptor and
  the kinds they would become.
* :mod:`~kfgen.commands.run` -- run a generated controller package against
  a cluster (or an in-memory store).

Each module either exports a :class:`typer.Typer` sub-application (for
multi-command groups like ``inspect``) or a plain callback function
registered directly on the root app (for single commands like
``generate``).
"""
