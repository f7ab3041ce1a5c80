"""Numeric process exit codes following `clig.dev <https://clig.dev/>`_ conventions.

Each constant maps to a specific error category and is referenced by the
corresponding :class:`~kfgen.exceptions.KfgenError` subclass. CI jobs and
build scripts that regenerate provider APIs can inspect the exit code to
tell a broken schema from a filesystem problem without parsing stderr.

Example::

    $ kfgen generate --schema wavefront.json
    $ echo $?
    7   # EXIT_SCHEMA_LOAD_ERROR -- the provider descriptor was malformed
"""

EXIT_SUCCESS = 0
"""The command completed successfully."""

EXIT_GENERIC_FAILURE = 1
"""An unclassified error occurred."""

EXIT_INVALID_USAGE = 2
"""The command was invoked with invalid arguments or missing required options."""

EXIT_PLUGIN_PERMANENT = 3
"""The provider plugin rejected a request (validation, authorisation)."""

EXIT_PLUGIN_TRANSIENT = 6
"""The provider plugin could not be reached (timeout, rate limit, 5xx)."""

EXIT_SCHEMA_LOAD_ERROR = 7
"""The provider schema descriptor could not be loaded or validated."""

EXIT_UNSUPPORTED_SCHEMA = 8
"""The provider schema uses a construct the type mapper cannot translate."""

EXIT_BINDING_ERROR = 9
"""API and controller synthesis disagree (internal generator bug)."""

EXIT_WRITE_ERROR = 11
"""Generated artifacts could not be written to disk."""
