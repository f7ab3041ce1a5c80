"""Exception hierarchy for kfgen.

All exceptions inherit from :class:`KfgenError`, which carries an
``exit_code`` attribute mapped to a constant from :mod:`kfgen.exit_codes`.
The top-level error handler in :func:`kfgen.app.main` catches
``KfgenError`` and exits with the appropriate code, while unexpected
exceptions produce a crash log and exit with :data:`EXIT_GENERIC_FAILURE`.

Subclass hierarchy::

    KfgenError (exit 1)
    +-- InvalidUsageError            (exit 2)
    +-- ConfigError                  (exit 1)
    +-- SchemaLoadError              (exit 7)
    +-- UnsupportedSchemaKindError   (exit 8)
    |   +-- NumericPrecisionError    (exit 8)
    +-- BindingError                 (exit 9)
    +-- WriteError                   (exit 11)
    +-- PluginError                  (exit 1)
    |   +-- TransientPluginError     (exit 6)
    |   +-- PermanentPluginError     (exit 3)
    |   +-- ResourceNotFound         (exit 1)
    +-- StoreError                   (exit 1)
    |   +-- ConflictError            (exit 1)
    +-- InvalidTransitionError       (exit 1)
    +-- ReconcileCancelled           (exit 1)

Generation-time errors are all fatal to the run. Runtime plugin errors are
split into transient ones (retried with backoff) and permanent ones
(surfaced as a blocking condition on the object's status).
"""

from __future__ import annotations

from typing import Optional

from kfgen.exit_codes import (
    EXIT_BINDING_ERROR,
    EXIT_GENERIC_FAILURE,
    EXIT_INVALID_USAGE,
    EXIT_PLUGIN_PERMANENT,
    EXIT_PLUGIN_TRANSIENT,
    EXIT_SCHEMA_LOAD_ERROR,
    EXIT_UNSUPPORTED_SCHEMA,
    EXIT_WRITE_ERROR,
)


class KfgenError(Exception):
    """Base exception for all kfgen errors.

    Every subclass sets a class-level ``exit_code`` corresponding to one of
    the constants in :mod:`kfgen.exit_codes`. The entry point catches
    this exception type and calls ``sys.exit(exc.exit_code)``.

    Args:
        message: Human-readable error description printed to stderr.
        exit_code: Optional override for the class-level exit code.
    """

    exit_code: int = EXIT_GENERIC_FAILURE

    def __init__(self, message: str, exit_code: int | None = None):
        super().__init__(message)
        if exit_code is not None:
            self.exit_code = exit_code


class InvalidUsageError(KfgenError):
    """Raised for invalid CLI arguments or missing required options."""

    exit_code = EXIT_INVALID_USAGE


class ConfigError(KfgenError):
    """Raised for configuration problems (invalid project config, bad env values)."""

    exit_code = EXIT_GENERIC_FAILURE


class SchemaLoadError(KfgenError):
    """Raised when a provider descriptor is malformed, cyclic, or too deep."""

    exit_code = EXIT_SCHEMA_LOAD_ERROR


class UnsupportedSchemaKindError(KfgenError):
    """Raised when an attribute kind cannot be translated to a field type.

    Args:
        path: Dotted attribute path from the resource root.
        detail: What made the attribute untranslatable.
    """

    exit_code = EXIT_UNSUPPORTED_SCHEMA

    def __init__(self, path: str, detail: str):
        super().__init__(f"{path}: {detail}")
        self.path = path


class NumericPrecisionError(UnsupportedSchemaKindError):
    """Raised when the configured numeric target is narrower than the provider's range."""


class BindingError(KfgenError):
    """Raised when an API field has no usable mapping for controller wiring."""

    exit_code = EXIT_BINDING_ERROR


class WriteError(KfgenError):
    """Raised when generated artifacts cannot be written.

    Args:
        message: Description of the failed write.
        path: The file that could not be written, when known.
    """

    exit_code = EXIT_WRITE_ERROR

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class PluginError(KfgenError):
    """Base class for failures reported by the provider plugin adapter."""


class TransientPluginError(PluginError):
    """Timeouts, rate limits and server errors. Retried with backoff.

    Args:
        message: Description of the failure.
        retry_after: Delay in seconds suggested by the plugin, if any.
    """

    exit_code = EXIT_PLUGIN_TRANSIENT

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PermanentPluginError(PluginError):
    """Validation rejections and authorisation failures. Never retried automatically."""

    exit_code = EXIT_PLUGIN_PERMANENT


class ResourceNotFound(PluginError):
    """The external resource does not exist (or no longer exists)."""


class StoreError(KfgenError):
    """Raised when the cluster object store cannot serve a request."""


class ConflictError(StoreError):
    """Raised when an update is rejected because the stored object advanced."""


class InvalidTransitionError(KfgenError):
    """Raised when a reconciliation pass attempts a disallowed phase change."""


class ReconcileCancelled(KfgenError):
    """Raised inside a reconcile pass whose object was deleted or changed mid-flight."""
