"""
Structured error types for node-spine.

Every failure raised by the container runtimes is a ``NodeSpineError``
subclass carrying a category, an explicit ``retryable`` flag, structured
context (operation, container id, ...) and the chained underlying cause.

Nothing at this layer is retried. Callers decide what to do with a failed
launch or signal; the error gives them everything the helper reported.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                       NodeSpineError                         │
        │           (category, retryable, context, cause)              │
        ├─────────────────────────────────────────────────────────────┤
        │                                                              │
        │  ConfigError          ValidationError     DispatchError      │
        │  (CONFIG)             (VALIDATION)        (DISPATCH)         │
        │      │                                                       │
        │  MissingConfigError   ResourceIsolationError                 │
        │                       (ISOLATION)                            │
        │                                                              │
        │  ContainerExecutionError (RUNTIME, exit_code/output/stderr)  │
        │      │                                                       │
        │  LaunchFailedError    SignalFailedError                      │
        └─────────────────────────────────────────────────────────────┘

Examples:
    >>> err = LaunchFailedError(exit_code=1, output="x", error_output="y")
    >>> err.exit_code, err.output, err.error_output
    (1, 'x', 'y')
    >>> err.with_context(container_id="container_01").context.container_id
    'container_01'

Tags:
    error-handling, exception-hierarchy, error-context, node-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    CONFIG = "CONFIG"             # Missing or invalid settings / launch env
    VALIDATION = "VALIDATION"     # Malformed runtime context
    RUNTIME = "RUNTIME"           # Helper ran and reported failure
    ISOLATION = "ISOLATION"       # cgroup / isolation-group lookup failed
    DISPATCH = "DISPATCH"         # Helper could not be spawned
    INTERNAL = "INTERNAL"         # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """Structured metadata attached to an error for logging."""

    operation: str | None = None
    container_id: str | None = None
    app_id: str | None = None
    runtime: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result = {}
        for key in ["operation", "container_id", "app_id", "runtime"]:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class NodeSpineError(Exception):
    """
    Base exception for all node-spine errors.

    Subclasses set ``default_category`` and ``default_retryable`` so that
    call sites only pass a message (and a cause when wrapping).

    Examples:
        >>> error = NodeSpineError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.retryable
        False

        Chaining:

        >>> try:
        ...     raise OSError("disk full")
        ... except OSError as e:
        ...     error = NodeSpineError("Write failed", cause=e)
        >>> error.cause
        OSError('disk full')
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> NodeSpineError:
        """
        Add context to this error (fluent API).

        Usage:
            raise LaunchFailedError(...).with_context(
                operation="launch",
                container_id="container_01",
            )
        """
        for key, value in kwargs.items():
            if hasattr(self.context, key) and key != "metadata":
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# CONFIGURATION / VALIDATION ERRORS
# =============================================================================


class ConfigError(NodeSpineError):
    """
    Configuration error.

    Never retryable - configuration must be fixed.
    """

    default_category = ErrorCategory.CONFIG


class MissingConfigError(ConfigError):
    """Required configuration is missing."""

    def __init__(self, key: str, message: str | None = None):
        self.key = key
        super().__init__(message or f"{key} not set!")


class ValidationError(NodeSpineError):
    """A runtime context failed validation at construction."""

    default_category = ErrorCategory.VALIDATION

    def __init__(
        self,
        message: str,
        *,
        field: str | None = None,
        value: Any = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.field = field
        self.value = value

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field:
            result["field"] = self.field
        if self.value is not None:
            result["value"] = repr(self.value)
        return result


# =============================================================================
# CONTAINER EXECUTION ERRORS
# =============================================================================


class ContainerExecutionError(NodeSpineError):
    """
    A container operation failed.

    When the failure comes from the privileged helper, ``exit_code``,
    ``output`` and ``error_output`` hold exactly what the helper reported.
    """

    default_category = ErrorCategory.RUNTIME

    def __init__(
        self,
        message: str,
        *,
        exit_code: int | None = None,
        output: str | None = None,
        error_output: str | None = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.exit_code = exit_code
        self.output = output
        self.error_output = error_output

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.exit_code is not None:
            result["exit_code"] = self.exit_code
        if self.output is not None:
            result["output"] = self.output
        if self.error_output is not None:
            result["error_output"] = self.error_output
        return result


class LaunchFailedError(ContainerExecutionError):
    """The helper reported failure launching a container."""

    def __init__(self, message: str = "Launch container failed", **kwargs: Any):
        super().__init__(message, **kwargs)


class SignalFailedError(ContainerExecutionError):
    """The helper reported failure signalling a container."""

    def __init__(self, message: str = "Signal container failed", **kwargs: Any):
        super().__init__(message, **kwargs)


class ResourceIsolationError(NodeSpineError):
    """The isolation-group (cgroup) path for a container could not be resolved."""

    default_category = ErrorCategory.ISOLATION


class DispatchError(NodeSpineError):
    """The privileged helper could not be spawned at all."""

    default_category = ErrorCategory.DISPATCH


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================


def is_retryable(error: Exception) -> bool:
    """Check if an error is retryable."""
    if isinstance(error, NodeSpineError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "NodeSpineError",
    "ConfigError",
    "MissingConfigError",
    "ValidationError",
    "ContainerExecutionError",
    "LaunchFailedError",
    "SignalFailedError",
    "ResourceIsolationError",
    "DispatchError",
    "is_retryable",
]
