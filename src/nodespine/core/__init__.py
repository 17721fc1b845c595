"""Core primitives for node-spine: errors, logging, configuration."""

from nodespine.core.errors import (
    ConfigError,
    ContainerExecutionError,
    DispatchError,
    ErrorCategory,
    ErrorContext,
    LaunchFailedError,
    MissingConfigError,
    NodeSpineError,
    ResourceIsolationError,
    SignalFailedError,
    ValidationError,
    is_retryable,
)
from nodespine.core.logging import LogContext, configure_logging, get_logger

__all__ = [
    "ConfigError",
    "ContainerExecutionError",
    "DispatchError",
    "ErrorCategory",
    "ErrorContext",
    "LaunchFailedError",
    "MissingConfigError",
    "NodeSpineError",
    "ResourceIsolationError",
    "SignalFailedError",
    "ValidationError",
    "is_retryable",
    "LogContext",
    "configure_logging",
    "get_logger",
]
