"""Runtime context types and the container runtime protocol.

This module defines the typed inputs every Linux container runtime consumes:

- ContainerRuntimeContext: identity shared by all runtime calls
- LaunchContext: everything a launch needs (dirs, paths, resources, env)
- SignalContext: target pid and signal for signal delivery
- ContainerSignal: signals the privileged helper understands
- ContainerRuntime: protocol implemented by concrete runtimes

Design Notes:
    Contexts are frozen and validated at construction. A runtime never
    has to guess the type of an attribute or check for a missing one:
    if the context exists, every required field is a non-empty value of
    the right type.

Architecture:

    .. code-block:: text

        ContainerRuntimeContext
        ├── container_id, run_as_user, user, environment
        │
        ├── LaunchContext
        │   ├── app_id, container_work_dir
        │   ├── local_dirs, log_dirs            (ordered)
        │   ├── resources_options
        │   ├── container_script_path, tokens_path, pid_file_path
        │   └── tc_command_file                 (optional)
        │
        └── SignalContext
            └── pid, signal
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Protocol, runtime_checkable

from nodespine.core.config import NodeSpineSettings
from nodespine.core.errors import ValidationError

# ---------------------------------------------------------------------------
# Launch environment keys
# ---------------------------------------------------------------------------

ENV_CONTAINER_TYPE = "YARN_CONTAINER_RUNTIME_TYPE"
ENV_DOCKER_CONTAINER_IMAGE = "YARN_CONTAINER_RUNTIME_DOCKER_IMAGE"
ENV_DOCKER_CONTAINER_IMAGE_FILE = "YARN_CONTAINER_RUNTIME_DOCKER_IMAGE_FILE"
ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE = "YARN_CONTAINER_RUNTIME_DOCKER_RUN_OVERRIDE_DISABLE"

CONTAINER_SCRIPT = "launch_container.sh"


# ---------------------------------------------------------------------------
# Signals
# ---------------------------------------------------------------------------

class ContainerSignal(IntEnum):
    """Signals the privileged helper can deliver to a container process."""

    NULL = 0
    QUIT = 3
    KILL = 9
    TERM = 15

    @classmethod
    def coerce(cls, value: ContainerSignal | int | str) -> ContainerSignal:
        """Resolve a signal from a member, its number, or its name (``"KILL"``, ``"SIGKILL"``)."""
        if isinstance(value, ContainerSignal):
            return value
        if isinstance(value, str):
            text = value.strip().upper()
            if text.isdigit():
                return cls(int(text))
            name = text.removeprefix("SIG")
            try:
                return cls[name]
            except KeyError:
                raise ValueError(f"Unknown container signal: {value!r}") from None
        return cls(value)


# ---------------------------------------------------------------------------
# Contexts
# ---------------------------------------------------------------------------

def _require(name: str, value: object) -> None:
    if not isinstance(value, str) or not value:
        raise ValidationError(
            f"{name} must be a non-empty string",
            field=name,
            value=value,
        )


def _dir_list(name: str, value: object) -> tuple[str, ...]:
    # a lone path would otherwise be iterated character by character
    if isinstance(value, (str, bytes, os.PathLike)):
        raise ValidationError(
            f"{name} must be a sequence of paths, not a single path",
            field=name,
            value=value,
        )
    dirs = tuple(os.fspath(d) if isinstance(d, os.PathLike) else d for d in value)
    for d in dirs:
        _require(name, d)
    return dirs


def _pid(value: object) -> str:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ValidationError("pid must be an integer or a string of digits", field="pid", value=value)
    text = str(value)
    if not (text.isascii() and text.isdigit()) or int(text) <= 0:
        raise ValidationError("pid must be a positive integer", field="pid", value=value)
    return text


@dataclass(frozen=True, kw_only=True)
class ContainerRuntimeContext:
    """Identity shared by every runtime call.

    ``environment`` is the container's launch environment as the
    application requested it, not the node's environment.
    """

    container_id: str
    run_as_user: str
    user: str
    environment: Mapping[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        _require("container_id", self.container_id)
        _require("run_as_user", self.run_as_user)
        _require("user", self.user)
        object.__setattr__(self, "environment", dict(self.environment))


@dataclass(frozen=True, kw_only=True)
class LaunchContext(ContainerRuntimeContext):
    """Everything needed to launch one container.

    Example:
        >>> ctx = LaunchContext(
        ...     container_id="container_1_0001_01_000002",
        ...     app_id="application_1_0001",
        ...     run_as_user="nobody",
        ...     user="alice",
        ...     container_work_dir="/grid/0/appcache/container_1_0001_01_000002",
        ...     local_dirs=["/grid/0/nm-local"],
        ...     log_dirs=["/grid/0/nm-logs"],
        ...     resources_options="cgroups=none",
        ...     container_script_path="/nm-private/launch_container.sh",
        ...     tokens_path="/nm-private/container_tokens",
        ...     pid_file_path="/nm-private/container.pid",
        ...     environment={"YARN_CONTAINER_RUNTIME_DOCKER_IMAGE": "centos:7"},
        ... )
    """

    app_id: str
    container_work_dir: str
    local_dirs: tuple[str, ...] = ()
    log_dirs: tuple[str, ...] = ()
    resources_options: str
    container_script_path: str
    tokens_path: str
    pid_file_path: str
    tc_command_file: str | None = None

    def __post_init__(self) -> None:
        super().__post_init__()
        for name in (
            "app_id",
            "container_work_dir",
            "resources_options",
            "container_script_path",
            "tokens_path",
            "pid_file_path",
        ):
            value = getattr(self, name)
            if isinstance(value, os.PathLike):
                value = os.fspath(value)
                object.__setattr__(self, name, value)
            _require(name, value)
        object.__setattr__(self, "local_dirs", _dir_list("local_dirs", self.local_dirs))
        object.__setattr__(self, "log_dirs", _dir_list("log_dirs", self.log_dirs))
        if self.tc_command_file is not None:
            object.__setattr__(self, "tc_command_file", os.fspath(self.tc_command_file))


@dataclass(frozen=True, kw_only=True)
class SignalContext(ContainerRuntimeContext):
    """Target of a signal delivery."""

    pid: str
    signal: ContainerSignal

    def __post_init__(self) -> None:
        super().__post_init__()
        object.__setattr__(self, "pid", _pid(self.pid))
        try:
            object.__setattr__(self, "signal", ContainerSignal.coerce(self.signal))
        except ValueError as exc:
            raise ValidationError(str(exc), field="signal", value=self.signal, cause=exc) from exc


# ---------------------------------------------------------------------------
# ContainerRuntime protocol
# ---------------------------------------------------------------------------

@runtime_checkable
class ContainerRuntime(Protocol):
    """Protocol for Linux container runtimes driven by the node agent.

    All methods are synchronous and block the calling thread for as long
    as the privileged helper runs. Runtimes hold no per-container state.

    .. code-block:: text

        initialize(settings)        once, at startup
        prepare_container(ctx)      before launch
        launch_container(ctx)       start the container process
        signal_container(ctx)       deliver a signal to its pid
        reap_container(ctx)         after exit
    """

    def initialize(self, settings: NodeSpineSettings) -> None:
        ...

    def prepare_container(self, ctx: ContainerRuntimeContext) -> None:
        ...

    def launch_container(self, ctx: LaunchContext) -> None:
        ...

    def signal_container(self, ctx: SignalContext) -> None:
        ...

    def reap_container(self, ctx: ContainerRuntimeContext) -> None:
        ...
