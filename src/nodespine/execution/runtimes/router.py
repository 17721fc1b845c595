"""Runtime router — picks the container runtime for each call.

A node can host plain process containers and docker containers side by
side. The application chooses per container through
``YARN_CONTAINER_RUNTIME_TYPE`` in its launch environment; the router
registers runtimes by name and delegates each lifecycle call.

Routing order:

1. ``YARN_CONTAINER_RUNTIME_TYPE=docker`` → the runtime registered as ``docker``
2. anything else → the default runtime
3. nothing matches → ``ConfigError``

Example:
    >>> router = ContainerRuntimeRouter()
    >>> router.register(process_runtime)          # becomes the default
    >>> router.register(DockerContainerRuntime())
    >>> router.initialize(get_settings())
    >>> router.launch_container(ctx)              # routed by ctx.environment
"""

from __future__ import annotations

from nodespine.core.config import NodeSpineSettings
from nodespine.core.errors import ConfigError
from nodespine.core.logging import get_logger
from nodespine.execution.runtimes._types import (
    ContainerRuntime,
    ContainerRuntimeContext,
    LaunchContext,
    SignalContext,
)
from nodespine.execution.runtimes.docker import is_docker_container_requested

logger = get_logger(__name__)


class ContainerRuntimeRouter:
    """Registry of named runtimes that itself satisfies ``ContainerRuntime``.

    Registration happens at startup; afterwards the router is only read.
    """

    def __init__(self) -> None:
        self._runtimes: dict[str, ContainerRuntime] = {}
        self._default_name: str | None = None

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    def register(self, runtime: ContainerRuntime, name: str | None = None) -> None:
        """Register ``runtime`` under ``name`` (defaults to its ``runtime_name``).

        The first runtime registered becomes the default.
        """
        key = name or getattr(runtime, "runtime_name", None)
        if not key:
            raise ConfigError("Runtime has no runtime_name; pass name= explicitly")
        if key in self._runtimes:
            logger.warning("runtime_router.replacing", runtime=key)
        self._runtimes[key] = runtime
        logger.info("runtime_router.registered", runtime=key)

        if self._default_name is None:
            self._default_name = key

    def set_default(self, name: str) -> None:
        if name not in self._runtimes:
            raise ConfigError(f"Cannot set default: no runtime registered as '{name}'")
        self._default_name = name

    def get(self, name: str) -> ContainerRuntime | None:
        return self._runtimes.get(name)

    def list_runtimes(self) -> list[str]:
        return sorted(self._runtimes)

    @property
    def default_name(self) -> str | None:
        return self._default_name

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    def route(self, ctx: ContainerRuntimeContext) -> ContainerRuntime:
        """Select the runtime for ``ctx`` based on its launch environment."""
        if is_docker_container_requested(ctx.environment):
            runtime = self._runtimes.get("docker")
            if runtime is None:
                raise ConfigError(
                    "Docker runtime requested but none is registered. "
                    f"Available: {', '.join(self.list_runtimes()) or '(none)'}"
                ).with_context(container_id=ctx.container_id)
            return runtime

        if self._default_name is not None:
            return self._runtimes[self._default_name]

        raise ConfigError("No container runtimes registered").with_context(
            container_id=ctx.container_id,
        )

    # ------------------------------------------------------------------
    # ContainerRuntime
    # ------------------------------------------------------------------

    def initialize(self, settings: NodeSpineSettings) -> None:
        for runtime in self._runtimes.values():
            runtime.initialize(settings)

    def prepare_container(self, ctx: ContainerRuntimeContext) -> None:
        self.route(ctx).prepare_container(ctx)

    def launch_container(self, ctx: LaunchContext) -> None:
        self.route(ctx).launch_container(ctx)

    def signal_container(self, ctx: SignalContext) -> None:
        self.route(ctx).signal_container(ctx)

    def reap_container(self, ctx: ContainerRuntimeContext) -> None:
        self.route(ctx).reap_container(ctx)

    def __len__(self) -> int:
        return len(self._runtimes)

    def __contains__(self, name: str) -> bool:
        return name in self._runtimes

    def __repr__(self) -> str:
        names = ", ".join(self.list_runtimes())
        default = f", default={self._default_name}" if self._default_name else ""
        return f"ContainerRuntimeRouter([{names}]{default})"
