"""Docker container runtime — launches containers through the privileged helper.

Translates a ``LaunchContext`` into a ``docker run`` command file and a
``LaunchInvocation`` for the setuid ``container-executor``, which performs
the actual launch as the target user. Signals go through the same helper
with a ``SignalInvocation``.

Architecture:

    .. code-block:: text

        launch_container(ctx)
          ├── build_run_command(ctx)
          │     ├── image from YARN_CONTAINER_RUNTIME_DOCKER_IMAGE (required)
          │     ├── -d, --workdir, --net=host, /etc/passwd:ro
          │     ├── mount_locations(local_dirs, work_dir, log_dirs)
          │     ├── [--cgroup-parent]   only if docker_cgroup_parent_enabled
          │     └── bash <work_dir>/launch_container.sh   unless override disabled
          ├── DockerClient.write_command_to_temp_file()  → command_file
          ├── build_launch_invocation(ctx, command_file)
          └── PrivilegedOperationExecutor.execute()
                └── non-zero exit → LaunchFailedError(exit_code, output, error_output)

        signal_container(ctx)
          └── SignalInvocation → execute() → SignalFailedError on non-zero exit

        prepare_container / reap_container → no-ops

The runtime keeps no per-container state. Everything set by ``initialize``
lives in one frozen ``_RuntimeState`` and is only read afterwards, so
launch and signal calls for different containers may run concurrently.
Ordering between a launch and a signal for the *same* container is the
caller's responsibility.

Example:
    >>> runtime = DockerContainerRuntime()
    >>> runtime.initialize(get_settings())
    >>> runtime.launch_container(launch_ctx)
    >>> runtime.signal_container(signal_ctx)

Tags:
    node-spine, execution, runtimes, docker, container-executor
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import PurePosixPath

from nodespine.core.config import NodeSpineSettings
from nodespine.core.errors import (
    ConfigError,
    DispatchError,
    LaunchFailedError,
    MissingConfigError,
    ResourceIsolationError,
    SignalFailedError,
)
from nodespine.core.logging import LogContext, get_logger
from nodespine.execution.runtimes._types import (
    CONTAINER_SCRIPT,
    ENV_CONTAINER_TYPE,
    ENV_DOCKER_CONTAINER_IMAGE,
    ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE,
    ContainerRuntimeContext,
    LaunchContext,
    SignalContext,
)
from nodespine.execution.runtimes.cgroups import (
    CGroupsHandler,
    IsolationGroupProvider,
)
from nodespine.execution.runtimes.docker_command import DockerClient, DockerRunCommand
from nodespine.execution.runtimes.privileged import (
    CGROUP_ARG_NO_TASKS,
    CGROUP_ARG_PREFIX,
    LaunchInvocation,
    PrivilegedOperationExecutor,
    SignalInvocation,
)

logger = get_logger(__name__)

NETWORK_TYPE = "host"
PASSWD_FILE = "/etc/passwd"


def is_docker_container_requested(environment: Mapping[str, str] | None) -> bool:
    """True when the launch environment asks for the docker runtime."""
    if not environment:
        return False
    return environment.get(ENV_CONTAINER_TYPE) == "docker"


def mount_locations(
    local_dirs: Sequence[str],
    container_work_dir: str,
    log_dirs: Sequence[str],
) -> list[tuple[str, str]]:
    """Identity bind mounts: local dirs, then the work dir, then log dirs.

    No dedup and no path checks; empty lists just mean fewer mounts.
    """
    all_dirs = [*local_dirs, container_work_dir, *log_dirs]
    return [(d, d) for d in all_dirs]


@dataclass(frozen=True)
class _RuntimeState:
    settings: NodeSpineSettings
    executor: PrivilegedOperationExecutor
    docker_client: DockerClient
    isolation_groups: IsolationGroupProvider


class DockerContainerRuntime:
    """Runs YARN-style containers under docker via ``container-executor``.

    Collaborators may be injected for tests or alternative deployments;
    anything not injected is built from the settings in ``initialize``.
    """

    runtime_name = "docker"

    def __init__(
        self,
        executor: PrivilegedOperationExecutor | None = None,
        *,
        docker_client: DockerClient | None = None,
        isolation_groups: IsolationGroupProvider | None = None,
    ) -> None:
        self._executor = executor
        self._docker_client = docker_client
        self._isolation_groups = isolation_groups
        self._state: _RuntimeState | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def initialize(self, settings: NodeSpineSettings) -> None:
        self._state = _RuntimeState(
            settings=settings,
            executor=self._executor
            or PrivilegedOperationExecutor(settings.container_executor_path),
            docker_client=self._docker_client or DockerClient(settings.docker_command_dir),
            isolation_groups=self._isolation_groups
            or CGroupsHandler(settings.cgroups_hierarchy),
        )
        logger.info(
            "docker_runtime.initialized",
            executor=self._state.executor.executor_path,
            command_dir=str(self._state.docker_client.command_dir),
            cgroup_parent_enabled=settings.docker_cgroup_parent_enabled,
        )

    def prepare_container(self, ctx: ContainerRuntimeContext) -> None:
        pass

    def reap_container(self, ctx: ContainerRuntimeContext) -> None:
        pass

    # ------------------------------------------------------------------
    # Launch
    # ------------------------------------------------------------------

    def build_run_command(self, ctx: LaunchContext) -> DockerRunCommand:
        """Build the ``docker run`` description for ``ctx``.

        Raises:
            MissingConfigError: The launch environment has no image.
            ResourceIsolationError: cgroup parent requested but unresolvable.
        """
        state = self._require_state("launch")
        image = ctx.environment.get(ENV_DOCKER_CONTAINER_IMAGE)
        if not image:
            raise MissingConfigError(ENV_DOCKER_CONTAINER_IMAGE).with_context(
                operation="launch", container_id=ctx.container_id, runtime=self.runtime_name,
            )

        command = (
            DockerRunCommand(ctx.container_id, ctx.run_as_user, image)
            .detach_on_run()
            .set_container_work_dir(ctx.container_work_dir)
            .set_network_type(NETWORK_TYPE)
            .add_mount_location(PASSWD_FILE, PASSWD_FILE, read_only=True)
        )
        for source, destination in mount_locations(
            ctx.local_dirs, ctx.container_work_dir, ctx.log_dirs,
        ):
            command.add_mount_location(source, destination)

        # docker needs a libcontainer with net_cls before this can default on
        if state.settings.docker_cgroup_parent_enabled:
            self.add_cgroup_parent_if_required(
                ctx.resources_options, ctx.container_id, command,
            )

        if ctx.environment.get(ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE) == "true":
            logger.info("docker_runtime.override_disabled", container_id=ctx.container_id)
        else:
            launch_dst = PurePosixPath(ctx.container_work_dir) / CONTAINER_SCRIPT
            command.set_override_command_with_args(["bash", str(launch_dst)])

        return command

    def add_cgroup_parent_if_required(
        self,
        resources_options: str,
        container_id: str,
        command: DockerRunCommand,
    ) -> None:
        """Attach ``--cgroup-parent`` unless resources say ``cgroups=none``."""
        if resources_options == CGROUP_ARG_PREFIX + CGROUP_ARG_NO_TASKS:
            logger.info(
                "docker_runtime.no_resource_restrictions",
                container_id=container_id,
            )
            return

        state = self._require_state("launch")
        try:
            cgroup_path = "/" + state.isolation_groups.group_path_for(container_id)
        except Exception as exc:
            logger.warning(
                "docker_runtime.cgroup_unavailable",
                container_id=container_id,
                error=str(exc),
            )
            raise ResourceIsolationError(
                f"Unable to resolve cgroup parent for {container_id}: {exc}",
                cause=exc,
            ).with_context(operation="launch", container_id=container_id) from exc

        logger.info("docker_runtime.cgroup_parent", container_id=container_id, path=cgroup_path)
        command.set_cgroup_parent(cgroup_path)

    def build_launch_invocation(self, ctx: LaunchContext, command_file: str) -> LaunchInvocation:
        return LaunchInvocation(
            run_as_user=ctx.run_as_user,
            user=ctx.user,
            app_id=ctx.app_id,
            container_id=ctx.container_id,
            container_work_dir=ctx.container_work_dir,
            container_script_path=ctx.container_script_path,
            tokens_path=ctx.tokens_path,
            pid_file_path=ctx.pid_file_path,
            local_dirs=ctx.local_dirs,
            log_dirs=ctx.log_dirs,
            command_file=command_file,
            resources_options=ctx.resources_options,
            tc_command_file=ctx.tc_command_file,
        )

    def launch_container(self, ctx: LaunchContext) -> None:
        """Launch the container; returns once the helper exits successfully.

        Raises:
            MissingConfigError: No image in the launch environment.
            LaunchFailedError: The helper exited non-zero.
            DispatchError: The helper could not be started.
        """
        with LogContext(operation="launch", container_id=ctx.container_id):
            self._launch(ctx)

    def _launch(self, ctx: LaunchContext) -> None:
        state = self._require_state("launch")
        command = self.build_run_command(ctx)
        command_file = state.docker_client.write_command_to_temp_file(command, ctx.container_id)
        invocation = self.build_launch_invocation(ctx, command_file)

        logger.info(
            "docker_runtime.launch",
            app_id=ctx.app_id,
            image=command.image,
            command_file=command_file,
        )
        try:
            outcome = state.executor.execute(invocation, environment=ctx.environment)
        except DispatchError as exc:
            exc.with_context(operation="launch", container_id=ctx.container_id)
            raise

        if not outcome.succeeded:
            logger.warning(
                "docker_runtime.launch_failed",
                exit_code=outcome.exit_code,
                stderr=outcome.stderr,
            )
            raise LaunchFailedError(
                exit_code=outcome.exit_code,
                output=outcome.stdout,
                error_output=outcome.stderr,
            ).with_context(
                operation="launch",
                container_id=ctx.container_id,
                app_id=ctx.app_id,
                runtime=self.runtime_name,
            )

    # ------------------------------------------------------------------
    # Signal
    # ------------------------------------------------------------------

    def signal_container(self, ctx: SignalContext) -> None:
        """Deliver ``ctx.signal`` to ``ctx.pid`` as the run-as user.

        Raises:
            SignalFailedError: The helper exited non-zero.
            DispatchError: The helper could not be started.
        """
        with LogContext(operation="signal", container_id=ctx.container_id):
            self._signal(ctx)

    def _signal(self, ctx: SignalContext) -> None:
        state = self._require_state("signal")
        invocation = SignalInvocation(
            run_as_user=ctx.run_as_user,
            user=ctx.user,
            pid=ctx.pid,
            signal=ctx.signal,
        )

        logger.info(
            "docker_runtime.signal",
            pid=ctx.pid,
            signal=ctx.signal.name,
        )
        try:
            outcome = state.executor.execute(invocation, environment=ctx.environment)
        except DispatchError as exc:
            exc.with_context(operation="signal", container_id=ctx.container_id)
            raise

        if not outcome.succeeded:
            logger.warning(
                "docker_runtime.signal_failed",
                pid=ctx.pid,
                exit_code=outcome.exit_code,
                stderr=outcome.stderr,
            )
            raise SignalFailedError(
                exit_code=outcome.exit_code,
                output=outcome.stdout,
                error_output=outcome.stderr,
            ).with_context(
                operation="signal",
                container_id=ctx.container_id,
                runtime=self.runtime_name,
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_state(self, operation: str) -> _RuntimeState:
        if self._state is None:
            raise ConfigError(
                f"{type(self).__name__} used before initialize()",
            ).with_context(operation=operation, runtime=self.runtime_name)
        return self._state

    def __repr__(self) -> str:
        initialized = self._state is not None
        return f"DockerContainerRuntime(initialized={initialized})"
