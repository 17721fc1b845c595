"""Linux container runtimes for the node agent.

Architecture:

    .. code-block:: text

        nodespine.execution.runtimes
        ├── __init__.py       ← Public API (this file)
        ├── _types.py         ← ContainerRuntime protocol, contexts, signals
        ├── docker.py         ← DockerContainerRuntime
        ├── docker_command.py ← DockerRunCommand + DockerClient (command files)
        ├── privileged.py     ← helper invocations + PrivilegedOperationExecutor
        ├── cgroups.py        ← CGroupsHandler (isolation-group paths)
        └── router.py         ← ContainerRuntimeRouter

    Runtimes never start container processes themselves. They describe the
    launch and hand it to the setuid ``container-executor`` helper.

Tags:
    node-spine, execution, runtimes, docker, container-executor
"""

from nodespine.execution.runtimes._types import (
    CONTAINER_SCRIPT,
    ENV_CONTAINER_TYPE,
    ENV_DOCKER_CONTAINER_IMAGE,
    ENV_DOCKER_CONTAINER_IMAGE_FILE,
    ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE,
    ContainerRuntime,
    ContainerRuntimeContext,
    ContainerSignal,
    LaunchContext,
    SignalContext,
)
from nodespine.execution.runtimes.cgroups import (
    CGroupsHandler,
    IsolationGroupProvider,
    ResourceHandlerError,
)
from nodespine.execution.runtimes.docker import (
    DockerContainerRuntime,
    is_docker_container_requested,
    mount_locations,
)
from nodespine.execution.runtimes.docker_command import DockerClient, DockerRunCommand
from nodespine.execution.runtimes.privileged import (
    ExecutionOutcome,
    LaunchInvocation,
    PrivilegedOperationExecutor,
    RunAsUserCommand,
    SignalInvocation,
)
from nodespine.execution.runtimes.router import ContainerRuntimeRouter

__all__ = [
    # Types & Protocol
    "CONTAINER_SCRIPT",
    "ENV_CONTAINER_TYPE",
    "ENV_DOCKER_CONTAINER_IMAGE",
    "ENV_DOCKER_CONTAINER_IMAGE_FILE",
    "ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE",
    "ContainerRuntime",
    "ContainerRuntimeContext",
    "ContainerSignal",
    "LaunchContext",
    "SignalContext",
    # Docker
    "DockerClient",
    "DockerContainerRuntime",
    "DockerRunCommand",
    "is_docker_container_requested",
    "mount_locations",
    # Privileged helper
    "ExecutionOutcome",
    "LaunchInvocation",
    "PrivilegedOperationExecutor",
    "RunAsUserCommand",
    "SignalInvocation",
    # Isolation
    "CGroupsHandler",
    "IsolationGroupProvider",
    "ResourceHandlerError",
    # Routing
    "ContainerRuntimeRouter",
]
