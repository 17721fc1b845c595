"""Privileged helper invocations and their executor.

The node agent never launches or signals container processes itself. It
runs the setuid ``container-executor`` helper with a positional argument
vector whose layout is a fixed contract with the helper's C code. Each
layout is a frozen value type here, with named fields and one ``to_args()``,
so the order is decided in exactly one place.

Architecture:

    .. code-block:: text

        LaunchInvocation ──┐
                           ├── to_args() ──► PrivilegedOperationExecutor.execute()
        SignalInvocation ──┘                     │
                                                 ├── subprocess.run([helper, *args])
                                                 ├── ExecutionOutcome(exit, out, err)
                                                 └── OSError ──► DispatchError

    Launch argv::

        run_as_user user 4 app_id container_id work_dir script_path
        tokens_path pid_file local_dirs(%-joined) log_dirs(%-joined)
        command_file resources_options [tc_command_file]

    Signal argv::

        run_as_user user 2 pid signal

Tags:
    node-spine, execution, runtimes, privileged, container-executor, subprocess
"""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping
from dataclasses import dataclass
from enum import IntEnum
from typing import Protocol

from nodespine.core.errors import DispatchError
from nodespine.core.logging import get_logger
from nodespine.execution.runtimes._types import ContainerSignal

logger = get_logger(__name__)

LINUX_FILE_PATH_SEPARATOR = "%"

CGROUP_ARG_PREFIX = "cgroups="
CGROUP_ARG_NO_TASKS = "none"


class RunAsUserCommand(IntEnum):
    """Operation codes understood by the helper (third positional argument)."""

    INITIALIZE_CONTAINER = 0
    LAUNCH_CONTAINER = 1
    SIGNAL_CONTAINER = 2
    DELETE_AS_USER = 3
    LAUNCH_DOCKER_CONTAINER = 4


@dataclass(frozen=True)
class LaunchInvocation:
    """Helper arguments for launching a docker container."""

    run_as_user: str
    user: str
    app_id: str
    container_id: str
    container_work_dir: str
    container_script_path: str
    tokens_path: str
    pid_file_path: str
    local_dirs: tuple[str, ...]
    log_dirs: tuple[str, ...]
    command_file: str
    resources_options: str
    tc_command_file: str | None = None

    def to_args(self) -> list[str]:
        args = [
            self.run_as_user,
            self.user,
            str(int(RunAsUserCommand.LAUNCH_DOCKER_CONTAINER)),
            self.app_id,
            self.container_id,
            self.container_work_dir,
            self.container_script_path,
            self.tokens_path,
            self.pid_file_path,
            LINUX_FILE_PATH_SEPARATOR.join(self.local_dirs),
            LINUX_FILE_PATH_SEPARATOR.join(self.log_dirs),
            self.command_file,
            self.resources_options,
        ]
        if self.tc_command_file is not None:
            args.append(self.tc_command_file)
        return args


@dataclass(frozen=True)
class SignalInvocation:
    """Helper arguments for delivering a signal to a container pid."""

    run_as_user: str
    user: str
    pid: str
    signal: ContainerSignal

    def to_args(self) -> list[str]:
        return [
            self.run_as_user,
            self.user,
            str(int(RunAsUserCommand.SIGNAL_CONTAINER)),
            self.pid,
            str(int(self.signal)),
        ]


class HelperInvocation(Protocol):
    def to_args(self) -> list[str]:
        ...


def _decode_output(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="surrogateescape")


@dataclass(frozen=True)
class ExecutionOutcome:
    """What the helper reported: exit code plus captured output."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class PrivilegedOperationExecutor:
    """Runs the privileged helper synchronously and captures its output.

    A non-zero exit is *not* an exception here: it comes back as an
    ``ExecutionOutcome`` for the runtime to map to its own error. Only a
    helper that cannot be started at all raises ``DispatchError``.

    Example::

        executor = PrivilegedOperationExecutor("/opt/hadoop/bin/container-executor")
        outcome = executor.execute(invocation, environment={"FOO": "bar"})
        if not outcome.succeeded:
            ...
    """

    def __init__(self, executor_path: str) -> None:
        self.executor_path = executor_path

    def command_for(self, invocation: HelperInvocation) -> list[str]:
        """Full argv: helper path followed by the invocation's arguments."""
        return [self.executor_path, *invocation.to_args()]

    def execute(
        self,
        invocation: HelperInvocation,
        *,
        environment: Mapping[str, str] | None = None,
    ) -> ExecutionOutcome:
        """Run the helper and wait for it to exit.

        Output is captured as bytes and decoded with ``surrogateescape``, so
        whatever the helper printed (invalid UTF-8, ``\\r\\n``) survives unchanged.

        Args:
            invocation: Launch or signal arguments.
            environment: Overlaid on the node's environment for the helper.
        """
        cmd = self.command_for(invocation)
        env = None
        if environment:
            env = dict(os.environ)
            env.update(environment)

        logger.debug("privileged_executor.exec", cmd=" ".join(cmd))
        try:
            proc = subprocess.run(  # noqa: S603
                cmd,
                capture_output=True,
                env=env,
                check=False,
            )
        except OSError as exc:
            logger.warning(
                "privileged_executor.spawn_failed",
                executor=self.executor_path,
                error=str(exc),
            )
            raise DispatchError(
                f"Unable to run privileged helper {self.executor_path}: {exc}",
                cause=exc,
            ) from exc

        outcome = ExecutionOutcome(
            exit_code=proc.returncode,
            stdout=_decode_output(proc.stdout),
            stderr=_decode_output(proc.stderr),
        )
        if not outcome.succeeded:
            logger.debug(
                "privileged_executor.nonzero_exit",
                exit_code=outcome.exit_code,
                stderr=outcome.stderr,
            )
        return outcome
