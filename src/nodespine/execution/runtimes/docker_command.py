"""Docker run commands and the command-file client.

``DockerRunCommand`` is the in-memory description of one ``docker run``:
image, user, mounts, network, detach, override command and cgroup parent.
``DockerClient`` serializes it to a command file that the privileged helper
reads and executes; the runtime never talks to the docker daemon itself.

Serialized form (one line, space separated)::

    run --name=container_01 --user=nobody -d --workdir=/work --net=host
        -v /etc/passwd:/etc/passwd:ro -v /work:/work centos:7
        bash /work/launch_container.sh

Flags appear in the order their setters were called; image and override
command always come last.

Tags:
    node-spine, execution, runtimes, docker, command-file
"""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

from nodespine.core.errors import ContainerExecutionError, ValidationError
from nodespine.core.logging import get_logger

logger = get_logger(__name__)

RUN_COMMAND = "run"


class DockerRunCommand:
    """Builder for a single ``docker run`` invocation.

    Setters return ``self`` so a command reads as one chain::

        cmd = (
            DockerRunCommand(container_id, run_as_user, image)
            .detach_on_run()
            .set_container_work_dir(work_dir)
            .set_network_type("host")
        )
    """

    def __init__(self, container_id: str, user: str, image: str) -> None:
        if not image:
            raise ValidationError("docker image must not be empty", field="image", value=image)
        self.container_id = container_id
        self.user = user
        self.image = image
        self.detach = False
        self.work_dir: str | None = None
        self.network_type: str | None = None
        self.mounts: list[tuple[str, str]] = []
        self.cgroup_parent: str | None = None
        self.override_command: list[str] | None = None
        self._arguments: list[str] = [f"--name={container_id}", f"--user={user}"]

    def detach_on_run(self) -> DockerRunCommand:
        self.detach = True
        self._arguments.append("-d")
        return self

    def set_container_work_dir(self, work_dir: str) -> DockerRunCommand:
        self.work_dir = work_dir
        self._arguments.append(f"--workdir={work_dir}")
        return self

    def set_network_type(self, network_type: str) -> DockerRunCommand:
        self.network_type = network_type
        self._arguments.append(f"--net={network_type}")
        return self

    def add_mount_location(
        self, source: str, destination: str, *, read_only: bool = False,
    ) -> DockerRunCommand:
        """Bind ``source`` on the host to ``destination`` in the container."""
        self.mounts.append((source, destination))
        binding = f"{source}:{destination}"
        if read_only:
            binding += ":ro"
        self._arguments.extend(["-v", binding])
        return self

    def set_cgroup_parent(self, parent_path: str) -> DockerRunCommand:
        self.cgroup_parent = parent_path
        self._arguments.append(f"--cgroup-parent={parent_path}")
        return self

    def set_override_command_with_args(self, command: list[str]) -> DockerRunCommand:
        """Replace the image's entrypoint/cmd with ``command``."""
        self.override_command = list(command)
        return self

    def arguments(self) -> list[str]:
        """Full argv after the docker binary, starting with ``run``."""
        if not self.image:
            raise ValidationError("docker image must not be empty", field="image", value=self.image)
        args = [RUN_COMMAND, *self._arguments, self.image]
        if self.override_command:
            args.extend(self.override_command)
        return args

    def command_line(self) -> str:
        return " ".join(self.arguments())

    def __repr__(self) -> str:
        return f"DockerRunCommand({self.command_line()!r})"


class DockerClient:
    """Writes docker commands to files the privileged helper can execute.

    Files land in ``<tmp_dir>/nm-docker-cmds`` as
    ``docker.<container_id>.<random>.cmd`` and are left for the caller to
    clean up after the container is reaped.
    """

    TMP_FILE_PREFIX = "docker."
    TMP_FILE_SUFFIX = ".cmd"

    def __init__(self, command_dir: str | Path) -> None:
        self.command_dir = Path(command_dir)

    def write_command_to_temp_file(self, command: DockerRunCommand, file_prefix: str) -> str:
        """Serialize ``command`` and return the path of the written file."""
        try:
            self.command_dir.mkdir(parents=True, exist_ok=True)
            fd, path = tempfile.mkstemp(
                prefix=f"{self.TMP_FILE_PREFIX}{file_prefix}.",
                suffix=self.TMP_FILE_SUFFIX,
                dir=self.command_dir,
            )
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(command.command_line())
        except OSError as exc:
            logger.warning(
                "docker_client.write_failed",
                container_id=command.container_id,
                command_dir=str(self.command_dir),
                error=str(exc),
            )
            raise ContainerExecutionError(
                "Unable to write docker command to temporary file!",
                cause=exc,
            ).with_context(container_id=command.container_id) from exc

        logger.debug("docker_client.command_written", container_id=command.container_id, path=path)
        return path
