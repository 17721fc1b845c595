"""Tests for DockerContainerRuntime — launch, signal and no-op lifecycle hooks.

The privileged helper is replaced by the RecordingExecutor from conftest,
so every test inspects the exact invocation the helper would have received.
"""

from __future__ import annotations

import stat
import sys
from pathlib import Path

import pytest
import structlog

from nodespine.core.config import NodeSpineSettings
from nodespine.core.errors import (
    ConfigError,
    ContainerExecutionError,
    DispatchError,
    ErrorCategory,
    LaunchFailedError,
    MissingConfigError,
    ResourceIsolationError,
    SignalFailedError,
)
from nodespine.execution.runtimes import (
    ENV_CONTAINER_TYPE,
    ENV_DOCKER_CONTAINER_IMAGE,
    ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE,
    CGroupsHandler,
    ContainerRuntime,
    ContainerRuntimeContext,
    ContainerSignal,
    DockerClient,
    DockerContainerRuntime,
    ExecutionOutcome,
    LaunchInvocation,
    SignalContext,
    SignalInvocation,
    is_docker_container_requested,
    mount_locations,
)

CID = "container_1_0001_01_000002"

EXPECTED_COMMAND_LINE = (
    f"run --name={CID} --user=nobody -d --workdir=/work --net=host"
    " -v /etc/passwd:/etc/passwd:ro"
    " -v /l1:/l1 -v /l2:/l2 -v /work:/work -v /g1:/g1"
    " centos:7 bash /work/launch_container.sh"
)


def _signal_ctx(**kwargs) -> SignalContext:
    values = {
        "container_id": CID,
        "run_as_user": "nobody",
        "user": "alice",
        "pid": "123",
        "signal": ContainerSignal.KILL,
    }
    values.update(kwargs)
    return SignalContext(**values)


# ── Helpers ──────────────────────────────────────────────────────────────


class TestIsDockerContainerRequested:
    def test_docker_type(self):
        assert is_docker_container_requested({ENV_CONTAINER_TYPE: "docker"}) is True

    def test_other_type(self):
        assert is_docker_container_requested({ENV_CONTAINER_TYPE: "default"}) is False

    def test_missing_key(self):
        assert is_docker_container_requested({"FOO": "bar"}) is False

    def test_none_environment(self):
        assert is_docker_container_requested(None) is False

    def test_case_sensitive(self):
        assert is_docker_container_requested({ENV_CONTAINER_TYPE: "Docker"}) is False


class TestMountLocations:
    def test_order_local_work_log(self):
        assert mount_locations(["/l1", "/l2"], "/work", ["/g1"]) == [
            ("/l1", "/l1"),
            ("/l2", "/l2"),
            ("/work", "/work"),
            ("/g1", "/g1"),
        ]

    def test_empty_lists_leave_work_dir(self):
        assert mount_locations([], "/work", []) == [("/work", "/work")]

    def test_duplicates_kept(self):
        pairs = mount_locations(["/work"], "/work", [])
        assert pairs == [("/work", "/work"), ("/work", "/work")]


# ── Protocol ─────────────────────────────────────────────────────────────


class TestProtocol:
    def test_satisfies_container_runtime(self):
        assert isinstance(DockerContainerRuntime(), ContainerRuntime)

    def test_runtime_name(self):
        assert DockerContainerRuntime.runtime_name == "docker"

    def test_repr(self, runtime):
        assert repr(runtime) == "DockerContainerRuntime(initialized=True)"
        assert "initialized=False" in repr(DockerContainerRuntime())

    def test_initialize_builds_default_collaborators(self, settings):
        rt = DockerContainerRuntime()
        rt.initialize(settings)
        assert rt._state.executor.executor_path == settings.container_executor_path
        assert rt._state.docker_client.command_dir == settings.docker_command_dir
        assert isinstance(rt._state.isolation_groups, CGroupsHandler)


class TestNoOps:
    def test_prepare_and_reap_never_call_executor(self, runtime, executor):
        ctx = ContainerRuntimeContext(container_id=CID, run_as_user="nobody", user="alice")
        runtime.prepare_container(ctx)
        runtime.reap_container(ctx)
        assert executor.calls == []

    def test_noops_work_before_initialize(self):
        ctx = ContainerRuntimeContext(container_id=CID, run_as_user="nobody", user="alice")
        rt = DockerContainerRuntime()
        rt.prepare_container(ctx)
        rt.reap_container(ctx)


# ── Run command ──────────────────────────────────────────────────────────


class TestBuildRunCommand:
    def test_full_command_line(self, runtime, make_launch_ctx):
        command = runtime.build_run_command(make_launch_ctx())
        assert command.command_line() == EXPECTED_COMMAND_LINE

    def test_mount_order(self, runtime, make_launch_ctx):
        command = runtime.build_run_command(make_launch_ctx())
        assert command.mounts == [
            ("/etc/passwd", "/etc/passwd"),
            ("/l1", "/l1"),
            ("/l2", "/l2"),
            ("/work", "/work"),
            ("/g1", "/g1"),
        ]

    def test_passwd_mount_is_read_only(self, runtime, make_launch_ctx):
        args = runtime.build_run_command(make_launch_ctx()).arguments()
        assert "/etc/passwd:/etc/passwd:ro" in args

    def test_user_is_run_as_user(self, runtime, make_launch_ctx):
        args = runtime.build_run_command(make_launch_ctx(run_as_user="yarn")).arguments()
        assert "--user=yarn" in args

    def test_override_disabled(self, runtime, make_launch_ctx):
        ctx = make_launch_ctx(environment={
            ENV_DOCKER_CONTAINER_IMAGE: "centos:7",
            ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE: "true",
        })
        args = runtime.build_run_command(ctx).arguments()
        assert args[-1] == "centos:7"
        assert "bash" not in args

    @pytest.mark.parametrize("flag", ["false", "TRUE", "1", ""])
    def test_override_kept_unless_exactly_true(self, runtime, make_launch_ctx, flag):
        ctx = make_launch_ctx(environment={
            ENV_DOCKER_CONTAINER_IMAGE: "centos:7",
            ENV_DOCKER_CONTAINER_RUN_OVERRIDE_DISABLE: flag,
        })
        args = runtime.build_run_command(ctx).arguments()
        assert args[-2:] == ["bash", "/work/launch_container.sh"]

    def test_no_local_or_log_dirs(self, runtime, make_launch_ctx):
        command = runtime.build_run_command(make_launch_ctx(local_dirs=[], log_dirs=[]))
        assert command.mounts == [("/etc/passwd", "/etc/passwd"), ("/work", "/work")]

    def test_missing_image(self, runtime, make_launch_ctx):
        with pytest.raises(MissingConfigError) as exc_info:
            runtime.build_run_command(make_launch_ctx(environment={}))
        err = exc_info.value
        assert err.message == f"{ENV_DOCKER_CONTAINER_IMAGE} not set!"
        assert err.category == ErrorCategory.CONFIG
        assert err.context.container_id == CID

    def test_empty_image(self, runtime, make_launch_ctx):
        with pytest.raises(MissingConfigError):
            runtime.build_run_command(make_launch_ctx(environment={ENV_DOCKER_CONTAINER_IMAGE: ""}))

    def test_requires_initialize(self, make_launch_ctx):
        with pytest.raises(ConfigError, match="before initialize"):
            DockerContainerRuntime().build_run_command(make_launch_ctx())


# ── cgroup parent ────────────────────────────────────────────────────────


class TestCgroupParent:
    @pytest.fixture
    def cgroup_runtime(self, executor, tmp_path):
        rt = DockerContainerRuntime(executor)
        rt.initialize(NodeSpineSettings(tmp_dir=tmp_path, docker_cgroup_parent_enabled=True))
        return rt

    def test_disabled_by_default(self, runtime, make_launch_ctx):
        command = runtime.build_run_command(make_launch_ctx(resources_options="cgroups=/cg"))
        assert command.cgroup_parent is None

    def test_enabled_sets_parent(self, cgroup_runtime, make_launch_ctx):
        command = cgroup_runtime.build_run_command(make_launch_ctx(resources_options="cgroups=/cg"))
        assert command.cgroup_parent == f"/hadoop-yarn/{CID}"
        args = command.arguments()
        assert args.index(f"--cgroup-parent=/hadoop-yarn/{CID}") < args.index("centos:7")

    def test_enabled_but_no_restrictions(self, cgroup_runtime, make_launch_ctx):
        command = cgroup_runtime.build_run_command(make_launch_ctx(resources_options="cgroups=none"))
        assert command.cgroup_parent is None

    def test_unresolvable_group(self, executor, tmp_path, make_launch_ctx):
        rt = DockerContainerRuntime(executor, isolation_groups=CGroupsHandler(""))
        rt.initialize(NodeSpineSettings(tmp_dir=tmp_path, docker_cgroup_parent_enabled=True))
        with pytest.raises(ResourceIsolationError) as exc_info:
            rt.launch_container(make_launch_ctx(resources_options="cgroups=/cg"))
        assert exc_info.value.category == ErrorCategory.ISOLATION
        assert executor.calls == []

    def test_provider_os_error_is_wrapped(self, executor, tmp_path, make_launch_ctx):
        class MissingMountProvider:
            def group_path_for(self, container_id: str) -> str:
                raise OSError("cgroup mount missing")

        rt = DockerContainerRuntime(executor, isolation_groups=MissingMountProvider())
        rt.initialize(NodeSpineSettings(tmp_dir=tmp_path, docker_cgroup_parent_enabled=True))
        with pytest.raises(ResourceIsolationError) as exc_info:
            rt.launch_container(make_launch_ctx(resources_options="cgroups=/cg"))
        err = exc_info.value
        assert isinstance(err.cause, OSError)
        assert err.__cause__ is err.cause
        assert err.context.operation == "launch"
        assert err.context.container_id == CID
        assert executor.calls == []


# ── Launch ───────────────────────────────────────────────────────────────


class TestLaunch:
    def test_single_invocation(self, runtime, executor, make_launch_ctx):
        runtime.launch_container(make_launch_ctx())
        assert len(executor.calls) == 1
        assert isinstance(executor.last_invocation, LaunchInvocation)

    def test_argument_layout(self, runtime, executor, settings, make_launch_ctx):
        runtime.launch_container(make_launch_ctx())
        args = executor.last_invocation.to_args()
        assert len(args) == 13
        assert args[:9] == [
            "nobody",
            "alice",
            "4",
            "application_1_0001",
            CID,
            "/work",
            "/nm-private/launch_container.sh",
            "/nm-private/container_tokens",
            "/nm-private/container.pid",
        ]
        assert args[9] == "/l1%/l2"
        assert args[10] == "/g1"
        assert Path(args[11]).parent == settings.docker_command_dir
        assert args[12] == "cgroups=none"

    def test_tc_command_file_appended(self, runtime, executor, make_launch_ctx):
        runtime.launch_container(make_launch_ctx(tc_command_file="/tc/cmd"))
        args = executor.last_invocation.to_args()
        assert len(args) == 14
        assert args[-1] == "/tc/cmd"

    def test_command_file_contents(self, runtime, executor, make_launch_ctx):
        runtime.launch_container(make_launch_ctx())
        command_file = Path(executor.last_invocation.command_file)
        assert command_file.name.startswith(f"docker.{CID}.")
        assert command_file.suffix == ".cmd"
        assert command_file.read_text(encoding="utf-8") == EXPECTED_COMMAND_LINE

    def test_launch_environment_forwarded(self, runtime, executor, make_launch_ctx):
        ctx = make_launch_ctx()
        runtime.launch_container(ctx)
        assert executor.calls[0][1] == dict(ctx.environment)

    def test_missing_image_invokes_nothing(self, runtime, executor, settings, make_launch_ctx):
        with pytest.raises(MissingConfigError):
            runtime.launch_container(make_launch_ctx(environment={}))
        assert executor.calls == []
        assert not settings.docker_command_dir.exists()

    def test_helper_failure_preserved(self, runtime, executor, make_launch_ctx):
        executor.outcome = ExecutionOutcome(exit_code=1, stdout="x", stderr="y")
        with pytest.raises(LaunchFailedError) as exc_info:
            runtime.launch_container(make_launch_ctx())
        err = exc_info.value
        assert (err.exit_code, err.output, err.error_output) == (1, "x", "y")
        assert err.message == "Launch container failed"
        assert err.category == ErrorCategory.RUNTIME
        assert err.context.container_id == CID
        assert err.context.app_id == "application_1_0001"

    def test_dispatch_error_gets_context(self, runtime, executor, make_launch_ctx):
        executor.raises = DispatchError("no helper")
        with pytest.raises(DispatchError) as exc_info:
            runtime.launch_container(make_launch_ctx())
        assert exc_info.value.context.operation == "launch"
        assert exc_info.value.context.container_id == CID

    def test_unwritable_command_dir(self, executor, tmp_path, make_launch_ctx):
        blocker = tmp_path / "not-a-dir"
        blocker.write_text("")
        rt = DockerContainerRuntime(executor, docker_client=DockerClient(blocker / "cmds"))
        rt.initialize(NodeSpineSettings(tmp_dir=tmp_path))
        with pytest.raises(ContainerExecutionError, match="Unable to write docker command"):
            rt.launch_container(make_launch_ctx())
        assert executor.calls == []

    def test_requires_initialize(self, make_launch_ctx):
        with pytest.raises(ConfigError):
            DockerContainerRuntime().launch_container(make_launch_ctx())

    def test_log_context_bound_during_helper_call(self, runtime, executor, make_launch_ctx):
        runtime.launch_container(make_launch_ctx())
        assert executor.log_contexts[0]["operation"] == "launch"
        assert executor.log_contexts[0]["container_id"] == CID
        assert "container_id" not in structlog.contextvars.get_contextvars()

    def test_log_context_cleared_after_failure(self, runtime, executor, make_launch_ctx):
        executor.outcome = ExecutionOutcome(exit_code=1)
        with pytest.raises(LaunchFailedError):
            runtime.launch_container(make_launch_ctx())
        assert "container_id" not in structlog.contextvars.get_contextvars()


@pytest.mark.subprocess
@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell script helper")
class TestLaunchRealHelper:
    def _runtime(self, tmp_path, body: str) -> DockerContainerRuntime:
        helper = tmp_path / "fake-container-executor"
        helper.write_text("#!/bin/sh\n" + body)
        helper.chmod(helper.stat().st_mode | stat.S_IXUSR)
        rt = DockerContainerRuntime()
        rt.initialize(NodeSpineSettings(container_executor_path=str(helper), tmp_dir=tmp_path))
        return rt

    def test_non_utf8_stderr_is_launch_failure(self, tmp_path, make_launch_ctx):
        rt = self._runtime(tmp_path, "printf '\\377\\376bad' >&2\nexit 1\n")
        with pytest.raises(LaunchFailedError) as exc_info:
            rt.launch_container(make_launch_ctx())
        err = exc_info.value
        assert err.exit_code == 1
        assert err.output == ""
        assert err.error_output.encode("utf-8", errors="surrogateescape") == b"\xff\xfebad"

    def test_success(self, tmp_path, make_launch_ctx):
        rt = self._runtime(tmp_path, "exit 0\n")
        rt.launch_container(make_launch_ctx())


# ── Signal ───────────────────────────────────────────────────────────────


class TestSignal:
    def test_argument_layout(self, runtime, executor):
        runtime.signal_container(_signal_ctx())
        invocation = executor.last_invocation
        assert isinstance(invocation, SignalInvocation)
        assert invocation.to_args() == ["nobody", "alice", "2", "123", "9"]

    @pytest.mark.parametrize(
        ("signal", "code"),
        [("NULL", "0"), ("QUIT", "3"), ("SIGKILL", "9"), ("TERM", "15"), (15, "15")],
    )
    def test_signal_codes(self, runtime, executor, signal, code):
        runtime.signal_container(_signal_ctx(signal=signal))
        assert executor.last_invocation.to_args()[-1] == code

    def test_single_invocation(self, runtime, executor):
        runtime.signal_container(_signal_ctx())
        assert len(executor.calls) == 1

    def test_helper_failure(self, runtime, executor):
        executor.outcome = ExecutionOutcome(exit_code=255, stdout="", stderr="no such process")
        with pytest.raises(SignalFailedError) as exc_info:
            runtime.signal_container(_signal_ctx())
        err = exc_info.value
        assert err.exit_code == 255
        assert err.error_output == "no such process"
        assert err.context.operation == "signal"

    def test_dispatch_error(self, runtime, executor):
        executor.raises = DispatchError("no helper")
        with pytest.raises(DispatchError) as exc_info:
            runtime.signal_container(_signal_ctx())
        assert exc_info.value.context.operation == "signal"

    def test_log_context_bound_during_helper_call(self, runtime, executor):
        runtime.signal_container(_signal_ctx())
        assert executor.log_contexts[0]["operation"] == "signal"
        assert executor.log_contexts[0]["container_id"] == CID
        assert "container_id" not in structlog.contextvars.get_contextvars()

    def test_requires_initialize(self):
        with pytest.raises(ConfigError):
            DockerContainerRuntime().signal_container(_signal_ctx())
