"""
Shared pytest fixtures for node-spine tests.

This module provides:
- Settings isolation (no NODESPINE_* leakage, fresh settings cache)
- A recording stand-in for the privileged helper executor
- A LaunchContext factory with realistic defaults

Usage:
    def test_something(runtime, executor, make_launch_ctx):
        runtime.launch_container(make_launch_ctx())
        assert len(executor.calls) == 1
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import pytest
import structlog

from nodespine.core.config import NodeSpineSettings, clear_settings_cache
from nodespine.execution.runtimes import (
    ENV_DOCKER_CONTAINER_IMAGE,
    DockerContainerRuntime,
    ExecutionOutcome,
    LaunchContext,
    PrivilegedOperationExecutor,
)

EXECUTOR_PATH = "/usr/bin/container-executor"
CONTAINER_ID = "container_1_0001_01_000002"
APP_ID = "application_1_0001"


# =============================================================================
# Recording executor
# =============================================================================


class RecordingExecutor(PrivilegedOperationExecutor):
    """Records every invocation instead of spawning the helper."""

    def __init__(
        self,
        outcome: ExecutionOutcome | None = None,
        raises: Exception | None = None,
    ) -> None:
        super().__init__(EXECUTOR_PATH)
        self.outcome = outcome or ExecutionOutcome(exit_code=0)
        self.raises = raises
        self.calls: list[tuple[Any, dict[str, str]]] = []
        self.log_contexts: list[dict[str, Any]] = []

    def execute(
        self,
        invocation: Any,
        *,
        environment: Mapping[str, str] | None = None,
    ) -> ExecutionOutcome:
        self.calls.append((invocation, dict(environment or {})))
        self.log_contexts.append(structlog.contextvars.get_contextvars())
        if self.raises is not None:
            raise self.raises
        return self.outcome

    @property
    def last_invocation(self) -> Any:
        return self.calls[-1][0]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch):
    """Drop NODESPINE_* env vars and the settings cache around every test."""
    for key in list(os.environ):
        if key.startswith("NODESPINE_"):
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    yield
    clear_settings_cache()


@pytest.fixture
def settings(tmp_path: Path) -> NodeSpineSettings:
    return NodeSpineSettings(
        container_executor_path=EXECUTOR_PATH,
        tmp_dir=tmp_path,
    )


@pytest.fixture
def executor() -> RecordingExecutor:
    return RecordingExecutor()


@pytest.fixture
def runtime(executor: RecordingExecutor, settings: NodeSpineSettings) -> DockerContainerRuntime:
    rt = DockerContainerRuntime(executor)
    rt.initialize(settings)
    return rt


@pytest.fixture
def make_launch_ctx() -> Callable[..., LaunchContext]:
    """Factory for LaunchContext; keyword overrides replace the defaults."""

    def _make(**overrides: Any) -> LaunchContext:
        values: dict[str, Any] = {
            "container_id": CONTAINER_ID,
            "app_id": APP_ID,
            "run_as_user": "nobody",
            "user": "alice",
            "container_work_dir": "/work",
            "local_dirs": ["/l1", "/l2"],
            "log_dirs": ["/g1"],
            "resources_options": "cgroups=none",
            "container_script_path": "/nm-private/launch_container.sh",
            "tokens_path": "/nm-private/container_tokens",
            "pid_file_path": "/nm-private/container.pid",
            "environment": {ENV_DOCKER_CONTAINER_IMAGE: "centos:7"},
        }
        values.update(overrides)
        return LaunchContext(**values)

    return _make
