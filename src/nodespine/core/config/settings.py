"""
Centralized settings for node-spine.

One validated, cached, immutable settings object. Runtimes receive it once
through ``initialize()`` and only read it afterwards, so it is safe to share
across concurrent launch and signal calls.

All fields can be set via ``NODESPINE_*`` environment variables (e.g.
``NODESPINE_CONTAINER_EXECUTOR_PATH=/opt/hadoop/bin/container-executor``)
or a ``.env`` file.

Tags:
    node-spine, configuration, settings, pydantic, caching
"""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeSpineSettings(BaseSettings):
    """Node-level configuration for the container runtimes."""

    model_config = SettingsConfigDict(
        env_prefix="NODESPINE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # ── Privileged helper ────────────────────────────────────────
    container_executor_path: str = Field(
        default="container-executor",
        description="Path to the setuid privileged helper binary",
    )

    # ── Docker ───────────────────────────────────────────────────
    tmp_dir: Path = Field(
        default=Path(tempfile.gettempdir()) / "nodespine",
        description="Base temp dir; docker command files go under nm-docker-cmds/",
    )

    # ── cgroups ──────────────────────────────────────────────────
    cgroups_hierarchy: str = Field(
        default="/hadoop-yarn",
        description="cgroup hierarchy under which container groups are created",
    )
    docker_cgroup_parent_enabled: bool = Field(
        default=False,
        description="Attach --cgroup-parent to docker run (off until docker supports net_cls)",
    )

    # ── Logging ──────────────────────────────────────────────────
    log_level: str = Field(default="INFO")
    log_format: Literal["json", "console"] = Field(default="json")

    @field_validator("container_executor_path")
    @classmethod
    def _executor_path_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("container_executor_path must not be empty")
        return value

    @property
    def docker_command_dir(self) -> Path:
        """Directory that receives serialized docker run commands."""
        return self.tmp_dir / "nm-docker-cmds"


# ── Settings factory with caching ────────────────────────────────────────

_settings_cache: dict[str, NodeSpineSettings] = {}


def get_settings(*, _force_reload: bool = False) -> NodeSpineSettings:
    """Load, validate, and cache a :class:`NodeSpineSettings` instance."""
    if _force_reload or "default" not in _settings_cache:
        _settings_cache["default"] = NodeSpineSettings()
    return _settings_cache["default"]


def clear_settings_cache() -> None:
    """Drop the cached settings (tests, or after changing the environment)."""
    _settings_cache.clear()
