"""cgroup path resolution for container isolation groups.

The docker runtime can place a container under the node's cgroup hierarchy
with ``--cgroup-parent``. It asks an ``IsolationGroupProvider`` for the
group path of a container; ``CGroupsHandler`` is the provider backed by the
configured hierarchy.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from nodespine.core.errors import ErrorCategory, NodeSpineError


class ResourceHandlerError(NodeSpineError):
    """Raised when a cgroup path cannot be computed."""

    default_category = ErrorCategory.ISOLATION


@runtime_checkable
class IsolationGroupProvider(Protocol):
    def group_path_for(self, container_id: str) -> str:
        """Relative group path for ``container_id`` (no leading slash)."""
        ...


class CGroupsHandler:
    """Computes relative cgroup paths under a fixed hierarchy.

    >>> CGroupsHandler("/hadoop-yarn/").group_path_for("container_01")
    'hadoop-yarn/container_01'
    """

    def __init__(self, hierarchy: str) -> None:
        self.hierarchy = hierarchy.strip("/")

    def group_path_for(self, container_id: str) -> str:
        if not self.hierarchy:
            raise ResourceHandlerError("cgroups hierarchy is not configured")
        if not container_id or "/" in container_id or container_id in (".", ".."):
            raise ResourceHandlerError(f"Invalid cgroup id: {container_id!r}")
        return f"{self.hierarchy}/{container_id}"
