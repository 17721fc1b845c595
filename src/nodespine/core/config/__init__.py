"""Centralized configuration for node-spine.

Quick start::

    from nodespine.core.config import get_settings

    settings = get_settings()
    print(settings.container_executor_path)
"""

from .settings import (
    NodeSpineSettings,
    clear_settings_cache,
    get_settings,
)

__all__ = [
    "NodeSpineSettings",
    "get_settings",
    "clear_settings_cache",
]
