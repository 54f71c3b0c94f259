"""
Configuration models and loading.

This module provides Pydantic models for upkeep configuration, the file
loader, env resolution and path expansion.
"""

from .loader import (
    get_default_config_path,
    get_xdg_config_home,
    load_config,
    load_config_file,
    parse_config,
)
from .models import (
    CommandSpec,
    ConflictPolicy,
    GitRemote,
    LinkEntry,
    LinkGroup,
    RepoSpec,
    SettingsConfig,
    UpkeepConfig,
)
from .paths import expand_path

__all__ = [
    # Models
    "CommandSpec",
    "ConflictPolicy",
    "GitRemote",
    "LinkEntry",
    "LinkGroup",
    "RepoSpec",
    "SettingsConfig",
    "UpkeepConfig",
    # Loader functions
    "get_default_config_path",
    "get_xdg_config_home",
    "load_config",
    "load_config_file",
    "parse_config",
    # Paths
    "expand_path",
]
