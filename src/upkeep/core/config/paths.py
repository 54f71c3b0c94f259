"""
Path expansion for config values.

Turns user-written paths such as ``~/.vimrc`` or ``$DOTFILES/vimrc`` into
absolute paths. Variables are looked up in the resolved run environment first
and the process environment second.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path

from upkeep.core.config.env import expand_tilde, substitute_vars
from upkeep.core.errors import ConfigError


def expand_path(
    path: str,
    env: Mapping[str, str] | None = None,
    *,
    base_dir: Path | None = None,
) -> Path:
    """
    Expand ``~`` and environment references and make the path absolute.

    The result is normalized (``..`` collapsed) but symlinks are not
    resolved, since link targets must be inspected as they are on disk.

    Args:
        path: Path as written in the config
        env: Resolved run environment (checked before ``os.environ``)
        base_dir: Directory relative paths are anchored to (defaults to cwd)

    Returns:
        Absolute, normalized path

    Raises:
        ConfigError: If the path references an undefined variable

    Example:
        >>> expand_path("$DOTFILES/vimrc", {"DOTFILES": "/home/me/dotfiles"})
        PosixPath('/home/me/dotfiles/vimrc')
    """
    env = env or {}

    def _lookup(name: str) -> str:
        if name in env:
            return env[name]
        if name in os.environ:
            return os.environ[name]
        raise ConfigError(f"Path '{path}' references undefined variable '{name}'")

    expanded = expand_tilde(substitute_vars(path, _lookup))
    candidate = Path(expanded)
    if not candidate.is_absolute():
        candidate = (base_dir or Path.cwd()) / candidate
    return Path(os.path.normpath(candidate))
