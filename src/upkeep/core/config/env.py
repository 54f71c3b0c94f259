"""Environment resolution helpers.

The ``env`` table of a config may reference other entries, variables listed in
``inherit_env`` and ``~``:

    inherit_env: [HOME, PATH]
    env:
      CODE: ~/code
      DOTFILES: $CODE/dotfiles
      PATH: $DOTFILES/bin:$PATH

Lookup order for a ``$NAME`` reference:
  inherited process env > dotenv file > other entries of ``env``

Inherited values win so that ``PATH: ...:$PATH`` extends the real PATH rather
than referring to itself. References between ``env`` entries are resolved
recursively; a cycle is a configuration error.
"""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from dotenv import dotenv_values

from upkeep.core.errors import ConfigError

_VAR_RE = re.compile(
    r"\$(?:\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)\}|(?P<bare>[A-Za-z_][A-Za-z0-9_]*))"
)


def substitute_vars(text: str, lookup: Callable[[str], str]) -> str:
    """Replace ``$NAME`` and ``${NAME}`` in *text* with ``lookup(NAME)``."""

    def _sub(match: re.Match[str]) -> str:
        return lookup(match.group("braced") or match.group("bare"))

    return _VAR_RE.sub(_sub, text)


def expand_tilde(value: str) -> str:
    """Expand a leading ``~`` (or ``~user``) the way a shell would."""
    if value.startswith("~"):
        return os.path.expanduser(value)
    return value


def read_env_file(path: Path) -> dict[str, str]:
    """Read a dotenv file, dropping keys without values."""
    if not path.exists():
        raise ConfigError(f"env_file '{path}' does not exist")
    values = dotenv_values(path)
    out: dict[str, str] = {}
    for k, v in values.items():
        if k is None or v is None:
            continue
        out[str(k)] = str(v)
    return out


def resolve_env(
    config_env: Mapping[str, str],
    *,
    inherit_env: Iterable[str] = (),
    file_env: Mapping[str, str] | None = None,
    process_env: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Compute the fully expanded environment for a run.

    Args:
        config_env: Raw ``env`` table from the config
        inherit_env: Names copied from the process environment
        file_env: Values read from ``env_file`` (already expanded by dotenv)
        process_env: Process environment (defaults to ``os.environ``)

    Returns:
        Inherited, file and config variables merged, config entries expanded

    Raises:
        ConfigError: On a reference to an unknown variable or a reference cycle
    """
    if process_env is None:
        process_env = os.environ

    base: dict[str, str] = {}
    for name in inherit_env:
        if name in process_env:
            base[name] = process_env[name]
    for k, v in (file_env or {}).items():
        base.setdefault(k, v)

    resolved: dict[str, str] = {}

    def _resolve(key: str, stack: tuple[str, ...]) -> str:
        if key in resolved:
            return resolved[key]
        if key in stack:
            cycle = " -> ".join((*stack[stack.index(key):], key))
            raise ConfigError(f"Cycle in env values: {cycle}")

        def _lookup(name: str) -> str:
            if name in base:
                return base[name]
            if name in config_env:
                return _resolve(name, (*stack, key))
            raise ConfigError(
                f"Env value '{name}' (used by '{key}') is not defined in env, "
                f"env_file or inherit_env"
            )

        value = expand_tilde(substitute_vars(config_env[key], _lookup))
        resolved[key] = value
        return value

    for key in config_env:
        _resolve(key, ())

    merged = dict(base)
    merged.update(resolved)
    return merged
