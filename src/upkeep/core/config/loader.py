"""
Configuration file loading.

Reads an upkeep config from YAML, TOML or JSON, applies environment variable
overrides and validates the result into an ``UpkeepConfig``.

Config file lookup order:
    1. Explicit path (``--config``)
    2. ``$UPKEEP_CONFIG``
    3. ``$XDG_CONFIG_HOME/upkeep/upkeep.yaml`` (then ``.yml``, ``.toml``, ``.json``)
"""

import json
import logging
import os
import tomllib
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from upkeep.core.errors import ConfigError

from .models import UpkeepConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAMES = ("upkeep.yaml", "upkeep.yml", "upkeep.toml", "upkeep.json")


def get_xdg_config_home() -> Path:
    """
    Get XDG config home directory.

    Returns:
        Path to config directory (defaults to ~/.config)
    """
    if xdg_home := os.environ.get("XDG_CONFIG_HOME"):
        return Path(xdg_home)
    return Path.home() / ".config"


def get_default_config_path() -> Path:
    """
    Find the config file to use when none is given explicitly.

    Returns:
        First existing candidate, or the preferred YAML location if none exist
    """
    if env_path := os.environ.get("UPKEEP_CONFIG"):
        return Path(env_path).expanduser()

    config_dir = get_xdg_config_home() / "upkeep"
    for name in CONFIG_FILENAMES:
        candidate = config_dir / name
        if candidate.exists():
            return candidate
    return config_dir / CONFIG_FILENAMES[0]


def load_config_file(path: Path) -> dict[str, Any]:
    """
    Parse a config file based on its extension.

    Args:
        path: Path to a .yaml/.yml, .toml or .json file

    Returns:
        Parsed top-level mapping (empty dict for an empty YAML file)

    Raises:
        ConfigError: If the file is missing, unreadable, malformed or not a mapping
    """
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")

    suffix = path.suffix.lower()
    try:
        if suffix in (".yaml", ".yml"):
            with path.open(encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        elif suffix == ".toml":
            with path.open("rb") as f:
                data = tomllib.load(f)
        elif suffix == ".json":
            with path.open(encoding="utf-8") as f:
                data = json.load(f)
        else:
            raise ConfigError(
                f"Unsupported config format '{suffix}' for {path} (use .yaml, .toml or .json)"
            )
    except (yaml.YAMLError, tomllib.TOMLDecodeError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse config at {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config at {path}: {e.strerror}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Config at {path} must be a mapping at the top level")
    return data


def apply_env_overrides(config_dict: dict[str, Any]) -> dict[str, Any]:
    """
    Apply environment variable overrides to configuration.

    Supported env vars:
        UPKEEP_FAIL_FAST - overrides settings.fail_fast
        UPKEEP_MAX_WORKERS - overrides settings.max_workers

    Args:
        config_dict: Configuration dictionary to override

    Returns:
        Configuration dictionary with env var overrides applied
    """
    result = config_dict.copy()
    settings = dict(result.get("settings") or {})

    if fail_fast_str := os.environ.get("UPKEEP_FAIL_FAST"):
        settings["fail_fast"] = fail_fast_str.lower() not in ("false", "0", "no", "")

    if workers_str := os.environ.get("UPKEEP_MAX_WORKERS"):
        try:
            settings["max_workers"] = int(workers_str)
        except ValueError:
            logger.warning(f"Invalid UPKEEP_MAX_WORKERS value '{workers_str}', ignoring")

    if settings:
        result["settings"] = settings
    return result


def parse_config(data: dict[str, Any], source: str = "<config>") -> UpkeepConfig:
    """
    Validate a raw mapping into an ``UpkeepConfig``.

    Raises:
        ConfigError: Wrapping the pydantic validation errors
    """
    try:
        return UpkeepConfig.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        raise ConfigError(f"Invalid config {source}: {problems}") from e


def load_config(path: Path | None = None) -> UpkeepConfig:
    """
    Load and validate configuration.

    Args:
        path: Config file path (defaults to ``get_default_config_path()``)

    Returns:
        Validated UpkeepConfig instance

    Raises:
        ConfigError: If the file cannot be read or fails validation

    Example:
        >>> config = load_config(Path("~/.config/upkeep/upkeep.yaml").expanduser())
        >>> sorted(config.tasks)
        ['dotfiles', 'links']
    """
    if path is None:
        path = get_default_config_path()

    logger.debug(f"Loading config from {path}")
    data = apply_env_overrides(load_config_file(path))
    return parse_config(data, source=str(path))
