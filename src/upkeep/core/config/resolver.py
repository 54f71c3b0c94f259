"""
Turn a validated ``UpkeepConfig`` into runnable task specs.

This is the last step before a run starts and the last place a
``ConfigError`` can be raised: env values are resolved, every path is
expanded to an absolute path, and link targets are checked for duplicates
across all link groups.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

from upkeep.core.errors import ConfigError
from upkeep.core.links.walker import iter_source_files
from upkeep.core.tasks.models import TaskKind, TaskSpec

from .env import read_env_file, resolve_env
from .models import (
    CommandSpec,
    CommandTaskConfig,
    GitTaskConfig,
    LinkEntry,
    LinkGroup,
    LinkTaskConfig,
    RepoSpec,
    SettingsConfig,
    UpkeepConfig,
)
from .paths import expand_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedConfig:
    """Config with env resolved and paths expanded, ready to schedule."""

    tasks: list[TaskSpec]
    env: dict[str, str] = field(default_factory=dict)
    settings: SettingsConfig = field(default_factory=SettingsConfig)


def resolve_config(
    config: UpkeepConfig,
    *,
    base_dir: Path | None = None,
    process_env: Mapping[str, str] | None = None,
) -> ResolvedConfig:
    """
    Resolve env and expand every task's paths.

    Args:
        config: Validated configuration
        base_dir: Anchor for relative paths (usually the config file's directory)
        process_env: Process environment (defaults to ``os.environ``)

    Returns:
        ResolvedConfig with one TaskSpec per configured task, in config order

    Raises:
        ConfigError: On env resolution errors, undefined path variables or
                     two links targeting the same path
    """
    file_env: dict[str, str] = {}
    if config.env_file:
        file_env = read_env_file(expand_path(config.env_file, base_dir=base_dir))

    env = resolve_env(
        config.env,
        inherit_env=config.inherit_env,
        file_env=file_env,
        process_env=process_env,
    )

    def _expand(p: str) -> str:
        return str(expand_path(p, env, base_dir=base_dir))

    specs: list[TaskSpec] = []
    for task_id, task in config.tasks.items():
        depends_on = tuple(task.depends_on)
        if isinstance(task, GitTaskConfig):
            payload = RepoSpec(
                url=task.url,
                path=_expand(task.path),
                branch=task.branch,
                remote=task.remote,
                remotes=list(task.remotes),
            )
            specs.append(TaskSpec(task_id, TaskKind.GIT, depends_on, payload))
        elif isinstance(task, LinkTaskConfig):
            group = LinkGroup(
                conflict_policy=task.conflict_policy,
                links=[
                    LinkEntry(source=_expand(e.source), target=_expand(e.target))
                    for e in task.links
                ],
                from_dir=_expand(task.from_dir) if task.from_dir else None,
                to_dir=_expand(task.to_dir) if task.to_dir else None,
                backup_dir=_expand(task.backup_dir) if task.backup_dir else None,
                ignore=list(task.ignore),
            )
            specs.append(TaskSpec(task_id, TaskKind.LINK, depends_on, group))
        elif isinstance(task, CommandTaskConfig):
            command = CommandSpec(
                run=task.run,
                cwd=_expand(task.cwd) if task.cwd else None,
                env={**env, **task.env},
                timeout_seconds=task.timeout_seconds,
                run_if=task.run_if,
            )
            specs.append(TaskSpec(task_id, TaskKind.COMMAND, depends_on, command))

    _check_duplicate_targets(specs)
    logger.debug(f"Resolved {len(specs)} task(s)")
    return ResolvedConfig(tasks=specs, env=env, settings=config.settings)


def _check_duplicate_targets(specs: list[TaskSpec]) -> None:
    """
    No two link tasks in one run may manage the same target.

    Explicit targets are always checked. ``from_dir`` trees that already
    exist are walked too; trees created later in the run (by a clone) are
    left to the run-time ``TargetRegistry``.
    """
    owners: dict[str, str] = {}
    for spec in specs:
        if spec.kind is not TaskKind.LINK or not isinstance(spec.payload, LinkGroup):
            continue
        for target in _link_targets(spec.payload):
            previous = owners.get(target)
            if previous is not None:
                raise ConfigError(
                    f"Link target '{target}' is declared twice "
                    f"(tasks '{previous}' and '{spec.id}')"
                )
            owners[target] = spec.id


def _link_targets(group: LinkGroup) -> list[str]:
    targets = [entry.target for entry in group.links]
    if group.from_dir and group.to_dir and Path(group.from_dir).is_dir():
        to_dir = Path(group.to_dir)
        targets += [
            str(to_dir / rel) for rel in iter_source_files(Path(group.from_dir), group.ignore)
        ]
    return targets
