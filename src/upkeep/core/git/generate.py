"""
Generate git tasks from working copies already on disk.

``find_repos`` walks search paths for directories holding a ``.git``
directory, ``read_remotes`` lists their remotes, and ``generate_git_tasks``
turns them into ``kind: git`` task tables. ``merge_git_tasks`` folds them
into an existing config so a machine set up by hand can be captured once
and converged from then on.

Excludes are plain substrings: any path containing one is skipped along with
everything below it.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from collections.abc import Iterable, Sequence
from pathlib import Path
from typing import Any

import yaml

from upkeep.core.config.loader import load_config_file
from upkeep.core.config.paths import expand_path
from upkeep.core.errors import ConfigError, TaskError

logger = logging.getLogger(__name__)

GENERATED_HEADER = (
    "# Git tasks written by `upkeep generate git`. Edit freely; rerunning the\n"
    "# command updates remotes of the generated tasks and keeps everything else.\n"
)

_REMOTE_URL_KEY = re.compile(r"^remote\.(?P<name>.+)\.url$")


def find_repos(search_paths: Iterable[Path], excludes: Sequence[str] = ()) -> list[Path]:
    """
    Find git working copies below *search_paths*.

    Args:
        search_paths: Directories to walk (symlinked directories are not followed)
        excludes: Substrings; a path containing any of them is not searched

    Returns:
        Sorted working copy roots
    """
    found: set[Path] = set()
    for search_path in search_paths:
        logger.debug(f"Searching for repositories in {search_path}")
        for dirpath, dirnames, _filenames in os.walk(search_path):
            if _excluded(dirpath, excludes):
                dirnames[:] = []
                continue
            if ".git" in dirnames:
                found.add(Path(dirpath))
                dirnames.remove(".git")
            dirnames[:] = [
                d for d in dirnames if not _excluded(os.path.join(dirpath, d), excludes)
            ]
    logger.debug(f"Found {len(found)} repositories")
    return sorted(found)


def _excluded(path: str, excludes: Sequence[str]) -> bool:
    return any(exclude in path for exclude in excludes)


def read_remotes(path: Path) -> dict[str, str]:
    """
    Return ``{remote name: url}`` for a working copy, in git config order.

    Raises:
        TaskError: If git cannot read the repository config
    """
    try:
        result = subprocess.run(
            ["git", "config", "--local", "--get-regexp", r"^remote\..*\.url$"],
            cwd=path,
            capture_output=True,
            text=True,
            check=False,
        )
    except FileNotFoundError as e:
        raise TaskError("git executable not found") from e
    # Exit status 1 means no remote is configured.
    if result.returncode not in (0, 1):
        raise TaskError(f"cannot read git config in {path}: {result.stderr.strip()}")

    remotes: dict[str, str] = {}
    for line in result.stdout.splitlines():
        key, _, url = line.partition(" ")
        if match := _REMOTE_URL_KEY.match(key):
            remotes.setdefault(match.group("name"), url.strip())
    return remotes


def generate_git_tasks(
    repos: Iterable[Path], *, home: Path | None = None
) -> dict[str, dict[str, Any]]:
    """
    Build git task tables for working copies.

    The ``origin`` remote (or the first one listed) becomes the synced remote;
    every other remote goes into ``remotes``. Paths under *home* are written
    with ``~``. Repositories without any remote are skipped.

    Returns:
        Task tables keyed by task id (the directory name, made unique)
    """
    home = home or Path.home()
    tasks: dict[str, dict[str, Any]] = {}
    for repo in repos:
        remotes = read_remotes(repo)
        if not remotes:
            logger.warning(f"{repo} has no remotes, skipping")
            continue
        primary = "origin" if "origin" in remotes else next(iter(remotes))

        task: dict[str, Any] = {
            "kind": "git",
            "url": remotes[primary],
            "path": _display_path(repo, home),
        }
        if primary != "origin":
            task["remote"] = primary
        extra = [
            {"name": name, "url": url} for name, url in remotes.items() if name != primary
        ]
        if extra:
            task["remotes"] = extra
        tasks[_unique_id(repo.name, tasks)] = task
    return tasks


def _display_path(repo: Path, home: Path) -> str:
    try:
        return str(Path("~") / repo.relative_to(home))
    except ValueError:
        return str(repo)


def _unique_id(name: str, taken: Iterable[str]) -> str:
    base = re.sub(r"\s+", "-", name.strip()) or "repo"
    taken = set(taken)
    candidate, n = base, 2
    while candidate in taken:
        candidate = f"{base}-{n}"
        n += 1
    return candidate


def merge_git_tasks(
    data: dict[str, Any], generated: dict[str, dict[str, Any]]
) -> dict[str, Any]:
    """
    Fold generated git tasks into a parsed config mapping.

    An existing git task for the same working copy keeps its id, branch and
    dependencies; its url and remotes are replaced. Other tasks, and every
    non-task setting, are left as they are.

    Returns:
        A new mapping; *data* is not modified
    """
    result = dict(data)
    tasks = dict(result.get("tasks") or {})
    env = {k: str(v) for k, v in (result.get("env") or {}).items()}

    by_path: dict[Path, str] = {}
    for task_id, task in tasks.items():
        if isinstance(task, dict) and task.get("kind") == "git" and task.get("path"):
            if (key := _path_key(task["path"], env)) is not None:
                by_path[key] = task_id

    for task_id, task in generated.items():
        existing_id = by_path.get(_path_key(task["path"], env))
        if existing_id is None:
            tasks[_unique_id(task_id, tasks)] = task
            continue
        merged = {k: v for k, v in tasks[existing_id].items() if k not in ("remote", "remotes")}
        merged.update(task)
        tasks[existing_id] = merged

    result["tasks"] = tasks
    return result


def _path_key(path: str, env: dict[str, str]) -> Path | None:
    try:
        return expand_path(path, env)
    except ConfigError:
        return None


def render_config(data: dict[str, Any]) -> str:
    """Serialize a config mapping to YAML under the generated-file header."""
    return GENERATED_HEADER + yaml.safe_dump(data, sort_keys=False, default_flow_style=False)


def write_git_tasks(output: Path, generated: dict[str, dict[str, Any]]) -> dict[str, Any]:
    """
    Merge generated tasks into the YAML config at *output* and write it back.

    Comments in an existing file are not preserved.

    Raises:
        ConfigError: If *output* is not a YAML file or cannot be parsed
    """
    if output.suffix.lower() not in (".yaml", ".yml"):
        raise ConfigError(f"Generated config must be a .yaml file, got {output}")
    data = load_config_file(output) if output.exists() else {}
    merged = merge_git_tasks(data, generated)
    output.parent.mkdir(parents=True, exist_ok=True)
    output.write_text(render_config(merged), encoding="utf-8")
    logger.info(f"Wrote {len(generated)} git task(s) to {output}")
    return merged
