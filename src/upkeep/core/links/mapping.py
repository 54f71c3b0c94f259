"""
Build the desired link mapping for a link group.

Explicit ``links`` entries are taken as they are. A ``from_dir``/``to_dir``
pair is expanded by walking ``from_dir`` at task time, since the source tree
is often a repository cloned by an earlier task in the same run.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from upkeep.core.config.models import LinkGroup
from upkeep.core.errors import TaskError

from .models import LinkMapping
from .walker import iter_source_files

logger = logging.getLogger(__name__)


def build_mapping(group: LinkGroup) -> LinkMapping:
    """
    Resolve a link group into (source, target) pairs.

    Args:
        group: Link group with absolute paths

    Returns:
        LinkMapping with explicit links first, then mirrored ``from_dir`` files

    Raises:
        TaskError: If ``from_dir`` is not a directory or two entries share a target
    """
    pairs: list[tuple[Path, Path]] = []
    roots: list[Path] = []
    seen: dict[Path, Path] = {}

    def _add(source: Path, target: Path) -> None:
        if target in seen:
            raise TaskError(
                f"Target '{target}' is claimed by both '{seen[target]}' and '{source}'"
            )
        seen[target] = source
        pairs.append((source, target))

    for entry in group.links:
        source = Path(entry.source)
        _add(source, Path(entry.target))
        if source.parent not in roots:
            roots.append(source.parent)

    target_root: Path | None = None
    if group.from_dir is not None and group.to_dir is not None:
        from_dir = Path(group.from_dir)
        target_root = Path(group.to_dir)
        if not from_dir.is_dir():
            raise TaskError(f"from_dir '{from_dir}' should exist and be a directory")
        roots.append(from_dir)
        for rel_path in iter_source_files(from_dir, group.ignore):
            _add(from_dir / rel_path, target_root / rel_path)

    logger.debug(f"Link mapping has {len(pairs)} entries over {len(roots)} source root(s)")
    return LinkMapping(pairs=tuple(pairs), source_roots=tuple(roots), target_root=target_root)


class TargetRegistry:
    """
    Run-wide record of which task manages which target path.

    Link groups resolved at task time may overlap; the first task to claim a
    target owns it for the rest of the run. Safe to use from worker threads.
    """

    def __init__(self) -> None:
        self._owners: dict[Path, str] = {}
        self._lock = threading.Lock()

    def claim(self, target: Path, task_id: str) -> str | None:
        """Claim *target* for *task_id*; returns the other owner if already taken."""
        with self._lock:
            owner = self._owners.setdefault(target, task_id)
        return None if owner == task_id else owner
