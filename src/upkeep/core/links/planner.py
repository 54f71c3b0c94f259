"""
Link planner.

Decides, for every target of a ``LinkMapping``, what has to happen to make it
a symlink to its source. Planning only inspects the filesystem (``lstat``,
``readlink``); it never changes it, so planning twice without changes in
between gives the same plan.

Decision table per target:

    target state                                         action
    ---------------------------------------------------  --------
    does not exist                                       create
    symlink to the source                                noop
    broken symlink into a managed source root            replace
    other symlink, file or directory                     conflict
    a parent path is a file or symlink                   conflict (blocking_path set)
    source does not exist                                invalid
"""

from __future__ import annotations

import logging
import os
from collections import Counter
from pathlib import Path

from .models import ActionKind, LinkMapping, PlannedAction

logger = logging.getLogger(__name__)


class LinkPlanner:
    """Computes the actions needed to converge a link mapping."""

    def plan(self, mapping: LinkMapping) -> list[PlannedAction]:
        """
        Plan one action per mapping entry, in mapping order.

        Args:
            mapping: Desired (source, target) pairs

        Returns:
            Planned actions; targets are independent of each other
        """
        actions = [
            self.plan_one(source, target, mapping.source_roots)
            for source, target in mapping.pairs
        ]
        counts = Counter(a.kind.value for a in actions)
        logger.debug(f"Planned {len(actions)} link action(s): {dict(counts)}")
        return actions

    def plan_one(
        self,
        source: Path,
        target: Path,
        source_roots: tuple[Path, ...] = (),
    ) -> PlannedAction:
        """Plan the action for a single target."""
        if not os.path.lexists(source):
            return PlannedAction(ActionKind.INVALID, source, target, "source does not exist")

        blocking = _blocking_parent(target)
        if blocking is not None:
            kind = "symlink" if blocking.is_symlink() else "file"
            return PlannedAction(
                ActionKind.CONFLICT,
                source,
                target,
                f"parent path '{blocking}' is a {kind}",
                blocking_path=blocking,
            )

        if not os.path.lexists(target):
            return PlannedAction(ActionKind.CREATE, source, target)

        if target.is_symlink():
            destination = _link_destination(target)
            if _same_link(target, destination, source):
                return PlannedAction(ActionKind.NOOP, source, target)
            if not target.exists() and _is_under_any(destination, source_roots):
                return PlannedAction(
                    ActionKind.REPLACE,
                    source,
                    target,
                    f"broken link to managed path '{destination}'",
                )
            broken = "" if target.exists() else "broken "
            return PlannedAction(
                ActionKind.CONFLICT,
                source,
                target,
                f"{broken}link to '{destination}' already exists",
            )

        if target.is_dir():
            return PlannedAction(ActionKind.CONFLICT, source, target, "directory already exists")
        return PlannedAction(ActionKind.CONFLICT, source, target, "file already exists")


def _link_destination(link: Path) -> Path:
    """Where *link* points, made absolute against its own directory."""
    raw = os.readlink(link)
    return Path(os.path.normpath(link.parent / raw))


def _same_link(target: Path, destination: Path, source: Path) -> bool:
    if destination == Path(os.path.normpath(source)):
        return True
    # Same file through differently spelled paths (e.g. a symlinked home dir)
    return target.exists() and os.path.realpath(target) == os.path.realpath(source)


def _is_under_any(path: Path, roots: tuple[Path, ...]) -> bool:
    return any(path == root or path.is_relative_to(root) for root in roots)


def _blocking_parent(target: Path) -> Path | None:
    """First ancestor of *target* that exists but is not a directory."""
    for parent in reversed(target.parents):
        if not os.path.lexists(parent):
            return None
        if not parent.is_dir():
            return parent
    return None
