"""
Link applier.

Executes a link plan. Links are installed atomically: a temporary symlink is
created next to the target and renamed over it, so the target is never
missing or half-written while the link is being (re)placed.

Conflicts are resolved according to the group's ``ConflictPolicy``:

- ``skip``: leave the existing content untouched (``conflict_skipped``)
- ``backup``: move the existing path aside as ``<name>.bak.<timestamp>``,
  into ``backup_dir`` if configured, then install the link (``replaced``)
- ``fail``: record the conflict as a failure

Every action is isolated: an ``OSError`` on one target is recorded as a
``failed`` outcome and the remaining actions still run.
"""

from __future__ import annotations

import logging
import os
import secrets
import shutil
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from pathlib import Path

from upkeep.core.config.models import ConflictPolicy

from .models import ActionKind, LinkOutcome, LinkStatus, PlannedAction

logger = logging.getLogger(__name__)

BACKUP_TIMESTAMP_FORMAT = "%Y%m%dT%H%M%S%f"


def backup_name(name: str, now: datetime) -> str:
    """Backup file name for *name*: ``<name>.bak.<timestamp>``."""
    return f"{name}.bak.{now.strftime(BACKUP_TIMESTAMP_FORMAT)}"


class LinkApplier:
    """
    Applies planned link actions and reports one outcome per action.

    Attributes:
        policy: Conflict policy of the link group
        backup_dir: Where backups go (``None``: beside the original)
        target_root: Root targets are mirrored into; backups keep their path
                     relative to it inside ``backup_dir``
        dry_run: Report what would happen without touching the filesystem

    Example:
        >>> applier = LinkApplier(ConflictPolicy.SKIP)
        >>> outcomes = applier.apply(LinkPlanner().plan(mapping))
    """

    def __init__(
        self,
        policy: ConflictPolicy,
        *,
        backup_dir: Path | None = None,
        target_root: Path | None = None,
        dry_run: bool = False,
        clock: Callable[[], datetime] | None = None,
    ):
        self.policy = policy
        self.backup_dir = backup_dir
        self.target_root = target_root
        self.dry_run = dry_run
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def apply(self, actions: Iterable[PlannedAction]) -> list[LinkOutcome]:
        """Apply every action; never raises for a single failing target."""
        outcomes: list[LinkOutcome] = []
        for action in actions:
            try:
                outcome = self._apply_one(action)
            except OSError as e:
                reason = e.strerror or str(e)
                if e.filename:
                    reason = f"{reason}: {e.filename}"
                logger.error(f"Failed to link {action.target}: {reason}")
                outcome = LinkOutcome(action.target, action.source, LinkStatus.FAILED, reason)
            outcomes.append(outcome)
        return outcomes

    # ------------------------------------------------------------------
    # Per-action handling
    # ------------------------------------------------------------------

    def _apply_one(self, action: PlannedAction) -> LinkOutcome:
        target, source = action.target, action.source

        if action.kind is ActionKind.NOOP:
            logger.debug(f"Link at {target} already points to {source}, skipping.")
            return LinkOutcome(target, source, LinkStatus.ALREADY_CORRECT)

        if action.kind is ActionKind.INVALID:
            logger.error(f"Cannot link {target}: {action.reason} ({source})")
            return LinkOutcome(target, source, LinkStatus.FAILED, action.reason)

        if action.kind is ActionKind.CREATE:
            if self.dry_run:
                return LinkOutcome(target, source, LinkStatus.CREATED, "dry run")
            logger.info(f"Linking {target} -> {source}")
            self._install(source, target)
            return LinkOutcome(target, source, LinkStatus.CREATED)

        if action.kind is ActionKind.REPLACE:
            if self.dry_run:
                return LinkOutcome(target, source, LinkStatus.REPLACED, "dry run")
            logger.warning(f"Replacing {action.reason} at {target}")
            self._install(source, target)
            return LinkOutcome(target, source, LinkStatus.REPLACED, action.reason)

        return self._resolve_conflict(action)

    def _resolve_conflict(self, action: PlannedAction) -> LinkOutcome:
        target, source = action.target, action.source

        if self.policy is ConflictPolicy.SKIP:
            logger.warning(f"Conflict at {target} ({action.reason}), leaving it untouched")
            return LinkOutcome(target, source, LinkStatus.CONFLICT_SKIPPED, action.reason)

        if self.policy is ConflictPolicy.FAIL:
            logger.error(f"Conflict at {target}: {action.reason}")
            return LinkOutcome(target, source, LinkStatus.FAILED, f"conflict: {action.reason}")

        occupied = action.blocking_path or target
        if self.dry_run:
            return LinkOutcome(
                target, source, LinkStatus.REPLACED, f"dry run: would back up {occupied}"
            )
        backup_path = self._backup(occupied)
        logger.warning(f"Moved {occupied} to {backup_path} ({action.reason})")
        self._install(source, target)
        return LinkOutcome(target, source, LinkStatus.REPLACED, action.reason, backup_path)

    # ------------------------------------------------------------------
    # Filesystem primitives
    # ------------------------------------------------------------------

    def _install(self, source: Path, target: Path) -> None:
        """Create-then-rename so *target* flips to the new link in one step."""
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp = target.parent / f".{target.name}.upkeep-tmp-{secrets.token_hex(4)}"
        os.symlink(source, tmp)
        try:
            os.replace(tmp, target)
        except OSError:
            tmp.unlink(missing_ok=True)
            raise

    def _backup(self, path: Path) -> Path:
        """Move *path* aside and return where it went."""
        name = backup_name(path.name, self._clock())
        if self.backup_dir is None:
            destination_dir = path.parent
        else:
            destination_dir = self.backup_dir
            if self.target_root is not None and path.parent.is_relative_to(self.target_root):
                destination_dir = self.backup_dir / path.parent.relative_to(self.target_root)
        destination_dir.mkdir(parents=True, exist_ok=True)

        destination = destination_dir / name
        counter = 1
        while os.path.lexists(destination):
            destination = destination_dir / f"{name}.{counter}"
            counter += 1
        shutil.move(str(path), str(destination))
        return destination
