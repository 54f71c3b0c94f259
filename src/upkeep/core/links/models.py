"""
Link planning and outcome models.

A ``LinkMapping`` is the desired state for one link group, a
``PlannedAction`` is what the planner decided for one target, and a
``LinkOutcome`` is what actually happened to it.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any


class ActionKind(str, Enum):
    """Planner decision for one target path."""

    CREATE = "create"
    NOOP = "noop"
    REPLACE = "replace"
    CONFLICT = "conflict"
    INVALID = "invalid"


class LinkStatus(str, Enum):
    """Per-target result of applying a plan."""

    CREATED = "created"
    ALREADY_CORRECT = "already_correct"
    REPLACED = "replaced"
    CONFLICT_SKIPPED = "conflict_skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class LinkMapping:
    """
    Desired links for one group.

    Attributes:
        pairs: (source, target) pairs, all absolute, targets unique
        source_roots: Managed source directories; a broken link pointing
                      inside one of these is ours to replace
        target_root: Directory targets are mirrored into (for backup layout)
    """

    pairs: tuple[tuple[Path, Path], ...]
    source_roots: tuple[Path, ...] = ()
    target_root: Path | None = None

    def __len__(self) -> int:
        return len(self.pairs)


@dataclass(frozen=True)
class PlannedAction:
    """
    One planned change (or non-change) for a target.

    Attributes:
        kind: What the applier should do
        source: Path the link should point at
        target: Path where the link should live
        reason: Why this action was chosen (shown for conflicts)
        blocking_path: Parent of target occupied by a file or link, if any
    """

    kind: ActionKind
    source: Path
    target: Path
    reason: str = ""
    blocking_path: Path | None = None


@dataclass(frozen=True)
class LinkOutcome:
    """
    Result of applying one planned action.

    Produced once per mapping entry per run; never mutated afterwards.
    """

    target: Path
    source: Path
    status: LinkStatus
    reason: str | None = None
    backup_path: Path | None = None

    @property
    def failed(self) -> bool:
        return self.status is LinkStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "target": str(self.target),
            "source": str(self.source),
            "status": self.status.value,
        }
        if self.reason:
            data["reason"] = self.reason
        if self.backup_path is not None:
            data["backup_path"] = str(self.backup_path)
        return data
