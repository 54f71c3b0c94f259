"""
Git sync result models.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any


class RepoStatus(str, Enum):
    """Outcome of synchronizing one working copy."""

    CLONED = "cloned"
    UPDATED = "updated"
    ALREADY_UP_TO_DATE = "already_up_to_date"
    CONFLICT_SKIPPED = "conflict_skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class RepoOutcome:
    """Result of ``GitSyncer.sync``.

    Attributes:
        path: Local working copy path
        status: What happened
        reason: Why (for failures, conflicts and dry runs)
        head: Commit checked out afterwards, if known
        remotes_added: Extra remotes that were missing and got added
    """

    path: Path
    status: RepoStatus
    reason: str | None = None
    head: str | None = None
    remotes_added: tuple[str, ...] = ()

    @property
    def failed(self) -> bool:
        return self.status is RepoStatus.FAILED

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"path": str(self.path), "status": self.status.value}
        if self.reason:
            data["reason"] = self.reason
        if self.head:
            data["head"] = self.head
        if self.remotes_added:
            data["remotes_added"] = list(self.remotes_added)
        return data
