"""
Run state, event and report models.

Provides typed models for observing and summarizing a convergence run,
separated from CLI/rendering concerns:

- TaskState: per-task state machine values
- TaskResult: terminal result of one task, as returned by its handler
- RunEvent: one state transition, emitted to observers as it happens
- RunReport: ordered task results for the whole run, read-only once returned

Usage:
    >>> from upkeep.core.run.models import RunReport, TaskState
    >>> report = run(config)
    >>> report.exit_code
    0
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

# ===========================================================================
# TaskState - per-task state machine
# ===========================================================================


class TaskState(str, Enum):
    """
    Task lifecycle: pending -> running -> succeeded | failed | skipped.

    A task whose prerequisite failed (or was skipped because of a failure)
    goes straight from pending to skipped without running.
    """

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskState.SUCCEEDED, TaskState.FAILED, TaskState.SKIPPED)


# ===========================================================================
# TaskResult - one task's terminal outcome
# ===========================================================================


@dataclass(frozen=True)
class TaskResult:
    """
    Terminal result of a single task.

    Attributes:
        task_id: Task identifier
        kind: Task kind value ("git", "link", "command")
        state: Terminal state
        reason: Why the task failed or was skipped, or a short summary
        detail: Per-item outcomes (repo outcome, link outcomes, command output)
        duration_seconds: Time spent running the handler
    """

    task_id: str
    kind: str
    state: TaskState
    reason: str | None = None
    detail: list[dict[str, Any]] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.task_id,
            "kind": self.kind,
            "state": self.state.value,
            "reason": self.reason,
            "duration_seconds": round(self.duration_seconds, 3),
            "detail": list(self.detail),
        }


# ===========================================================================
# RunEvent - state transitions
# ===========================================================================


class RunEventType(str, Enum):
    """Discriminator for run events."""

    RUN_STARTED = "run_started"
    RUN_COMPLETED = "run_completed"
    RUN_ABORTED = "run_aborted"
    TASK_STATE = "task_state"


@dataclass(frozen=True)
class RunEvent:
    """
    Event emitted by the executor for each transition.

    Attributes:
        event_type: Kind of event
        task_id: Task the event is about (``None`` for run-level events)
        state: New task state (for ``TASK_STATE``)
        message: Human-readable description
        data: Extra structured data (result detail, counts)
        timestamp: When the transition happened (UTC)
    """

    event_type: RunEventType
    task_id: str | None = None
    state: TaskState | None = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# ===========================================================================
# RunReport - final outcome
# ===========================================================================


@dataclass
class RunReport:
    """
    Per-task results of a run, ordered by completion time.

    Owned by the executor while the run is in progress and handed to the
    caller at the end. Field names in ``to_dict`` are stable.

    Attributes:
        entries: Task results in the order they reached a terminal state
        aborted: The run was interrupted before all tasks were dispatched
        dry_run: Nothing was changed; outcomes describe what would happen
    """

    entries: list[TaskResult] = field(default_factory=list)
    aborted: bool = False
    dry_run: bool = False

    def get(self, task_id: str) -> TaskResult | None:
        for entry in self.entries:
            if entry.task_id == task_id:
                return entry
        return None

    def count(self, state: TaskState) -> int:
        return sum(1 for e in self.entries if e.state is state)

    @property
    def failed(self) -> list[TaskResult]:
        return [e for e in self.entries if e.state is TaskState.FAILED]

    @property
    def exit_code(self) -> int:
        """0 when nothing failed, 1 if any task failed, 130 if aborted."""
        if self.aborted:
            return 130
        return 1 if self.failed else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "aborted": self.aborted,
            "dry_run": self.dry_run,
            "exit_code": self.exit_code,
            "tasks": [e.to_dict() for e in self.entries],
        }

    def to_json(self, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)
