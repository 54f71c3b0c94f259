"""
Structured JSONL run logs for upkeep.

Provides a RunLogger class that writes timestamped JSON Lines events for
every task state transition of a run. Logs are written to
$XDG_STATE_HOME/upkeep/logs/{run_id}.jsonl by default.

Each log line is valid JSON with the format:
{
  "timestamp": "2026-01-15T12:34:56.789Z",
  "event_type": "task_state",
  "data": {"task_id": "dotfiles", "state": "succeeded", ...}
}
"""

import os
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from upkeep.core.run.models import RunEvent


class EventType(str, Enum):
    """Types of events that can be logged."""

    RUN_START = "run_start"
    RUN_END = "run_end"
    TASK_STATE = "task_state"
    LINK_OUTCOME = "link_outcome"
    REPO_OUTCOME = "repo_outcome"
    ERROR = "error"


class LogEntry(BaseModel):
    """A single structured log entry in JSONL format."""

    model_config = ConfigDict(use_enum_values=True)

    timestamp: datetime = Field(..., description="When the event occurred (ISO 8601 format)")
    event_type: EventType = Field(..., description="Type of event")
    data: dict[str, Any] = Field(default_factory=dict, description="Event-specific data")


_OUTCOME_EVENTS = {
    "git": EventType.REPO_OUTCOME,
    "link": EventType.LINK_OUTCOME,
}


def get_default_log_dir() -> Path:
    """$XDG_STATE_HOME/upkeep/logs (defaults to ~/.local/state/upkeep/logs)."""
    xdg_state_home = os.environ.get("XDG_STATE_HOME")
    if not xdg_state_home:
        xdg_state_home = os.path.expanduser("~/.local/state")
    return Path(xdg_state_home) / "upkeep" / "logs"


class RunLogger:
    """
    Structured JSONL logger for run events.

    Each line is valid JSON that can be queried with jq.

    Example:
        logger = RunLogger.init("20260115T123456")
        logger.log_event(EventType.TASK_STATE, {"task_id": "dotfiles", "state": "running"})
    """

    def __init__(self, log_file: Path):
        """
        Initialize logger with a log file path.

        Args:
            log_file: Path to the JSONL log file (will be created if needed)
        """
        self.log_file = Path(log_file)
        self._ensure_log_dir()

    def _ensure_log_dir(self) -> None:
        """Create log directory if it doesn't exist."""
        self.log_file.parent.mkdir(parents=True, exist_ok=True)

    @staticmethod
    def init(run_id: str, log_dir: Path | None = None) -> "RunLogger":
        """
        Initialize a logger for one run.

        Args:
            run_id: Unique run identifier (used for the filename)
            log_dir: Directory for log files (defaults to ``get_default_log_dir()``)

        Returns:
            RunLogger instance ready to log events

        Raises:
            ValueError: If run_id is empty
        """
        if not run_id:
            raise ValueError("run_id cannot be empty")
        return RunLogger((log_dir or get_default_log_dir()) / f"{run_id}.jsonl")

    def log_event(self, event_type: EventType, data: dict[str, Any] | None = None) -> None:
        """
        Append one event to the JSONL file.

        Write errors are reported on stdout and otherwise ignored, so a full
        disk never stops a run.
        """
        if data is None:
            data = {}

        try:
            entry = LogEntry(timestamp=datetime.now(timezone.utc), event_type=event_type, data=data)
            log_line = entry.model_dump_json(exclude_none=True) + "\n"
            with open(self.log_file, "a", encoding="utf-8") as f:
                f.write(log_line)
        except OSError as e:
            print(f"Warning: Failed to write to log file {self.log_file}: {e}", flush=True)

    def __call__(self, event: "RunEvent") -> None:
        """Executor observer: log a RunEvent."""
        from upkeep.core.run.models import RunEventType

        data: dict[str, Any] = dict(event.data)
        if event.task_id is not None:
            data["task_id"] = event.task_id
        if event.state is not None:
            data["state"] = event.state.value
        if event.message:
            data["message"] = event.message

        if event.event_type is RunEventType.RUN_STARTED:
            self.log_event(EventType.RUN_START, data)
        elif event.event_type is RunEventType.TASK_STATE:
            detail = data.pop("detail", [])
            self.log_event(EventType.TASK_STATE, data)
            outcome_type = _OUTCOME_EVENTS.get(data.get("kind", ""))
            if outcome_type is not None:
                for item in detail:
                    self.log_event(outcome_type, {"task_id": event.task_id, **item})
        else:
            self.log_event(EventType.RUN_END, data)

    def log_error(self, message: str, context: dict[str, Any] | None = None) -> None:
        """
        Log an error event.

        Args:
            message: Error message
            context: Additional error context (optional)
        """
        data: dict[str, Any] = {"message": message}
        if context:
            data["context"] = context

        self.log_event(EventType.ERROR, data)
