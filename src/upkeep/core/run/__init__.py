"""
Run execution: scheduling, task handlers, interrupts and the run report.
"""

from .commands import CommandResult, CommandRunner
from .executor import Executor, run
from .handlers import TaskHandlers
from .interrupt import InterruptHandler
from .models import RunEvent, RunEventType, RunReport, TaskResult, TaskState

__all__ = [
    "CommandResult",
    "CommandRunner",
    "Executor",
    "InterruptHandler",
    "RunEvent",
    "RunEventType",
    "RunReport",
    "TaskHandlers",
    "TaskResult",
    "TaskState",
    "run",
]
