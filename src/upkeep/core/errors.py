"""
Exception hierarchy for upkeep.

Two families of errors exist:

- ``ConfigError`` is fatal. It is raised while loading and validating the
  configuration or building the task graph, always before any task runs, so
  a rejected configuration never leaves side effects behind.
- ``TaskError`` is recoverable at the run level. Handlers raise it internally
  and convert it into a failed task result; it never crosses a task boundary.
"""

from __future__ import annotations


class UpkeepError(Exception):
    """Base class for all upkeep errors."""


class ConfigError(UpkeepError):
    """The configuration is invalid and the run must not start."""


class CycleError(ConfigError):
    """The task dependency relation contains a cycle.

    Attributes:
        cycle: Task ids along the cycle, first id repeated at the end
               (e.g. ``["a", "b", "a"]``).
    """

    def __init__(self, cycle: list[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class TaskError(UpkeepError):
    """A single task could not complete.

    Attributes:
        reason: Short human-readable reason kept in the run report.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


__all__ = ["ConfigError", "CycleError", "TaskError", "UpkeepError"]
