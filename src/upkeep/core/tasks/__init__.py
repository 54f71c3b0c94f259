"""
Task specs and the dependency graph.
"""

from .graph import TaskGraph
from .models import TaskKind, TaskPayload, TaskSpec

__all__ = ["TaskGraph", "TaskKind", "TaskPayload", "TaskSpec"]
