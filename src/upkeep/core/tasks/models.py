"""
Task data models.

A ``TaskSpec`` is one node of the task graph: a git sync, a link group or a
command, plus the ids of the tasks it depends on. Specs are built once from
the configuration and never change during a run.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from upkeep.core.config.models import CommandSpec, LinkGroup, RepoSpec


class TaskKind(str, Enum):
    """Closed set of task kinds."""

    GIT = "git"
    LINK = "link"
    COMMAND = "command"


TaskPayload = Union[RepoSpec, LinkGroup, CommandSpec]

_PAYLOAD_TYPES: dict[TaskKind, type] = {
    TaskKind.GIT: RepoSpec,
    TaskKind.LINK: LinkGroup,
    TaskKind.COMMAND: CommandSpec,
}


@dataclass(frozen=True)
class TaskSpec:
    """
    A unit of scheduled work.

    Attributes:
        id: Unique, stable identifier (the key in the config's ``tasks`` table)
        kind: Which sub-engine handles the task
        depends_on: Ids of prerequisite tasks, in config order
        payload: Kind-specific spec with paths already expanded
    """

    id: str
    kind: TaskKind
    depends_on: tuple[str, ...] = ()
    payload: TaskPayload | None = None

    def __post_init__(self) -> None:
        expected = _PAYLOAD_TYPES[self.kind]
        if self.payload is not None and not isinstance(self.payload, expected):
            raise TypeError(
                f"Task '{self.id}' of kind {self.kind.value} needs a {expected.__name__} payload, "
                f"got {type(self.payload).__name__}"
            )
