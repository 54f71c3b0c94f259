"""
Task handlers.

Each task kind has one handler that turns a ``TaskSpec`` into a terminal
``TaskResult``. Handlers run on worker threads and never raise: every failure
mode, including unexpected exceptions, becomes a ``failed`` result with the
reason preserved.
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TypeVar

from upkeep.core.config.models import CommandSpec, LinkGroup, RepoSpec
from upkeep.core.errors import TaskError
from upkeep.core.git import GitSyncer, RepoStatus
from upkeep.core.links import (
    LinkApplier,
    LinkOutcome,
    LinkPlanner,
    LinkStatus,
    TargetRegistry,
    build_mapping,
)
from upkeep.core.tasks.models import TaskKind, TaskSpec

from .commands import CommandRunner, describe
from .models import TaskResult, TaskState

logger = logging.getLogger(__name__)

PayloadT = TypeVar("PayloadT", RepoSpec, LinkGroup, CommandSpec)


def _payload(spec: TaskSpec, expected: type[PayloadT]) -> PayloadT:
    if not isinstance(spec.payload, expected):
        raise TaskError(f"{spec.kind.value} task '{spec.id}' has no {expected.__name__} payload")
    return spec.payload


class TaskHandlers:
    """
    Dispatches tasks to the git, link and command handlers.

    One instance is shared by all workers of a run. The target registry makes
    sure two link tasks never manage the same path in the same run.

    Attributes:
        dry_run: Report what would change without changing anything
    """

    def __init__(
        self,
        *,
        dry_run: bool = False,
        syncer: GitSyncer | None = None,
        planner: LinkPlanner | None = None,
        commands: CommandRunner | None = None,
    ):
        self.dry_run = dry_run
        self.syncer = syncer or GitSyncer(dry_run=dry_run)
        self.planner = planner or LinkPlanner()
        self.commands = commands or CommandRunner(dry_run=dry_run)
        self.targets = TargetRegistry()

    def __call__(self, spec: TaskSpec) -> TaskResult:
        start_time = time.time()
        try:
            if spec.kind is TaskKind.GIT:
                result = self.sync_repo(spec)
            elif spec.kind is TaskKind.LINK:
                result = self.apply_links(spec)
            else:
                result = self.run_command(spec)
        except TaskError as e:
            result = TaskResult(spec.id, spec.kind.value, TaskState.FAILED, e.reason)
        except Exception as e:
            logger.exception(f"Task '{spec.id}' raised an unexpected error")
            reason = f"{type(e).__name__}: {e}"
            result = TaskResult(spec.id, spec.kind.value, TaskState.FAILED, reason)

        return TaskResult(
            task_id=result.task_id,
            kind=result.kind,
            state=result.state,
            reason=result.reason,
            detail=result.detail,
            duration_seconds=time.time() - start_time,
        )

    # ------------------------------------------------------------------
    # git
    # ------------------------------------------------------------------

    def sync_repo(self, spec: TaskSpec) -> TaskResult:
        repo = _payload(spec, RepoSpec)
        outcome = self.syncer.sync(repo)

        if outcome.failed:
            state = TaskState.FAILED
            reason = outcome.reason
        else:
            state = TaskState.SUCCEEDED
            reason = outcome.status.value
            if outcome.status is RepoStatus.CONFLICT_SKIPPED and outcome.reason:
                reason = f"{outcome.status.value}: {outcome.reason}"
        return TaskResult(spec.id, spec.kind.value, state, reason, [outcome.to_dict()])

    # ------------------------------------------------------------------
    # link
    # ------------------------------------------------------------------

    def apply_links(self, spec: TaskSpec) -> TaskResult:
        group = _payload(spec, LinkGroup)
        mapping = build_mapping(group)

        claimed: list[tuple[Path, Path]] = []
        taken: list[LinkOutcome] = []
        for source, target in mapping.pairs:
            owner = self.targets.claim(target, spec.id)
            if owner is None:
                claimed.append((source, target))
            else:
                reason = f"target is managed by task '{owner}'"
                logger.error(f"Cannot link {target}: {reason}")
                taken.append(LinkOutcome(target, source, LinkStatus.FAILED, reason))

        actions = [
            self.planner.plan_one(source, target, mapping.source_roots)
            for source, target in claimed
        ]
        applier = LinkApplier(
            group.conflict_policy,
            backup_dir=Path(group.backup_dir) if group.backup_dir else None,
            target_root=mapping.target_root,
            dry_run=self.dry_run,
        )
        outcomes = taken + applier.apply(actions)

        failed = [o for o in outcomes if o.failed]
        skipped = [o for o in outcomes if o.status is LinkStatus.CONFLICT_SKIPPED]
        if failed:
            state = TaskState.FAILED
            reason = f"{len(failed)} of {len(outcomes)} link(s) failed"
        else:
            state = TaskState.SUCCEEDED
            reason = _summarize(outcomes)
        if skipped:
            reason = f"{reason}; {len(skipped)} conflict(s) skipped"
        return TaskResult(
            spec.id, spec.kind.value, state, reason, [o.to_dict() for o in outcomes]
        )

    # ------------------------------------------------------------------
    # command
    # ------------------------------------------------------------------

    def run_command(self, spec: TaskSpec) -> TaskResult:
        command = _payload(spec, CommandSpec)
        result = self.commands.run(command)

        if not result.success:
            state = TaskState.FAILED
            reason = f"'{describe(command.run)}' {result.error_message}"
        else:
            state = TaskState.SUCCEEDED
            reason = None
            if result.skipped:
                reason = "dry run" if self.dry_run else "run_if check not met"
        return TaskResult(spec.id, spec.kind.value, state, reason, [result.to_dict()])


def _summarize(outcomes: list[LinkOutcome]) -> str:
    """Short summary like ``2 created, 5 already_correct``."""
    counts: dict[str, int] = {}
    for outcome in outcomes:
        counts[outcome.status.value] = counts.get(outcome.status.value, 0) + 1
    if not counts:
        return "nothing to link"
    return ", ".join(f"{n} {status}" for status, n in counts.items())
