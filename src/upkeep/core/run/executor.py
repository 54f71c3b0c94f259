"""
Dependency-ordered task execution.

The Executor walks a ``TaskGraph`` and runs every task whose prerequisites
have reached a terminal state on a bounded thread pool. Git clones and
fetches, link application and commands all block, so they run on worker
threads while the calling thread coordinates: it alone owns the per-task
states and the run report.

Failure handling:
- a task whose prerequisite failed (or was skipped because of a failure)
  is skipped without running; unrelated branches keep going
- with ``fail_fast`` the first failure stops dispatch of new tasks
- an interrupt stops dispatch of new tasks and marks the report aborted
In both halting cases, tasks already running are allowed to finish.

Usage:
    >>> from upkeep import load_config, run
    >>> report = run(load_config())
    >>> report.exit_code
    0
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from pathlib import Path

from upkeep.core.config.models import UpkeepConfig
from upkeep.core.config.resolver import ResolvedConfig, resolve_config
from upkeep.core.tasks.graph import TaskGraph
from upkeep.core.tasks.models import TaskSpec

from .handlers import TaskHandlers
from .interrupt import InterruptHandler
from .models import RunEvent, RunEventType, RunReport, TaskResult, TaskState

logger = logging.getLogger(__name__)

TaskHandler = Callable[[TaskSpec], TaskResult]
RunObserver = Callable[[RunEvent], None]

# How often the coordinator wakes up to check for an interrupt while waiting
POLL_INTERVAL_SECONDS = 0.2


class Executor:
    """
    Runs a task graph to completion.

    Example:
        >>> executor = Executor(graph, TaskHandlers(), max_workers=2)
        >>> report = executor.run()
        >>> [e.task_id for e in report.entries]
        ['dotfiles', 'links']
    """

    def __init__(
        self,
        graph: TaskGraph,
        handler: TaskHandler,
        *,
        max_workers: int = 4,
        fail_fast: bool = False,
        dry_run: bool = False,
        interrupt: InterruptHandler | None = None,
        observers: Iterable[RunObserver] = (),
    ):
        """
        Initialize the executor.

        Args:
            graph: Validated, acyclic task graph
            handler: Called on a worker thread with each task; returns its result
            max_workers: Size of the worker pool
            fail_fast: Stop dispatching new tasks after the first failure
            dry_run: Recorded on the report (the handler does the dry run)
            interrupt: Abort flag checked between dispatches
            observers: Called with every RunEvent, on the coordinating thread
        """
        if max_workers < 1:
            raise ValueError("max_workers must be at least 1")
        self.graph = graph
        self.handler = handler
        self.max_workers = max_workers
        self.fail_fast = fail_fast
        self.dry_run = dry_run
        self.interrupt = interrupt
        self.observers = list(observers)

        self._states: dict[str, TaskState] = {}
        self._blame: dict[str, str] = {}
        self._report = RunReport(dry_run=dry_run)

    def run(self) -> RunReport:
        """Run every task and return the report. Only call once per Executor."""
        self._states = {task_id: TaskState.PENDING for task_id in self.graph.ids}
        self._emit(
            RunEvent(
                RunEventType.RUN_STARTED,
                message=f"Running {len(self.graph)} task(s)",
                data={"tasks": len(self.graph), "dry_run": self.dry_run},
            )
        )

        halt_reason: str | None = None
        running: dict[Future[TaskResult], str] = {}

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            while True:
                if self.interrupt is not None and self.interrupt.interrupted:
                    if not self._report.aborted:
                        logger.warning("Run aborted; waiting for running tasks to finish")
                    self._report.aborted = True
                    halt_reason = "aborted"

                self._skip_blocked()
                if halt_reason is None:
                    free_slots = self.max_workers - len(running)
                    for task_id in self._ready()[:free_slots]:
                        spec = self.graph.spec(task_id)
                        self._set_state(task_id, TaskState.RUNNING, data={"kind": spec.kind.value})
                        running[pool.submit(self.handler, spec)] = task_id

                if not running:
                    break

                done, _ = wait(
                    running, timeout=POLL_INTERVAL_SECONDS, return_when=FIRST_COMPLETED
                )
                for future in done:
                    task_id = running.pop(future)
                    result = self._collect(task_id, future)
                    self._record(result)
                    if (
                        result.state is TaskState.FAILED
                        and self.fail_fast
                        and halt_reason is None
                    ):
                        logger.warning(f"Task '{task_id}' failed; fail-fast stops dispatch")
                        halt_reason = "fail-fast"

        self._skip_blocked()
        for task_id in self.graph.ids:
            if self._states[task_id] is TaskState.PENDING:
                self._skip(task_id, halt_reason or "not reached")

        self._finish()
        return self._report

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def _terminal(self) -> set[str]:
        return {t for t, state in self._states.items() if state.is_terminal}

    def _ready(self) -> list[str]:
        """Pending tasks whose prerequisites all succeeded, in config order."""
        ready = self.graph.ready_set(self._terminal())
        return [
            t
            for t in self.graph.ids
            if t in ready and self._states[t] is TaskState.PENDING
        ]

    def _skip_blocked(self) -> None:
        """Skip ready tasks with a failed or skipped prerequisite, transitively."""
        progressed = True
        while progressed:
            progressed = False
            ready = self.graph.ready_set(self._terminal())
            for task_id in self.graph.ids:
                if task_id not in ready or self._states[task_id] is not TaskState.PENDING:
                    continue
                blocker = self._blocker(task_id)
                if blocker is not None:
                    self._blame[task_id] = blocker
                    self._skip(task_id, f"dependency '{blocker}' failed")
                    progressed = True

    def _blocker(self, task_id: str) -> str | None:
        """The failed task that keeps *task_id* from running, if any."""
        for dep in self.graph.dependencies(task_id):
            state = self._states[dep]
            if state is TaskState.FAILED:
                return dep
            if state is TaskState.SKIPPED:
                return self._blame.get(dep, dep)
        return None

    # ------------------------------------------------------------------
    # State transitions
    # ------------------------------------------------------------------

    def _collect(self, task_id: str, future: Future[TaskResult]) -> TaskResult:
        spec = self.graph.spec(task_id)
        try:
            result = future.result()
        except Exception as e:
            logger.exception(f"Handler for task '{task_id}' raised")
            return TaskResult(
                task_id, spec.kind.value, TaskState.FAILED, f"{type(e).__name__}: {e}"
            )
        if not result.state.is_terminal:
            return TaskResult(
                task_id,
                spec.kind.value,
                TaskState.FAILED,
                f"handler returned non-terminal state '{result.state.value}'",
            )
        return result

    def _record(self, result: TaskResult) -> None:
        self._report.entries.append(result)
        data = result.to_dict()
        del data["id"], data["state"]
        self._set_state(result.task_id, result.state, result.reason or "", data)

    def _skip(self, task_id: str, reason: str) -> None:
        kind = self.graph.spec(task_id).kind.value
        self._record(TaskResult(task_id, kind, TaskState.SKIPPED, reason))

    def _set_state(
        self,
        task_id: str,
        state: TaskState,
        message: str = "",
        data: dict | None = None,
    ) -> None:
        self._states[task_id] = state
        if state is TaskState.FAILED:
            logger.error(f"Task '{task_id}' failed: {message}")
        elif state is TaskState.SKIPPED:
            logger.warning(f"Task '{task_id}' skipped: {message}")
        elif state is TaskState.SUCCEEDED:
            logger.info(f"Task '{task_id}' succeeded" + (f": {message}" if message else ""))
        else:
            logger.debug(f"Task '{task_id}' {state.value}")
        self._emit(
            RunEvent(
                RunEventType.TASK_STATE,
                task_id=task_id,
                state=state,
                message=message,
                data=data or {},
            )
        )

    def _finish(self) -> None:
        report = self._report
        counts = {state.value: report.count(state) for state in TaskState if state.is_terminal}
        summary = ", ".join(f"{n} {name}" for name, n in counts.items())
        event_type = RunEventType.RUN_ABORTED if report.aborted else RunEventType.RUN_COMPLETED
        logger.info(f"Run {'aborted' if report.aborted else 'finished'}: {summary}")
        self._emit(
            RunEvent(
                event_type,
                message=summary,
                data={**counts, "exit_code": report.exit_code, "aborted": report.aborted},
            )
        )

    def _emit(self, event: RunEvent) -> None:
        for observer in self.observers:
            try:
                observer(event)
            except Exception as e:
                logger.warning(f"Run observer failed: {e}")


def run(
    config: UpkeepConfig | ResolvedConfig,
    *,
    dry_run: bool = False,
    fail_fast: bool | None = None,
    max_workers: int | None = None,
    interrupt: InterruptHandler | None = None,
    event_log: RunObserver | None = None,
    observers: Iterable[RunObserver] = (),
    base_dir: Path | None = None,
    handler: TaskHandler | None = None,
) -> RunReport:
    """
    Converge the machine to the configured state.

    The configuration is resolved and the task graph is built before anything
    runs, so a ``ConfigError`` always means nothing was changed.

    Args:
        config: Loaded config (resolved here) or an already resolved one
        dry_run: Report what would change without changing anything
        fail_fast: Override ``settings.fail_fast``
        max_workers: Override ``settings.max_workers``
        interrupt: Abort flag (e.g. a registered InterruptHandler)
        event_log: Structured event sink such as a ``RunLogger``
        observers: Extra RunEvent callbacks
        base_dir: Anchor for relative config paths
        handler: Task handler (defaults to ``TaskHandlers``)

    Returns:
        RunReport with one entry per task

    Raises:
        ConfigError: If the config cannot be resolved or the graph is invalid
    """
    if isinstance(config, ResolvedConfig):
        resolved = config
    else:
        resolved = resolve_config(config, base_dir=base_dir)
    graph = TaskGraph.build(resolved.tasks)

    settings = resolved.settings
    all_observers = list(observers)
    if event_log is not None:
        all_observers.append(event_log)

    executor = Executor(
        graph,
        handler or TaskHandlers(dry_run=dry_run),
        max_workers=max_workers or settings.max_workers,
        fail_fast=settings.fail_fast if fail_fast is None else fail_fast,
        dry_run=dry_run,
        interrupt=interrupt,
        observers=all_observers,
    )
    return executor.run()
