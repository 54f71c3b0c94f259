"""
Upkeep CLI - run, plan and graph commands.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from upkeep.cli.errors import ExitCode, print_config_error
from upkeep.core.config.loader import get_default_config_path, load_config
from upkeep.core.config.paths import expand_path
from upkeep.core.config.resolver import ResolvedConfig, resolve_config
from upkeep.core.errors import ConfigError
from upkeep.core.run.executor import run
from upkeep.core.run.interrupt import InterruptHandler
from upkeep.core.run.models import RunReport, TaskState
from upkeep.core.tasks.graph import TaskGraph
from upkeep.utils.logging import RunLogger

console = Console()

STATE_STYLES = {
    TaskState.SUCCEEDED: "green",
    TaskState.FAILED: "red",
    TaskState.SKIPPED: "yellow",
}

ConfigOption = Annotated[
    Optional[Path],
    typer.Option(
        "--config",
        "-c",
        help="Config file (default: $UPKEEP_CONFIG or ~/.config/upkeep/upkeep.yaml)",
    ),
]
JsonOption = Annotated[
    bool,
    typer.Option("--json", help="Print the run report as JSON"),
]


def _load(config_path: Path | None) -> tuple[ResolvedConfig, Path]:
    """Load and resolve the config; exits with USER_ERROR on ConfigError."""
    path = config_path or get_default_config_path()
    try:
        config = load_config(path)
        resolved = resolve_config(config, base_dir=path.parent.absolute())
    except ConfigError as e:
        print_config_error(e, path)
        raise typer.Exit(ExitCode.USER_ERROR)
    return resolved, path


def _event_log(resolved: ResolvedConfig, path: Path) -> RunLogger:
    run_id = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    log_dir = None
    if resolved.settings.log_dir:
        log_dir = expand_path(resolved.settings.log_dir, resolved.env, base_dir=path.parent)
    return RunLogger.init(run_id, log_dir)


def _execute(
    config_path: Path | None,
    *,
    dry_run: bool,
    fail_fast: bool | None,
    jobs: int | None,
    json_output: bool,
    log_events: bool,
) -> None:
    resolved, path = _load(config_path)

    event_log = None
    if log_events and resolved.settings.log_events and not dry_run:
        event_log = _event_log(resolved, path)

    interrupt = InterruptHandler()
    interrupt.register()
    try:
        report = run(
            resolved,
            dry_run=dry_run,
            fail_fast=fail_fast,
            max_workers=jobs,
            interrupt=interrupt,
            event_log=event_log,
        )
    except ConfigError as e:
        if event_log is not None:
            event_log.log_error(str(e), {"config": str(path)})
        print_config_error(e, path)
        raise typer.Exit(ExitCode.USER_ERROR)
    finally:
        interrupt.unregister()

    if json_output:
        typer.echo(report.to_json())
    else:
        print_report(report)
        if event_log is not None:
            console.print(f"[dim]Run log: {event_log.log_file}[/dim]")

    raise typer.Exit(report.exit_code)


def print_report(report: RunReport) -> None:
    """Per-task summary table followed by a one-line verdict."""
    title = "Planned changes" if report.dry_run else "Run summary"
    table = Table(title=title, show_header=True)
    table.add_column("Task", style="bold")
    table.add_column("Kind", style="cyan")
    table.add_column("State")
    table.add_column("Details")
    table.add_column("Time", justify="right", style="dim")

    for entry in report.entries:
        style = STATE_STYLES.get(entry.state, "white")
        table.add_row(
            entry.task_id,
            entry.kind,
            f"[{style}]{entry.state.value}[/{style}]",
            escape(entry.reason or ""),
            f"{entry.duration_seconds:.1f}s",
        )
    console.print(table)

    succeeded = report.count(TaskState.SUCCEEDED)
    failed = report.count(TaskState.FAILED)
    skipped = report.count(TaskState.SKIPPED)
    if report.aborted:
        console.print(f"[yellow]⚠ Aborted: {succeeded} succeeded, {skipped} skipped[/yellow]")
    elif failed:
        console.print(
            f"[red]✗ {failed} task(s) failed[/red] "
            f"[dim]({succeeded} succeeded, {skipped} skipped)[/dim]"
        )
    else:
        suffix = f" [dim]({skipped} skipped)[/dim]" if skipped else ""
        console.print(f"[green]✓ {succeeded} task(s) converged[/green]{suffix}")


def run_command(
    config: ConfigOption = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Show what would change without changing it"),
    ] = False,
    fail_fast: Annotated[
        Optional[bool],
        typer.Option(
            "--fail-fast/--no-fail-fast",
            help="Stop starting new tasks after the first failure (default: from config)",
        ),
    ] = None,
    jobs: Annotated[
        Optional[int],
        typer.Option("--jobs", "-j", min=1, max=64, help="Tasks to run at the same time"),
    ] = None,
    json_output: JsonOption = False,
    no_log: Annotated[
        bool,
        typer.Option("--no-log", help="Do not write the structured JSONL run log"),
    ] = False,
) -> None:
    """
    Converge the machine to the configured state.

    Exit codes: 0 when every task succeeded, 1 when any task failed,
    2 for an invalid configuration, 130 when interrupted.
    """
    _execute(
        config,
        dry_run=dry_run,
        fail_fast=fail_fast,
        jobs=jobs,
        json_output=json_output,
        log_events=not no_log,
    )


def plan_command(
    config: ConfigOption = None,
    json_output: JsonOption = False,
) -> None:
    """
    Show what a run would change, without changing anything.
    """
    _execute(
        config,
        dry_run=True,
        fail_fast=False,
        jobs=None,
        json_output=json_output,
        log_events=False,
    )


def graph_command(config: ConfigOption = None) -> None:
    """
    Show tasks in the order they can run, with their dependencies.
    """
    resolved, path = _load(config)
    try:
        graph = TaskGraph.build(resolved.tasks)
    except ConfigError as e:
        print_config_error(e, path)
        raise typer.Exit(ExitCode.USER_ERROR)

    table = Table(title=f"Tasks in {path}", show_header=True)
    table.add_column("#", justify="right", style="dim")
    table.add_column("Task", style="bold")
    table.add_column("Kind", style="cyan")
    table.add_column("Depends on")

    for position, task_id in enumerate(graph.topological_order(), start=1):
        spec = graph.spec(task_id)
        table.add_row(
            str(position),
            task_id,
            spec.kind.value,
            ", ".join(graph.dependencies(task_id)) or "[dim]-[/dim]",
        )
    console.print(table)
