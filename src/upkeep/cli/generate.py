"""
Upkeep CLI - generate commands.

Capture what is already on this machine as config, so it can be converged
from then on.
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional

import typer
from rich.console import Console

from upkeep.cli.errors import ExitCode, print_error
from upkeep.core.errors import ConfigError, TaskError
from upkeep.core.git.generate import (
    find_repos,
    generate_git_tasks,
    render_config,
    write_git_tasks,
)

app = typer.Typer(
    name="generate",
    help="Generate config from the current machine",
    no_args_is_help=True,
)

console = Console(stderr=True)


@app.command(name="git")
def git_command(
    search_paths: Annotated[
        list[Path],
        typer.Argument(help="Directories to search for git working copies"),
    ],
    exclude: Annotated[
        Optional[list[str]],
        typer.Option(
            "--exclude",
            "-e",
            help="Skip paths containing this text (repeatable)",
        ),
    ] = None,
    output: Annotated[
        Optional[Path],
        typer.Option(
            "--output",
            "-o",
            help="YAML config to add the tasks to (default: print to stdout)",
        ),
    ] = None,
) -> None:
    """
    Write a git task for every working copy found under SEARCH_PATHS.

    Each task lists all of the repository's remotes. With --output, tasks
    are merged into that config: existing git tasks for the same path keep
    their id, branch and dependencies.

    Examples:
        upkeep generate git ~/code
        upkeep generate git ~/code -e node_modules -o ~/.config/upkeep/upkeep.yaml
    """
    for search_path in search_paths:
        if not search_path.expanduser().is_dir():
            print_error(f"Search path {search_path} is not a directory")
            raise typer.Exit(ExitCode.USER_ERROR)

    repos = find_repos([p.expanduser().absolute() for p in search_paths], exclude or [])
    try:
        tasks = generate_git_tasks(repos)
        if output is None:
            typer.echo(render_config({"tasks": tasks}), nl=False)
            return
        write_git_tasks(output.expanduser(), tasks)
    except ConfigError as e:
        print_error("Cannot write generated config", reason=str(e))
        raise typer.Exit(ExitCode.USER_ERROR)
    except TaskError as e:
        print_error("Cannot read repositories", reason=e.reason)
        raise typer.Exit(ExitCode.GENERAL_ERROR)

    console.print(f"[green]✓ {len(tasks)} git task(s) written to {output}[/green]")
