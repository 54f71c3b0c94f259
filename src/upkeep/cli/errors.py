"""
Standardized error handling and exit codes for the upkeep CLI.

This module provides consistent error messaging with actionable guidance
and standardized exit codes across all CLI commands.
"""

from enum import IntEnum

from rich.console import Console
from rich.markup import escape

console = Console(stderr=True)


class ExitCode(IntEnum):
    """Standard exit codes for upkeep CLI operations."""

    SUCCESS = 0
    """No task failed."""

    GENERAL_ERROR = 1
    """At least one task failed."""

    USER_ERROR = 2
    """Invalid configuration; nothing was changed."""

    SIGINT = 130
    """Run aborted by SIGINT (Ctrl+C) - Unix standard."""


def print_error(
    problem: str,
    *,
    reason: str | None = None,
    solution: str | None = None,
) -> None:
    """
    Print a standardized error message with actionable guidance.

    Args:
        problem: Brief description of what went wrong
        reason: Optional explanation of why it happened
        solution: Optional command or action to fix it

    Example:
        >>> print_error(
        ...     "Invalid configuration",
        ...     reason="Dependency cycle detected: a -> b -> a",
        ...     solution="Remove one of the depends_on entries",
        ... )
    """
    console.print(f"[red]Error:[/red] {problem}")

    if reason:
        console.print(f"[dim]{escape(reason)}[/dim]")

    if solution:
        console.print(f"[cyan]→ Try:[/cyan] {solution}")


def print_config_error(error: Exception, config_path: object | None = None) -> None:
    """Print a ConfigError; the run was rejected before any change."""
    where = f" ({config_path})" if config_path else ""
    print_error(
        f"Invalid configuration{where}",
        reason=str(error),
        solution="Fix the configuration; no task was run",
    )
