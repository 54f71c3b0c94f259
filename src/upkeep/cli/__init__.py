"""
Upkeep CLI - Main application entry point.

This module sets up the Typer CLI application with all subcommands.
"""

import logging

import typer
from rich.console import Console
from rich.logging import RichHandler

from upkeep import __version__
from upkeep.cli import generate, run

app = typer.Typer(
    name="upkeep",
    help="Converge this machine to its declared setup",
    no_args_is_help=True,
    add_completion=False,
    context_settings={"help_option_names": ["--help", "-h"]},
)


def configure_logging(*, debug: bool = False, verbose: bool = False) -> None:
    """
    Route log records to stderr through rich.

    Args:
        debug: DEBUG level with full tracebacks
        verbose: INFO level (every change is logged)
    """
    level = logging.DEBUG if debug else logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=debug)],
        force=True,
    )


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"upkeep {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug output with detailed logging",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Log every change as it happens",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    """
    Upkeep - declarative machine setup.

    Clones and fast-forwards git repositories, installs dotfile symlinks and
    runs setup commands, in dependency order. Running it twice is safe: the
    second run changes nothing.

    Examples:
        upkeep run                       # converge using the default config
        upkeep run --config setup.yaml   # use a specific config
        upkeep plan                      # show what would change
        upkeep graph                     # show task order and dependencies
        upkeep generate git ~/code       # capture existing repositories as tasks
    """
    configure_logging(debug=debug, verbose=verbose)


app.command(name="run")(run.run_command)
app.command(name="plan")(run.plan_command)
app.command(name="graph")(run.graph_command)
app.add_typer(generate.app, name="generate")


__all__ = ["app", "configure_logging"]
