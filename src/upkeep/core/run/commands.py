"""
Command task execution.

Runs a setup command with the run environment. Commands are expected to be
idempotent; upkeep does not track whether they ran before.

Execution features:
- argv lists run directly, strings run through the shell
- optional ``run_if`` check: the command is skipped (successfully) when the
  check exits non-zero
- optional timeout (default: none)
- captures stdout and stderr, keeping a short tail for the report
"""

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from typing import Any

from upkeep.core.config.models import CommandSpec

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 20


@dataclass(frozen=True)
class CommandResult:
    """
    Result of running one command task.

    Attributes:
        success: Whether the command exited 0 (or was skipped by run_if)
        exit_code: Process exit code (-1 if it never ran to completion)
        skipped: The ``run_if`` check said there was nothing to do
        stdout: Tail of standard output
        stderr: Tail of standard error
        duration_seconds: Wall-clock run time
        error_message: Why it failed, if it failed
    """

    success: bool
    exit_code: int
    skipped: bool = False
    stdout: str = ""
    stderr: str = ""
    duration_seconds: float = 0.0
    error_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"exit_code": self.exit_code, "skipped": self.skipped}
        if self.stdout:
            data["stdout"] = self.stdout
        if self.stderr:
            data["stderr"] = self.stderr
        if self.error_message:
            data["error"] = self.error_message
        return data


def _tail(text: str | bytes | None) -> str:
    if not text:
        return ""
    if isinstance(text, bytes):
        text = text.decode(errors="replace")
    return "\n".join(text.strip().splitlines()[-OUTPUT_TAIL_LINES:])


def describe(command: list[str] | str) -> str:
    """Printable form of a command."""
    return command if isinstance(command, str) else " ".join(command)


class CommandRunner:
    """
    Runs ``CommandSpec`` tasks.

    Example:
        >>> runner = CommandRunner()
        >>> result = runner.run(CommandSpec(run=["true"]))
        >>> result.success
        True
    """

    def __init__(self, *, dry_run: bool = False):
        self.dry_run = dry_run

    def run(self, spec: CommandSpec) -> CommandResult:
        """Run the command (after its ``run_if`` check). Never raises for process errors."""
        env = {**os.environ, **spec.env}

        if spec.run_if is not None:
            check = self._execute(spec.run_if, spec, env)
            if check.exit_code != 0:
                logger.info(
                    f"Skipping '{describe(spec.run)}': run_if check exited {check.exit_code}"
                )
                return CommandResult(success=True, exit_code=0, skipped=True)

        if self.dry_run:
            return CommandResult(success=True, exit_code=0, skipped=True)

        logger.info(f"Running '{describe(spec.run)}'")
        result = self._execute(spec.run, spec, env)
        if result.success:
            logger.info(
                f"Command '{describe(spec.run)}' completed in {result.duration_seconds:.2f}s"
            )
        else:
            logger.error(f"Command '{describe(spec.run)}' failed: {result.error_message}")
        return result

    def _execute(
        self,
        command: list[str] | str,
        spec: CommandSpec,
        env: dict[str, str],
    ) -> CommandResult:
        start_time = time.time()
        try:
            result = subprocess.run(
                command,
                shell=isinstance(command, str),
                cwd=spec.cwd,
                env=env,
                capture_output=True,
                text=True,
                timeout=spec.timeout_seconds,
            )
            duration = time.time() - start_time
            stderr = _tail(result.stderr)
            error_message = None
            if result.returncode != 0:
                error_message = f"exit code {result.returncode}"
                if stderr:
                    error_message += f": {stderr.splitlines()[-1]}"
            return CommandResult(
                success=result.returncode == 0,
                exit_code=result.returncode,
                stdout=_tail(result.stdout),
                stderr=stderr,
                duration_seconds=duration,
                error_message=error_message,
            )

        except subprocess.TimeoutExpired as e:
            return CommandResult(
                success=False,
                exit_code=-1,
                stdout=_tail(e.stdout),
                stderr=_tail(e.stderr),
                duration_seconds=time.time() - start_time,
                error_message=f"timed out after {spec.timeout_seconds}s",
            )

        except OSError as e:
            return CommandResult(
                success=False,
                exit_code=-1,
                duration_seconds=time.time() - start_time,
                error_message=f"failed to execute: {e.strerror or e}",
            )
