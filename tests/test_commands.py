"""Tests for CommandRunner."""

import subprocess
from unittest.mock import patch

from upkeep.core.config.models import CommandSpec
from upkeep.core.run.commands import CommandRunner, describe


class TestCommandRunner:
    def test_argv_success(self):
        result = CommandRunner().run(CommandSpec(run=["echo", "hello"]))
        assert result.success
        assert result.exit_code == 0
        assert result.stdout == "hello"
        assert result.error_message is None

    def test_shell_string(self, tmp_path):
        result = CommandRunner().run(CommandSpec(run="echo one && echo two", cwd=str(tmp_path)))
        assert result.success
        assert result.stdout == "one\ntwo"

    def test_failure_keeps_exit_code_and_stderr(self):
        result = CommandRunner().run(CommandSpec(run="echo boom >&2; exit 3"))
        assert not result.success
        assert result.exit_code == 3
        assert result.stderr == "boom"
        assert result.error_message == "exit code 3: boom"

    def test_env_passed_through(self):
        result = CommandRunner().run(CommandSpec(run="echo $GREETING", env={"GREETING": "hi"}))
        assert result.stdout == "hi"

    def test_cwd(self, tmp_path):
        result = CommandRunner().run(CommandSpec(run=["pwd"], cwd=str(tmp_path)))
        assert result.stdout.endswith(tmp_path.name)

    def test_timeout(self):
        result = CommandRunner().run(CommandSpec(run=["sleep", "5"], timeout_seconds=0.2))
        assert not result.success
        assert result.exit_code == -1
        assert result.error_message == "timed out after 0.2s"

    def test_missing_executable(self):
        result = CommandRunner().run(CommandSpec(run=["upkeep-no-such-binary"]))
        assert not result.success
        assert result.error_message.startswith("failed to execute")

    def test_output_tail_is_bounded(self):
        result = CommandRunner().run(CommandSpec(run="seq 1 100"))
        lines = result.stdout.splitlines()
        assert len(lines) == 20
        assert lines[-1] == "100"


class TestRunIf:
    def test_check_failing_skips_command(self, tmp_path):
        marker = tmp_path / "ran"
        spec = CommandSpec(run=["touch", str(marker)], run_if="exit 1")
        result = CommandRunner().run(spec)
        assert result.success
        assert result.skipped
        assert not marker.exists()

    def test_check_passing_runs_command(self, tmp_path):
        marker = tmp_path / "ran"
        spec = CommandSpec(run=["touch", str(marker)], run_if=["true"])
        result = CommandRunner().run(spec)
        assert result.success
        assert not result.skipped
        assert marker.exists()


class TestDryRun:
    def test_nothing_executed(self):
        with patch("upkeep.core.run.commands.subprocess.run") as run:
            result = CommandRunner(dry_run=True).run(CommandSpec(run=["rm", "-rf", "/tmp/x"]))
        assert result.success
        assert result.skipped
        run.assert_not_called()

    def test_run_if_still_checked(self):
        completed = subprocess.CompletedProcess(["true"], 0, stdout="", stderr="")
        with patch("upkeep.core.run.commands.subprocess.run", return_value=completed) as run:
            CommandRunner(dry_run=True).run(CommandSpec(run=["make"], run_if=["true"]))
        assert run.call_count == 1
        assert run.call_args.args[0] == ["true"]


class TestResultFormatting:
    def test_to_dict_omits_empty_fields(self):
        result = CommandRunner().run(CommandSpec(run=["true"]))
        assert result.to_dict() == {"exit_code": 0, "skipped": False}

    def test_describe(self):
        assert describe(["brew", "bundle"]) == "brew bundle"
        assert describe("make install") == "make install"
