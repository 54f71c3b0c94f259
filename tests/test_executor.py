"""
Tests for the Executor and the run() entry point.

Covers dependency ordering, failure propagation, fail-fast, abort and
exception isolation using a recording fake handler, then the end-to-end
examples with the real handlers.
"""

from __future__ import annotations

import os
import threading
import time

import pytest

from upkeep.core.config.models import UpkeepConfig
from upkeep.core.config.resolver import ResolvedConfig
from upkeep.core.errors import ConfigError, CycleError
from upkeep.core.run.executor import Executor, run
from upkeep.core.run.interrupt import InterruptHandler
from upkeep.core.run.models import RunEventType, TaskResult, TaskState
from upkeep.core.tasks.graph import TaskGraph


def _executor(tasks, handler, **kwargs) -> Executor:
    return Executor(TaskGraph.build(tasks), handler, **kwargs)


def _states(report) -> dict[str, TaskState]:
    return {e.task_id: e.state for e in report.entries}


# ==============================================================================
# Scheduling
# ==============================================================================


class TestScheduling:
    """Dependency ordering and terminal states."""

    def test_every_task_reaches_terminal_state(self, make_task, recording_handler):
        handler = recording_handler()
        tasks = [make_task("a"), make_task("b", "a"), make_task("c", "a"), make_task("d")]
        report = _executor(tasks, handler).run()

        assert _states(report) == {t: TaskState.SUCCEEDED for t in "abcd"}
        assert sorted(handler.calls) == ["a", "b", "c", "d"]
        assert report.exit_code == 0

    def test_prerequisite_finishes_before_dependent_starts(self, make_task, recording_handler):
        finished: set[str] = set()
        violations: list[str] = []
        lock = threading.Lock()

        def on_call(spec):
            with lock:
                for dep in spec.depends_on:
                    if dep not in finished:
                        violations.append(f"{spec.id} started before {dep}")
            time.sleep(0.01)
            with lock:
                finished.add(spec.id)

        handler = recording_handler(on_call=on_call)
        tasks = [
            make_task("repo"),
            make_task("links", "repo"),
            make_task("install", "repo"),
            make_task("post", "links", "install"),
        ]
        _executor(tasks, handler, max_workers=4).run()

        assert violations == []
        assert handler.calls[0] == "repo"
        assert handler.calls[-1] == "post"

    def test_independent_tasks_run_concurrently(self, make_task, recording_handler):
        barrier = threading.Barrier(2, timeout=5)
        handler = recording_handler(on_call=lambda spec: barrier.wait())
        report = _executor([make_task("a"), make_task("b")], handler, max_workers=2).run()

        assert _states(report) == {"a": TaskState.SUCCEEDED, "b": TaskState.SUCCEEDED}

    def test_single_worker_still_completes(self, make_task, recording_handler):
        tasks = [make_task(str(i)) for i in range(5)]
        report = _executor(tasks, recording_handler(), max_workers=1).run()
        assert report.count(TaskState.SUCCEEDED) == 5

    def test_invalid_worker_count(self, make_task, recording_handler):
        with pytest.raises(ValueError):
            _executor([make_task("a")], recording_handler(), max_workers=0)

    def test_empty_graph(self, recording_handler):
        report = _executor([], recording_handler()).run()
        assert report.entries == []
        assert report.exit_code == 0


# ==============================================================================
# Failure isolation
# ==============================================================================


class TestFailureIsolation:
    """A failure only affects its own subtree."""

    def test_dependents_of_failed_task_are_skipped(self, make_task, recording_handler):
        handler = recording_handler(fail={"repo"})
        tasks = [
            make_task("repo"),
            make_task("links", "repo"),
            make_task("post", "links"),
            make_task("other"),
        ]
        report = _executor(tasks, handler).run()

        assert _states(report) == {
            "repo": TaskState.FAILED,
            "links": TaskState.SKIPPED,
            "post": TaskState.SKIPPED,
            "other": TaskState.SUCCEEDED,
        }
        assert "links" not in handler.calls
        assert "post" not in handler.calls
        assert report.get("links").reason == "dependency 'repo' failed"
        # Transitive skips name the task that actually failed
        assert report.get("post").reason == "dependency 'repo' failed"
        assert report.exit_code == 1

    def test_any_failed_prerequisite_skips(self, make_task, recording_handler):
        handler = recording_handler(fail={"b"})
        tasks = [make_task("a"), make_task("b"), make_task("c", "a", "b")]
        report = _executor(tasks, handler).run()

        assert report.get("a").state is TaskState.SUCCEEDED
        assert report.get("c").state is TaskState.SKIPPED
        assert "c" not in handler.calls

    def test_handler_exception_becomes_failed(self, make_task, recording_handler):
        handler = recording_handler(explode={"a"})
        report = _executor([make_task("a"), make_task("b"), make_task("c", "a")], handler).run()

        assert report.get("a").state is TaskState.FAILED
        assert "boom in a" in report.get("a").reason
        assert report.get("b").state is TaskState.SUCCEEDED
        assert report.get("c").state is TaskState.SKIPPED

    def test_non_terminal_handler_result_is_failed(self, make_task):
        def handler(spec):
            return TaskResult(spec.id, spec.kind.value, TaskState.RUNNING)

        report = _executor([make_task("a")], handler).run()
        assert report.get("a").state is TaskState.FAILED
        assert "non-terminal" in report.get("a").reason

    def test_skipped_tasks_do_not_fail_the_run_on_their_own(self, make_task, recording_handler):
        handler = recording_handler(fail={"a"})
        report = _executor([make_task("a"), make_task("b", "a")], handler).run()
        assert [e.task_id for e in report.failed] == ["a"]


class TestFailFast:
    def test_stops_dispatch_after_first_failure(self, make_task, recording_handler):
        handler = recording_handler(fail={"a"})
        tasks = [make_task("a"), make_task("b", "a"), make_task("c", "a"), make_task("d", "c")]
        report = _executor(tasks, handler, fail_fast=True, max_workers=1).run()

        assert handler.calls == ["a"]
        assert report.get("a").state is TaskState.FAILED
        assert all(report.get(t).state is TaskState.SKIPPED for t in "bcd")

    def test_unrelated_pending_task_skipped_with_fail_fast_reason(
        self, make_task, recording_handler
    ):
        handler = recording_handler(fail={"a"})
        tasks = [make_task("a"), make_task("z")]
        report = _executor(tasks, handler, fail_fast=True, max_workers=1).run()

        assert handler.calls == ["a"]
        assert report.get("z").state is TaskState.SKIPPED
        assert report.get("z").reason == "fail-fast"

    def test_running_tasks_finish(self, make_task, recording_handler):
        release = threading.Event()

        def on_call(spec):
            if spec.id == "slow":
                release.wait(timeout=5)

        def observer(event):
            if event.task_id == "bad" and event.state is TaskState.FAILED:
                release.set()

        handler = recording_handler(fail={"bad"}, on_call=on_call)
        tasks = [make_task("slow"), make_task("bad"), make_task("after", "slow")]
        report = _executor(
            tasks, handler, fail_fast=True, max_workers=2, observers=[observer]
        ).run()

        assert report.get("slow").state is TaskState.SUCCEEDED
        assert report.get("bad").state is TaskState.FAILED
        assert report.get("after").state is TaskState.SKIPPED
        assert report.get("after").reason == "fail-fast"
        assert "after" not in handler.calls

    def test_without_fail_fast_siblings_continue(self, make_task, recording_handler):
        handler = recording_handler(fail={"a"})
        report = _executor([make_task("a"), make_task("b")], handler, max_workers=1).run()
        assert report.get("b").state is TaskState.SUCCEEDED


class TestAbort:
    def test_interrupt_before_run_skips_everything(self, make_task, recording_handler):
        interrupt = InterruptHandler()
        interrupt.trigger()
        handler = recording_handler()
        tasks = [make_task("a"), make_task("b", "a")]
        report = _executor(tasks, handler, interrupt=interrupt).run()

        assert handler.calls == []
        assert report.aborted is True
        assert all(e.state is TaskState.SKIPPED and e.reason == "aborted" for e in report.entries)
        assert report.exit_code == 130

    def test_in_flight_task_finishes_then_abort(self, make_task, recording_handler):
        interrupt = InterruptHandler()

        def on_call(spec):
            if spec.id == "a":
                interrupt.trigger()

        handler = recording_handler(on_call=on_call)
        report = _executor(
            [make_task("a"), make_task("b", "a"), make_task("c", "b")],
            handler,
            interrupt=interrupt,
        ).run()

        assert handler.calls == ["a"]
        assert report.get("a").state is TaskState.SUCCEEDED
        assert report.get("b").state is TaskState.SKIPPED
        assert report.get("c").reason == "aborted"
        assert report.aborted


# ==============================================================================
# Events
# ==============================================================================


class TestEvents:
    def test_state_transitions_emitted(self, make_task, recording_handler):
        events = []
        _executor(
            [make_task("a"), make_task("b", "a")],
            recording_handler(fail={"a"}),
            observers=[events.append],
        ).run()

        transitions = [
            (e.task_id, e.state) for e in events if e.event_type is RunEventType.TASK_STATE
        ]
        assert transitions == [
            ("a", TaskState.RUNNING),
            ("a", TaskState.FAILED),
            ("b", TaskState.SKIPPED),
        ]
        assert events[0].event_type is RunEventType.RUN_STARTED
        assert events[-1].event_type is RunEventType.RUN_COMPLETED
        assert events[-1].data["exit_code"] == 1

    def test_aborted_run_emits_run_aborted(self, make_task, recording_handler):
        interrupt = InterruptHandler()
        interrupt.trigger()
        events = []
        _executor(
            [make_task("a")], recording_handler(), interrupt=interrupt, observers=[events.append]
        ).run()
        assert events[-1].event_type is RunEventType.RUN_ABORTED

    def test_failing_observer_does_not_break_run(self, make_task, recording_handler):
        def observer(event):
            raise RuntimeError("observer broke")

        report = _executor([make_task("a")], recording_handler(), observers=[observer]).run()
        assert report.get("a").state is TaskState.SUCCEEDED


# ==============================================================================
# run() entry point
# ==============================================================================


class TestRun:
    def test_cycle_rejected_before_any_side_effect(self, tmp_path):
        marker = tmp_path / "ran"
        config = UpkeepConfig.model_validate({
            "tasks": {
                "a": {"kind": "command", "run": f"touch {marker}", "depends_on": ["b"]},
                "b": {"kind": "command", "run": f"touch {marker}", "depends_on": ["a"]},
                "c": {"kind": "command", "run": f"touch {marker}"},
            }
        })
        with pytest.raises(CycleError) as exc_info:
            run(config, base_dir=tmp_path)

        assert exc_info.value.cycle in (["a", "b", "a"], ["b", "a", "b"])
        assert not marker.exists()

    def test_unknown_dependency_is_config_error(self, tmp_path):
        config = UpkeepConfig.model_validate(
            {"tasks": {"a": {"kind": "command", "run": "true", "depends_on": ["nope"]}}}
        )
        with pytest.raises(ConfigError):
            run(config, base_dir=tmp_path)

    def test_settings_fail_fast_and_override(self, tmp_path, recording_handler):
        config = UpkeepConfig.model_validate({
            "settings": {"fail_fast": True, "max_workers": 1},
            "tasks": {
                "a": {"kind": "command", "run": "false"},
                "b": {"kind": "command", "run": "true"},
            },
        })
        handler = recording_handler(fail={"a"})
        report = run(config, base_dir=tmp_path, handler=handler)
        assert report.get("b").reason == "fail-fast"

        handler = recording_handler(fail={"a"})
        report = run(config, base_dir=tmp_path, handler=handler, fail_fast=False)
        assert report.get("b").state is TaskState.SUCCEEDED

    def test_accepts_resolved_config(self, make_task, recording_handler):
        resolved = ResolvedConfig(tasks=[make_task("a")])
        report = run(resolved, handler=recording_handler())
        assert report.get("a").state is TaskState.SUCCEEDED

    def test_event_log_receives_events(self, make_task, recording_handler):
        events = []
        run(
            ResolvedConfig(tasks=[make_task("a")]),
            handler=recording_handler(),
            event_log=events.append,
        )
        assert any(e.event_type is RunEventType.RUN_COMPLETED for e in events)


class TestEndToEnd:
    """Real handlers against a temporary home directory."""

    def test_link_into_empty_home(self, tmp_path, dotfiles_dir, home_dir):
        config = UpkeepConfig.model_validate({
            "tasks": {
                "vim": {
                    "kind": "link",
                    "conflict_policy": "skip",
                    "links": [{"source": str(dotfiles_dir / "vimrc"), "target": "~/.vimrc"}],
                },
            }
        })
        report = run(config, base_dir=tmp_path)

        target = home_dir / ".vimrc"
        assert report.get("vim").state is TaskState.SUCCEEDED
        assert report.get("vim").detail[0]["status"] == "created"
        assert os.readlink(target) == str(dotfiles_dir / "vimrc")
        assert report.exit_code == 0

        again = run(config, base_dir=tmp_path)
        assert again.get("vim").detail[0]["status"] == "already_correct"

    def test_conflict_skip_keeps_file_and_exit_zero(self, tmp_path, dotfiles_dir, home_dir):
        existing = home_dir / ".vimrc"
        existing.write_text("mine\n")
        config = UpkeepConfig.model_validate({
            "tasks": {
                "vim": {
                    "kind": "link",
                    "conflict_policy": "skip",
                    "links": [{"source": str(dotfiles_dir / "vimrc"), "target": "~/.vimrc"}],
                },
            }
        })
        report = run(config, base_dir=tmp_path)

        entry = report.get("vim")
        assert entry.state is TaskState.SUCCEEDED
        assert entry.detail[0]["status"] == "conflict_skipped"
        assert "conflict(s) skipped" in entry.reason
        assert existing.read_text() == "mine\n"
        assert not existing.is_symlink()
        assert report.exit_code == 0

    def test_failed_command_skips_dependent_link(self, tmp_path, dotfiles_dir, home_dir):
        config = UpkeepConfig.model_validate({
            "tasks": {
                "check": {"kind": "command", "run": "exit 3"},
                "vim": {
                    "kind": "link",
                    "conflict_policy": "skip",
                    "depends_on": ["check"],
                    "links": [{"source": str(dotfiles_dir / "vimrc"), "target": "~/.vimrc"}],
                },
            }
        })
        report = run(config, base_dir=tmp_path)

        assert report.get("check").state is TaskState.FAILED
        assert "exit code 3" in report.get("check").reason
        assert report.get("vim").state is TaskState.SKIPPED
        assert not os.path.lexists(home_dir / ".vimrc")
        assert report.exit_code == 1

    def test_dry_run_changes_nothing(self, tmp_path, dotfiles_dir, home_dir):
        marker = tmp_path / "ran"
        config = UpkeepConfig.model_validate({
            "tasks": {
                "vim": {
                    "kind": "link",
                    "conflict_policy": "skip",
                    "links": [{"source": str(dotfiles_dir / "vimrc"), "target": "~/.vimrc"}],
                },
                "touch": {"kind": "command", "run": f"touch {marker}"},
            }
        })
        report = run(config, base_dir=tmp_path, dry_run=True)

        assert report.dry_run is True
        assert report.get("vim").detail[0]["status"] == "created"
        assert not os.path.lexists(home_dir / ".vimrc")
        assert not marker.exists()

    def test_clone_then_link(self, tmp_path, home_dir, remote_repo):
        remote_repo.commit("vimrc", "set number\n")
        config = UpkeepConfig.model_validate({
            "tasks": {
                "dotfiles": {"kind": "git", "url": remote_repo.url, "path": "~/dotfiles"},
                "vim": {
                    "kind": "link",
                    "conflict_policy": "skip",
                    "depends_on": ["dotfiles"],
                    "links": [{"source": "~/dotfiles/vimrc", "target": "~/.vimrc"}],
                },
            }
        })
        report = run(config, base_dir=tmp_path)

        assert report.get("dotfiles").detail[0]["status"] == "cloned"
        assert report.get("vim").detail[0]["status"] == "created"
        assert [e.state for e in report.entries] == [TaskState.SUCCEEDED, TaskState.SUCCEEDED]
        assert (home_dir / ".vimrc").read_text() == "set number\n"
        assert report.exit_code == 0

        again = run(config, base_dir=tmp_path)
        assert again.get("dotfiles").detail[0]["status"] == "already_up_to_date"
        assert again.get("vim").detail[0]["status"] == "already_correct"
