"""
Pytest configuration and shared fixtures.

Provides fixtures for temp home directories, config files, task specs and
local git repositories used across the test suite.
"""

import shutil
import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest
import yaml

from upkeep.core.config.models import CommandSpec
from upkeep.core.run.models import TaskResult, TaskState
from upkeep.core.tasks.models import TaskKind, TaskSpec

# ==============================================================================
# Directory Fixtures
# ==============================================================================


@pytest.fixture
def home_dir(tmp_path, monkeypatch):
    """Provide an isolated HOME with XDG directories under tmp_path."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("XDG_CONFIG_HOME", str(home / ".config"))
    monkeypatch.setenv("XDG_STATE_HOME", str(home / ".local" / "state"))
    monkeypatch.delenv("UPKEEP_CONFIG", raising=False)
    monkeypatch.delenv("UPKEEP_FAIL_FAST", raising=False)
    monkeypatch.delenv("UPKEEP_MAX_WORKERS", raising=False)
    return home


@pytest.fixture
def dotfiles_dir(tmp_path):
    """
    Provide a dotfiles source tree.

    Creates:
    - vimrc
    - bashrc
    - config/git/config
    """
    source = tmp_path / "dotfiles"
    (source / "config" / "git").mkdir(parents=True)
    (source / "vimrc").write_text("set number\n")
    (source / "bashrc").write_text("export EDITOR=vim\n")
    (source / "config" / "git" / "config").write_text("[user]\n\tname = Test\n")
    return source


@pytest.fixture
def write_config(tmp_path) -> Callable[[dict], Path]:
    """Write a config dict as YAML and return its path."""

    def _write(data: dict, name: str = "upkeep.yaml") -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(data, sort_keys=False))
        return path

    return _write


# ==============================================================================
# Task Fixtures
# ==============================================================================


def command_task(task_id: str, *depends_on: str, run: str = "true") -> TaskSpec:
    return TaskSpec(task_id, TaskKind.COMMAND, tuple(depends_on), CommandSpec(run=run))


@pytest.fixture
def make_task() -> Callable[..., TaskSpec]:
    """Build a command TaskSpec: make_task("b", "a") depends on "a"."""
    return command_task


class RecordingHandler:
    """
    Fake task handler.

    Tasks listed in ``fail`` end failed, tasks in ``explode`` raise, all
    others succeed. Every call is recorded in order.
    """

    def __init__(self, fail=(), explode=(), on_call=None):
        self.fail = set(fail)
        self.explode = set(explode)
        self.on_call = on_call
        self.calls: list[str] = []

    def __call__(self, spec: TaskSpec) -> TaskResult:
        self.calls.append(spec.id)
        if self.on_call is not None:
            self.on_call(spec)
        if spec.id in self.explode:
            raise RuntimeError(f"boom in {spec.id}")
        state = TaskState.FAILED if spec.id in self.fail else TaskState.SUCCEEDED
        reason = "forced failure" if state is TaskState.FAILED else None
        return TaskResult(spec.id, spec.kind.value, state, reason)


@pytest.fixture
def recording_handler() -> Callable[..., RecordingHandler]:
    """Factory for RecordingHandler instances."""
    return RecordingHandler


# ==============================================================================
# Git Fixtures
# ==============================================================================


def git(*args: str, cwd: Path) -> str:
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


@pytest.fixture
def git_identity(monkeypatch, tmp_path):
    """Make git usable without any user or system configuration."""
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Upkeep Test")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Upkeep Test")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "test@example.com")
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    global_config = tmp_path / "gitconfig"
    global_config.write_text("[init]\n\tdefaultBranch = main\n")
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(global_config))


class RemoteRepo:
    """A bare repository plus a scratch clone used to push new commits."""

    def __init__(self, root: Path):
        self.url = str(root / "remote.git")
        self.work = root / "seed"
        git("init", "--bare", "--initial-branch=main", self.url, cwd=root)
        git("clone", self.url, str(self.work), cwd=root)
        (self.work / "README").write_text("hello\n")
        git("add", "README", cwd=self.work)
        git("commit", "-m", "initial commit", cwd=self.work)
        git("push", "origin", "HEAD:main", cwd=self.work)

    def commit(self, name: str, content: str, branch: str = "main") -> str:
        """Commit *name* with *content* on *branch* (created from HEAD if new) and push it."""
        try:
            git("checkout", branch, cwd=self.work)
        except subprocess.CalledProcessError:
            git("checkout", "-b", branch, cwd=self.work)
        (self.work / name).write_text(content)
        git("add", name, cwd=self.work)
        git("commit", "-m", f"update {name}", cwd=self.work)
        git("push", "origin", branch, cwd=self.work)
        return git("rev-parse", "HEAD", cwd=self.work)

    def tag(self, name: str) -> str:
        """Tag the seed clone's HEAD as *name* and push the tag."""
        git("tag", name, cwd=self.work)
        git("push", "origin", f"refs/tags/{name}", cwd=self.work)
        return git("rev-parse", "HEAD", cwd=self.work)


@pytest.fixture
def remote_repo(tmp_path, git_identity) -> RemoteRepo:
    """Provide a local bare repository with one commit on main."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    root = tmp_path / "remotes"
    root.mkdir()
    return RemoteRepo(root)


@pytest.fixture
def run_git() -> Callable[..., str]:
    """Run a git command in a directory and return its stdout."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")
    return git
