"""
Git repository synchronization.

``GitSyncer.sync`` brings one local working copy up to date with its remote
without ever discarding local work:

- path absent (or an empty directory): clone at the requested branch
- path is a working copy of the same remote: fetch, then fast-forward only
  - already at the remote commit, or ahead of it: ``already_up_to_date``
  - fast-forward possible: ``updated``
  - local modifications or diverged history: ``conflict_skipped``, untouched
- path holds anything else: ``failed`` ("path occupied by unrelated content")

A ``branch`` that names a tag instead of a remote branch pins the working copy
to that tag with a detached checkout. Extra ``remotes`` are added when missing
and never rewritten.

Every git invocation goes through ``_git(...)``, which never raises for a
non-zero exit; callers inspect ``returncode`` and stderr. Errors are mapped
to short reason tags so the run report stays readable.

Running ``sync`` twice against an unchanged remote gives
``already_up_to_date`` the second time; a working copy is never re-cloned.
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import replace
from pathlib import Path

from upkeep.core.config.models import RepoSpec
from upkeep.core.errors import TaskError

from .models import RepoOutcome, RepoStatus

logger = logging.getLogger(__name__)

OCCUPIED_REASON = "path occupied by unrelated content"


def classify_git_error(stderr_text: str) -> str:
    """Map common git stderr to concise reason tags, falling back to the last line."""
    text = (stderr_text or "").lower()
    if not text.strip():
        return "unknown"
    if "not a git repository" in text:
        return "not_git_repo"
    if (
        "couldn't find remote ref" in text
        or ("remote branch" in text and "not found" in text)
        or "no such remote" in text
    ):
        return "remote_ref_missing"
    if "would be overwritten" in text or "your local changes" in text:
        return "local_changes_conflict"
    if "not possible to fast-forward" in text or "cannot fast-forward" in text:
        return "not_fast_forward"
    if (
        "could not resolve host" in text
        or "failed to connect" in text
        or "timed out" in text
        or "connection refused" in text
    ):
        return "network_error"
    if (
        "authentication failed" in text
        or "permission denied" in text
        or "could not read username" in text
    ):
        return "auth_error"
    if "does not appear to be a git repository" in text or "repository not found" in text:
        return "repository_not_found"
    return stderr_text.strip().splitlines()[-1]


def normalize_url(url: str) -> str:
    """Normalize a remote URL for comparison (trailing slash and ``.git`` ignored)."""
    url = url.strip().rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url


class GitSyncer:
    """
    Clones or fast-forwards working copies described by ``RepoSpec``.

    Example:
        >>> syncer = GitSyncer()
        >>> spec = RepoSpec(url="git@example.com:me/dotfiles", path="/home/me/dotfiles")
        >>> outcome = syncer.sync(spec)
        >>> outcome.status
        <RepoStatus.CLONED: 'cloned'>
    """

    def __init__(self, *, dry_run: bool = False, timeout_seconds: float | None = None):
        """
        Args:
            dry_run: Inspect only; report what would happen without cloning,
                     fetching or merging
            timeout_seconds: Per git command timeout (default: none)
        """
        self.dry_run = dry_run
        self.timeout_seconds = timeout_seconds
        self._env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}

    def sync(self, spec: RepoSpec) -> RepoOutcome:
        """Synchronize one working copy. Never raises for git or filesystem errors."""
        path = Path(spec.path)
        try:
            if not os.path.lexists(path) or _is_empty_dir(path):
                outcome = self._clone(spec, path)
                if outcome.failed:
                    return outcome
                if self.dry_run:
                    return replace(outcome, remotes_added=tuple(r.name for r in spec.remotes))
                return replace(outcome, remotes_added=self._ensure_remotes(spec, path))

            if not path.is_dir() or not self._is_working_copy(path):
                logger.error(f"{path} exists but is not a git working copy")
                return RepoOutcome(path, RepoStatus.FAILED, OCCUPIED_REASON)

            remote_url = self._remote_url(path, spec.remote)
            if remote_url is None or normalize_url(remote_url) != normalize_url(spec.url):
                logger.error(
                    f"{path} is a working copy of {remote_url or 'an unknown remote'}, "
                    f"expected {spec.url}"
                )
                return RepoOutcome(
                    path,
                    RepoStatus.FAILED,
                    f"{OCCUPIED_REASON} (remote '{spec.remote}' is {remote_url or 'missing'})",
                )

            outcome = self._update(spec, path)
            if outcome.failed:
                return outcome
            return replace(outcome, remotes_added=self._ensure_remotes(spec, path))
        except TaskError as e:
            return RepoOutcome(path, RepoStatus.FAILED, e.reason)
        except OSError as e:
            return RepoOutcome(path, RepoStatus.FAILED, e.strerror or str(e))

    # ------------------------------------------------------------------
    # Clone
    # ------------------------------------------------------------------

    def _clone(self, spec: RepoSpec, path: Path) -> RepoOutcome:
        if self.dry_run:
            return RepoOutcome(path, RepoStatus.CLONED, "dry run")

        path.parent.mkdir(parents=True, exist_ok=True)
        args = ["clone", "--origin", spec.remote]
        if spec.branch:
            args += ["--branch", spec.branch]
        args += [spec.url, str(path)]

        logger.info(f"Cloning {spec.url} into {path}")
        result = self._git(args, cwd=path.parent)
        if result.returncode != 0:
            reason = classify_git_error(result.stderr)
            logger.error(f"Clone of {spec.url} failed [{reason}]")
            return RepoOutcome(path, RepoStatus.FAILED, f"clone failed: {reason}")
        return RepoOutcome(path, RepoStatus.CLONED, head=self._rev_parse(path, "HEAD"))

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    def _update(self, spec: RepoSpec, path: Path) -> RepoOutcome:
        if not self.dry_run:
            result = self._git(["fetch", "--prune", spec.remote], cwd=path)
            if result.returncode != 0:
                reason = classify_git_error(result.stderr)
                logger.error(f"Fetch in {path} failed [{reason}]")
                return RepoOutcome(path, RepoStatus.FAILED, f"fetch failed: {reason}")

        if self._is_dirty(path):
            logger.warning(f"{path} has local modifications, not updating")
            return RepoOutcome(path, RepoStatus.CONFLICT_SKIPPED, "local changes")

        current = self._current_branch(path)
        ref = spec.branch or current or self._remote_default_branch(path, spec.remote)
        if ref is None:
            raise TaskError("detached HEAD and no branch configured")

        upstream = f"{spec.remote}/{ref}"
        target = self._rev_parse(path, f"refs/remotes/{upstream}")
        if target is None:
            return self._pin(spec, path, ref)
        if ref != current:
            return self._switch(path, ref, upstream, target)
        return self._fast_forward(path, upstream, target)

    def _switch(self, path: Path, branch: str, upstream: str, target: str) -> RepoOutcome:
        """Check out *branch* and fast-forward it, unless its local copy has diverged."""
        local = self._rev_parse(path, f"refs/heads/{branch}")
        if (
            local is not None
            and local != target
            and not self._is_ancestor(path, local, target)
            and not self._is_ancestor(path, target, local)
        ):
            logger.warning(f"Local {branch} in {path} has diverged from {upstream}, not switching")
            head = self._rev_parse(path, "HEAD")
            return RepoOutcome(path, RepoStatus.CONFLICT_SKIPPED, "diverged history", head=head)

        if self.dry_run:
            return RepoOutcome(path, RepoStatus.UPDATED, f"dry run: would check out {branch}")

        if local is not None:
            args = ["checkout", branch]
        else:
            args = ["checkout", "-b", branch, "--track", upstream]
        logger.info(f"Checking out {branch} in {path}")
        result = self._git(args, cwd=path)
        if result.returncode != 0:
            reason = classify_git_error(result.stderr)
            return RepoOutcome(path, RepoStatus.CONFLICT_SKIPPED, f"checkout failed: {reason}")
        return self._fast_forward(path, upstream, target, switched=True)

    def _fast_forward(
        self, path: Path, upstream: str, target: str, *, switched: bool = False
    ) -> RepoOutcome:
        unchanged = RepoStatus.UPDATED if switched else RepoStatus.ALREADY_UP_TO_DATE
        head = self._rev_parse(path, "HEAD")
        if head == target:
            return RepoOutcome(path, unchanged, head=head)

        if not self._is_ancestor(path, "HEAD", upstream):
            if self._is_ancestor(path, upstream, "HEAD"):
                logger.info(f"{path} is ahead of {upstream}, nothing to pull")
                return RepoOutcome(path, unchanged, "local branch is ahead", head=head)
            logger.warning(f"{path} has diverged from {upstream}, not updating")
            return RepoOutcome(path, RepoStatus.CONFLICT_SKIPPED, "diverged history", head=head)

        if self.dry_run:
            return RepoOutcome(path, RepoStatus.UPDATED, f"dry run: would fast-forward to {target}")

        result = self._git(["merge", "--ff-only", "--no-stat", upstream], cwd=path)
        if result.returncode != 0:
            reason = classify_git_error(result.stderr)
            logger.warning(f"Fast-forward of {path} refused [{reason}]")
            return RepoOutcome(path, RepoStatus.CONFLICT_SKIPPED, reason, head=head)

        logger.info(f"Fast-forwarded {path} to {upstream}")
        return RepoOutcome(path, RepoStatus.UPDATED, head=self._rev_parse(path, "HEAD"))

    def _pin(self, spec: RepoSpec, path: Path, tag: str) -> RepoOutcome:
        """Detach HEAD at tag *tag*; a ref that is neither branch nor tag fails."""
        if not self.dry_run:
            result = self._git(
                ["fetch", "--no-tags", spec.remote, f"+refs/tags/{tag}:refs/tags/{tag}"], cwd=path
            )
            if result.returncode != 0:
                reason = classify_git_error(result.stderr)
                if reason != "remote_ref_missing":
                    return RepoOutcome(path, RepoStatus.FAILED, f"fetch failed: {reason}")
        target = self._rev_parse(path, f"refs/tags/{tag}")
        if target is None:
            raise TaskError(f"ref '{tag}' not found on remote '{spec.remote}'")

        head = self._rev_parse(path, "HEAD")
        if head == target:
            return RepoOutcome(path, RepoStatus.ALREADY_UP_TO_DATE, head=head)
        if self.dry_run:
            return RepoOutcome(path, RepoStatus.UPDATED, f"dry run: would check out tag {tag}")

        logger.info(f"Checking out tag {tag} in {path}")
        result = self._git(["checkout", "--detach", target], cwd=path)
        if result.returncode != 0:
            reason = classify_git_error(result.stderr)
            return RepoOutcome(path, RepoStatus.CONFLICT_SKIPPED, f"checkout failed: {reason}")
        return RepoOutcome(path, RepoStatus.UPDATED, head=target)

    # ------------------------------------------------------------------
    # Extra remotes
    # ------------------------------------------------------------------

    def _ensure_remotes(self, spec: RepoSpec, path: Path) -> tuple[str, ...]:
        """Add configured extra remotes that are missing; existing ones are left alone."""
        added = []
        for remote in spec.remotes:
            url = self._remote_url(path, remote.name)
            if url is not None:
                if normalize_url(url) != normalize_url(remote.url):
                    logger.warning(
                        f"Remote '{remote.name}' in {path} points at {url}, expected {remote.url}"
                    )
                continue
            if not self.dry_run:
                result = self._git(["remote", "add", remote.name, remote.url], cwd=path)
                if result.returncode != 0:
                    reason = classify_git_error(result.stderr)
                    raise TaskError(f"adding remote '{remote.name}' failed: {reason}")
                logger.info(f"Added remote '{remote.name}' ({remote.url}) to {path}")
            added.append(remote.name)
        return tuple(added)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def _is_working_copy(self, path: Path) -> bool:
        result = self._git(["rev-parse", "--show-toplevel"], cwd=path)
        if result.returncode != 0:
            return False
        return os.path.realpath(result.stdout.strip()) == os.path.realpath(path)

    def _remote_url(self, path: Path, remote: str) -> str | None:
        result = self._git(["remote", "get-url", remote], cwd=path)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def _is_dirty(self, path: Path) -> bool:
        result = self._git(["status", "--porcelain", "--untracked-files=no"], cwd=path)
        if result.returncode != 0:
            raise TaskError(f"git status failed: {classify_git_error(result.stderr)}")
        return bool(result.stdout.strip())

    def _current_branch(self, path: Path) -> str | None:
        result = self._git(["symbolic-ref", "--quiet", "--short", "HEAD"], cwd=path)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def _remote_default_branch(self, path: Path, remote: str) -> str | None:
        result = self._git(
            ["symbolic-ref", "--quiet", "--short", f"refs/remotes/{remote}/HEAD"], cwd=path
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip().removeprefix(f"{remote}/") or None

    def _rev_parse(self, path: Path, ref: str) -> str | None:
        result = self._git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=path)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def _is_ancestor(self, path: Path, ancestor: str, descendant: str) -> bool:
        result = self._git(["merge-base", "--is-ancestor", ancestor, descendant], cwd=path)
        return result.returncode == 0

    def _git(self, args: list[str], *, cwd: Path) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                ["git", *args],
                cwd=cwd,
                env=self._env,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout_seconds,
            )
        except FileNotFoundError as e:
            raise TaskError("git executable not found") from e
        except subprocess.TimeoutExpired as e:
            raise TaskError(f"git {args[0]} timed out after {self.timeout_seconds}s") from e


def _is_empty_dir(path: Path) -> bool:
    return path.is_dir() and not path.is_symlink() and not any(path.iterdir())
