"""
Source tree traversal for ``from_dir`` link groups.

Yields every non-directory entry under a source directory, relative to it.
Symlinks are yielded as entries and never followed, so a symlinked directory
in the source tree becomes a single link in the target tree.

Entries are skipped when they match an ``ignore`` pattern from the config or a
line of a ``.upkeepignore`` file at the root of the source tree. Both use
gitignore syntax (anchoring with ``/``, ``**``, negation with ``!``, trailing
``/`` for directories only). ``.git`` directories are always skipped.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

IGNORE_FILENAME = ".upkeepignore"
ALWAYS_IGNORED = (".git", f"/{IGNORE_FILENAME}")


def read_ignore_file(root: Path) -> list[str]:
    """Read patterns from ``root/.upkeepignore`` (blank lines and # comments skipped)."""
    path = root / IGNORE_FILENAME
    if not path.is_file():
        return []
    patterns = []
    for line in path.read_text(encoding="utf-8").splitlines():
        line = line.strip()
        if line and not line.startswith("#"):
            patterns.append(line)
    return patterns


def load_ignore_spec(root: Path, ignore: Iterable[str] = ()) -> pathspec.PathSpec:
    """Built-in, config and ``.upkeepignore`` patterns as one matcher (later lines win)."""
    patterns = [*ALWAYS_IGNORED, *ignore, *read_ignore_file(root)]
    return pathspec.GitIgnoreSpec.from_lines(patterns)


def matches_pattern(rel_path: str, patterns: Iterable[str], *, is_dir: bool = False) -> bool:
    """Check if a relative posix path is ignored by the given gitignore-style patterns."""
    spec = pathspec.GitIgnoreSpec.from_lines(list(patterns))
    return _is_ignored(spec, rel_path, is_dir=is_dir)


def _is_ignored(spec: pathspec.PathSpec, rel_path: str, *, is_dir: bool = False) -> bool:
    # pathspec only applies directory patterns ("build/") to paths ending in "/"
    return spec.match_file(f"{rel_path}/" if is_dir else rel_path)


def iter_source_files(root: Path, ignore: Iterable[str] = ()) -> Iterator[Path]:
    """
    Walk *root* and yield relative paths of files and symlinks to link.

    Args:
        root: Source directory (must exist)
        ignore: Extra gitignore-style patterns, applied before ``.upkeepignore``

    Yields:
        Relative paths in sorted, depth-first order
    """
    spec = load_ignore_spec(root, ignore)

    for dirpath, dirnames, filenames in os.walk(root, followlinks=False):
        current = Path(dirpath)
        rel_dir = current.relative_to(root)

        entries = list(filenames)
        kept_dirs = []
        for name in sorted(dirnames):
            if (current / name).is_symlink():
                entries.append(name)
                continue
            rel = (rel_dir / name).as_posix()
            if _is_ignored(spec, rel, is_dir=True):
                logger.debug(f"Ignoring directory {rel}")
                continue
            kept_dirs.append(name)
        dirnames[:] = kept_dirs

        for name in sorted(entries):
            rel_path = rel_dir / name
            if _is_ignored(spec, rel_path.as_posix()):
                logger.debug(f"Ignoring {rel_path.as_posix()}")
                continue
            yield rel_path
