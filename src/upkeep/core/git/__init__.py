"""
Git repository synchronization: clone or fast-forward, never overwrite.
"""

from .models import RepoOutcome, RepoStatus
from .syncer import GitSyncer, classify_git_error, normalize_url

__all__ = ["GitSyncer", "RepoOutcome", "RepoStatus", "classify_git_error", "normalize_url"]
