"""
Link synchronization.

Plans and applies the minimal set of symlink changes needed to make a link
group's targets point at their sources.
"""

from .applier import LinkApplier, backup_name
from .mapping import TargetRegistry, build_mapping
from .models import ActionKind, LinkMapping, LinkOutcome, LinkStatus, PlannedAction
from .planner import LinkPlanner
from .walker import iter_source_files

__all__ = [
    "ActionKind",
    "LinkApplier",
    "LinkMapping",
    "LinkOutcome",
    "LinkPlanner",
    "LinkStatus",
    "PlannedAction",
    "TargetRegistry",
    "backup_name",
    "build_mapping",
    "iter_source_files",
]
