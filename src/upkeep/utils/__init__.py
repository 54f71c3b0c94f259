"""Utility modules for upkeep."""

from .logging import EventType, LogEntry, RunLogger, get_default_log_dir

__all__ = [
    "EventType",
    "LogEntry",
    "RunLogger",
    "get_default_log_dir",
]
