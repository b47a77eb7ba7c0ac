"""Registry mutation: applies resolved decisions and confirmed merges."""

from .executor import ExecutionSettings, MergeExecutor, execute

__all__ = [
    "ExecutionSettings",
    "MergeExecutor",
    "execute",
]
