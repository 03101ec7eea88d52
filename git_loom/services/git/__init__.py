"""Git-related services for git-loom."""

from .commands import (
    detect_conflicted_files,
    detect_uncommitted_changes,
    parse_porcelain_status,
    parse_porcelain_status_z,
    parse_worktree_list,
    run_git,
)
from .worktrees import WorktreeRegistry, normalize_path

__all__ = [
    "WorktreeRegistry",
    "detect_conflicted_files",
    "detect_uncommitted_changes",
    "normalize_path",
    "parse_porcelain_status",
    "parse_porcelain_status_z",
    "parse_worktree_list",
    "run_git",
]
