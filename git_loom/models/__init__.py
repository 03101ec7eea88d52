"""Data models for git-loom."""

from .worktree import Worktree, WorktreeCreateSpec, WorktreeContext
from .loom import LoomMetadata, LoomState, ParentLoom, SwarmChildIssue
from .results import ChildCreationResult, FileStatusSummary, MergeOutcome, SwarmSetupResult

__all__ = [
    "ChildCreationResult",
    "FileStatusSummary",
    "LoomMetadata",
    "LoomState",
    "MergeOutcome",
    "ParentLoom",
    "SwarmChildIssue",
    "SwarmSetupResult",
    "Worktree",
    "WorktreeContext",
    "WorktreeCreateSpec",
]
