"""Worktree data models."""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Worktree:
    """A git worktree as reported by ``git worktree list --porcelain``."""

    path: str  # Absolute, unique key
    branch: Optional[str]  # None when detached or bare
    commit: str
    bare: bool = False
    detached: bool = False
    locked: bool = False
    lock_reason: Optional[str] = None
    prunable: bool = False  # Directory missing on disk

    def __str__(self) -> str:
        """String representation of worktree."""
        branch = self.branch or ("(bare)" if self.bare else "(detached)")
        suffix = " [locked]" if self.locked else ""
        return f"{branch} @ {self.path}{suffix}"


@dataclass
class WorktreeCreateSpec:
    """Options for creating a new worktree."""

    branch: str
    path: str
    base_branch: Optional[str] = None  # Defaults to the repository's current HEAD
    create_branch: bool = True
    force: bool = False  # Override existing branch/path checks


@dataclass(frozen=True)
class WorktreeContext:
    """Result of resolving a working directory to a registered worktree."""

    worktree_path: str
    worktree: Worktree
