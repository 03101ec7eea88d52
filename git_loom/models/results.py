"""Result types returned to callers and scripting layers.

Field names in ``to_dict()`` are a cross-process contract (line-delimited
JSON consumed by scripts) and must stay stable.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class MergeOutcome:
    """Outcome of a rebase or merge onto the mainline."""

    conflicts_detected: bool = False
    claude_launched: bool = False
    conflicts_resolved: bool = False
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None and (not self.conflicts_detected or self.conflicts_resolved)

    @classmethod
    def failed(cls, error: str) -> "MergeOutcome":
        return cls(error=error)

    def to_dict(self) -> Dict[str, Any]:
        if self.error is not None and not self.conflicts_detected:
            return {"success": False, "error": self.error}
        data: Dict[str, Any] = {
            "conflictsDetected": self.conflicts_detected,
            "claudeLaunched": self.claude_launched,
            "conflictsResolved": self.conflicts_resolved,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class ChildCreationResult:
    """Outcome of creating one swarm child worktree."""

    issue_id: str
    worktree_path: str
    branch: str
    success: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "issueId": self.issue_id,
            "worktreePath": self.worktree_path,
            "branch": self.branch,
            "success": self.success,
        }
        if self.error is not None:
            data["error"] = self.error
        return data


@dataclass
class SwarmSetupResult:
    """Outcome of a full swarm setup."""

    parent_worktree_path: str
    parent_branch: str
    child_worktrees: List[ChildCreationResult] = field(default_factory=list)
    agents_rendered: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> List[ChildCreationResult]:
        return [c for c in self.child_worktrees if c.success]

    @property
    def failed(self) -> List[ChildCreationResult]:
        return [c for c in self.child_worktrees if not c.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "parentWorktreePath": self.parent_worktree_path,
            "parentBranch": self.parent_branch,
            "childWorktrees": [c.to_dict() for c in self.child_worktrees],
            "agentsRendered": list(self.agents_rendered),
        }


@dataclass
class FileStatusSummary:
    """Staged and unstaged paths parsed from ``git status --porcelain``."""

    staged_files: List[str] = field(default_factory=list)
    unstaged_files: List[str] = field(default_factory=list)

    @property
    def has_uncommitted_changes(self) -> bool:
        return bool(self.staged_files or self.unstaged_files)
