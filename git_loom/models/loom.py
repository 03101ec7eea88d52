"""Loom metadata model and lifecycle states"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional

from git_loom.exceptions import InvalidStateTransitionError

METADATA_VERSION = 2


class LoomState(Enum):
    """Lifecycle state of a loom."""
    PENDING = "pending"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (LoomState.COMPLETED, LoomState.FAILED)


# Closed transition table. None is a record that has never been given a state.
STATE_TRANSITIONS: Dict[Optional[LoomState], FrozenSet[LoomState]] = {
    None: frozenset({LoomState.PENDING, LoomState.ACTIVE}),
    LoomState.PENDING: frozenset({LoomState.ACTIVE}),
    LoomState.ACTIVE: frozenset({LoomState.COMPLETED, LoomState.FAILED}),
    LoomState.COMPLETED: frozenset(),
    LoomState.FAILED: frozenset(),
}


def validate_transition(current: Optional[LoomState], requested: LoomState) -> None:
    """Raise InvalidStateTransitionError unless current -> requested is allowed.

    Re-writing the current non-terminal state is a no-op and allowed.
    """
    if current == requested and current is not None and not current.is_terminal:
        return
    if requested not in STATE_TRANSITIONS[current]:
        raise InvalidStateTransitionError(
            current.value if current else None, requested.value
        )


@dataclass(frozen=True)
class ParentLoom:
    """Non-owning reference from a child loom to its parent.

    The parent may be removed while children still point at it, so holders
    look the parent up by path or branch and must handle it being gone.
    """
    type: str
    identifier: str
    branch_name: str
    worktree_path: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "type": self.type,
            "identifier": self.identifier,
            "branchName": self.branch_name,
            "worktreePath": self.worktree_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParentLoom":
        return cls(
            type=str(data.get("type", "issue")),
            identifier=str(data.get("identifier", "")),
            branch_name=str(data.get("branchName", "")),
            worktree_path=str(data.get("worktreePath", "")),
        )


@dataclass(frozen=True)
class SwarmChildIssue:
    """A work item to be given its own child worktree."""
    number: str  # Prefixed: "#123" for GitHub, "ENG-123" for other trackers
    title: str
    body: str = ""
    url: str = ""

    @property
    def raw_id(self) -> str:
        return self.number[1:] if self.number.startswith("#") else self.number

    def to_dict(self) -> Dict[str, str]:
        return {"number": self.number, "title": self.title, "body": self.body, "url": self.url}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SwarmChildIssue":
        number = str(data["number"])
        return cls(
            number=number,
            title=str(data.get("title", "")),
            body=str(data.get("body", "")),
            url=str(data.get("url", "")),
        )


@dataclass
class LoomMetadata:
    """Orchestration record attached to one worktree."""
    description: str
    branch_name: str
    worktree_path: str
    issue_type: str = "branch"  # branch, issue, pr, epic
    issue_key: Optional[str] = None
    issue_numbers: List[str] = field(default_factory=list)
    pr_numbers: List[str] = field(default_factory=list)
    issue_tracker: Optional[str] = None
    issue_urls: Dict[str, str] = field(default_factory=dict)
    project_path: Optional[str] = None
    session_id: str = ""
    state: Optional[LoomState] = None
    parent_loom: Optional[ParentLoom] = None
    child_issue_numbers: List[str] = field(default_factory=list)
    child_issues: List[SwarmChildIssue] = field(default_factory=list)
    dependency_map: Dict[str, List[str]] = field(default_factory=dict)
    mcp_config_path: Optional[str] = None
    created_at: Optional[str] = None
    version: int = METADATA_VERSION

    @property
    def is_child(self) -> bool:
        return self.parent_loom is not None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the on-disk (camelCase) field names."""
        return {
            "description": self.description,
            "created_at": self.created_at,
            "version": self.version,
            "branchName": self.branch_name,
            "worktreePath": self.worktree_path,
            "issueType": self.issue_type,
            "issueKey": self.issue_key,
            "issue_numbers": list(self.issue_numbers),
            "pr_numbers": list(self.pr_numbers),
            "issueTracker": self.issue_tracker,
            "issueUrls": dict(self.issue_urls),
            "projectPath": self.project_path,
            "sessionId": self.session_id,
            "state": self.state.value if self.state else None,
            "parentLoom": self.parent_loom.to_dict() if self.parent_loom else None,
            "childIssueNumbers": list(self.child_issue_numbers),
            "childIssues": [c.to_dict() for c in self.child_issues],
            "dependencyMap": {k: list(v) for k, v in self.dependency_map.items()},
            "mcpConfigPath": self.mcp_config_path,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoomMetadata":
        """Parse an on-disk record. Missing optional fields get defaults."""
        state = data.get("state")
        parent = data.get("parentLoom")
        return cls(
            description=data["description"],
            branch_name=data.get("branchName") or "",
            worktree_path=data.get("worktreePath") or "",
            issue_type=data.get("issueType") or "branch",
            issue_key=data.get("issueKey"),
            issue_numbers=[str(n) for n in data.get("issue_numbers") or []],
            pr_numbers=[str(n) for n in data.get("pr_numbers") or []],
            issue_tracker=data.get("issueTracker"),
            issue_urls=dict(data.get("issueUrls") or {}),
            project_path=data.get("projectPath"),
            session_id=data.get("sessionId") or "",
            state=LoomState(state) if state else None,
            parent_loom=ParentLoom.from_dict(parent) if isinstance(parent, dict) else None,
            child_issue_numbers=[str(n) for n in data.get("childIssueNumbers") or []],
            child_issues=[SwarmChildIssue.from_dict(c) for c in data.get("childIssues") or []],
            dependency_map={
                str(k): [str(d) for d in v] for k, v in (data.get("dependencyMap") or {}).items()
            },
            mcp_config_path=data.get("mcpConfigPath"),
            created_at=data.get("created_at"),
            version=int(data.get("version") or 1),
        )
