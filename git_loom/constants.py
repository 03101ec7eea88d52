"""Shared constants for git-loom."""

from dataclasses import dataclass
from typing import Dict, List


@dataclass
class ColumnDefinition:
    """Definition of a table column."""

    key: str
    label: str
    width: int = 0  # 0 means auto-width


# Columns for `git-loom list`
WORKTREE_COLUMNS: List[ColumnDefinition] = [
    ColumnDefinition("branch", "Branch", 30),
    ColumnDefinition("commit", "Commit", 10),
    ColumnDefinition("state", "State", 10),
    ColumnDefinition("parent", "Parent", 20),
    ColumnDefinition("path", "Path"),
]

SYMBOL_MAIN_WORKTREE = " *"
SYMBOL_LOCKED = " [locked]"

# Colors for loom states (Rich color names)
STATE_COLORS = {
    "pending": "yellow",
    "active": "cyan",
    "completed": "green",
    "failed": "red",
}

# Settings locations, relative to the main worktree
SETTINGS_DIR = ".loom"
SETTINGS_FILE = "settings.json"
SETTINGS_LOCAL_FILE = "settings.local.json"

# Agent files shared from a swarm parent to its children
AGENTS_SUBDIR = (".claude", "agents")
MCP_CONFIG_POINTER = (".claude", "loom-mcp-config-path")

# Built-in swarm model per agent role, applied when no override is configured
DEFAULT_SWARM_MODELS: Dict[str, str] = {
    "loom-issue-analyzer": "opus",
    "loom-issue-planner": "sonnet",
    "loom-issue-implementer": "sonnet",
}

WIP_COMMIT_MESSAGE = "WIP: Auto-stash for rebase"

# Git commands the recovery agent may run without asking
RECOVERY_ALLOWED_TOOLS: List[str] = [
    "Bash(git status:*)",
    "Bash(git diff:*)",
    "Bash(git log:*)",
    "Bash(git add:*)",
    "Bash(git rebase:*)",
    "Bash(git commit:*)",
]
