"""Configuration handling for git-loom"""

import json
import os
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Union

from git_loom.constants import SETTINGS_DIR, SETTINGS_FILE, SETTINGS_LOCAL_FILE
from git_loom.exceptions import SettingsError
from git_loom.logging_config import get_logger

logger = get_logger(__name__)

MERGE_MODES = ["local", "github-pr", "github-draft-pr"]


@dataclass
class Settings:
    """Configuration for git-loom with validation."""

    # Mainline
    main_branch: str = "main"
    main_worktree_path: Optional[str] = None  # Explicit main worktree, wins over main_branch
    worktree_root: Optional[str] = None  # Where new worktrees go (None = beside the main worktree)

    # Merge behavior
    merge_mode: str = "local"  # local, github-pr, github-draft-pr

    # Issue tracking
    issue_tracker: str = "github"
    github_token: Optional[str] = None

    # Agents: {role: {"model": ..., "swarm_model": ...}}
    agents: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    swarm_model: Optional[str] = None  # Blanket override for every swarm role
    recovery_agent_binary: str = "claude"

    # Execution modes
    verbose: bool = False
    debug: bool = False
    dry_run: bool = False
    force: bool = False

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_main_branch()
        self._validate_merge_mode()
        self._validate_agents()

    def _validate_main_branch(self):
        """Validate main_branch is not empty."""
        if not self.main_branch or not self.main_branch.strip():
            raise ValueError("main_branch cannot be empty")
        self.main_branch = self.main_branch.strip()

    def _validate_merge_mode(self):
        """Validate merge_mode is one of allowed values."""
        if self.merge_mode not in MERGE_MODES:
            raise ValueError(f"merge_mode must be one of {MERGE_MODES}, got '{self.merge_mode}'")

    def _validate_agents(self):
        """Validate agents is a mapping of role to override mapping."""
        if not isinstance(self.agents, dict):
            raise ValueError("agents must be a mapping of role name to overrides")
        for role, overrides in self.agents.items():
            if not isinstance(overrides, dict):
                raise ValueError(f"agents['{role}'] must be a mapping, got {type(overrides).__name__}")

    @property
    def uses_remote_target(self) -> bool:
        """True when looms rebase onto origin/<main> instead of the local branch."""
        return self.merge_mode in ("github-pr", "github-draft-pr")

    def resolved_github_token(self) -> Optional[str]:
        return self.github_token or os.environ.get("GITHUB_TOKEN")

    def to_dict(self) -> dict:
        """Convert settings to a plain dictionary."""
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def get(self, key: str, default=None):
        """Get settings value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, settings_dict: dict) -> "Settings":
        """Create Settings from dictionary, ignoring unknown keys."""
        known_fields = {f.name for f in fields(cls)}
        filtered = {k: v for k, v in settings_dict.items() if k in known_fields}
        return cls(**filtered)


def _read_settings_file(path: Path) -> dict:
    if not path.exists():
        logger.debug(f"No settings file at {path}")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise SettingsError(f"Invalid JSON in {path}: {e}") from e
    except OSError as e:
        raise SettingsError(f"Could not read {path}: {e}") from e
    if not isinstance(data, dict):
        raise SettingsError(f"Settings file {path} must contain a JSON object")
    logger.debug(f"Loaded settings from {path}")
    return data


def merge_settings(base: dict, override: dict) -> dict:
    """Shallow-merge two settings dicts, merging ``agents`` per role."""
    merged = dict(base)
    for key, value in override.items():
        if key == "agents" and isinstance(value, dict) and isinstance(merged.get("agents"), dict):
            agents = {role: dict(cfg) for role, cfg in merged["agents"].items()}
            for role, cfg in value.items():
                if isinstance(cfg, dict) and isinstance(agents.get(role), dict):
                    agents[role].update(cfg)
                else:
                    agents[role] = cfg
            merged["agents"] = agents
        else:
            merged[key] = value
    return merged


def load_settings(repo_root: Union[str, Path], **overrides) -> Settings:
    """Load settings for a repository.

    Reads ``.loom/settings.json`` and overlays ``.loom/settings.local.json``.
    Keyword overrides (typically CLI flags) are applied last.

    Raises:
        SettingsError: If a settings file is malformed or a value is invalid
    """
    settings_dir = Path(repo_root) / SETTINGS_DIR
    data = _read_settings_file(settings_dir / SETTINGS_FILE)
    data = merge_settings(data, _read_settings_file(settings_dir / SETTINGS_LOCAL_FILE))
    data.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return Settings.from_dict(data)
    except (TypeError, ValueError) as e:
        raise SettingsError(f"Invalid settings: {e}") from e
