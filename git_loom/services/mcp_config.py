"""Per-loom MCP config files.

Swarm children get a tool-access config (an MCP server definition) that
their agent process is started with. The file lives outside the worktree,
under ``~/.config/git-loom/mcp-configs``, and the child's metadata only
records its path.
"""
import json
import os
from pathlib import Path
from typing import Any, Dict, Optional

from git_loom.config import Settings
from git_loom.logging_config import get_logger
from git_loom.models.loom import LoomMetadata
from git_loom.services.metadata_service import MetadataStore

logger = get_logger(__name__)

DEFAULT_MCP_CONFIGS_DIR = Path.home() / ".config" / "git-loom" / "mcp-configs"

GITHUB_MCP_SERVER = {
    "command": "npx",
    "args": ["-y", "@modelcontextprotocol/server-github"],
}


class IntegrationConfigGenerator:
    """Writes one MCP config file per loom."""

    def __init__(self, configs_dir: Optional[Path] = None):
        self.configs_dir = Path(configs_dir) if configs_dir else DEFAULT_MCP_CONFIGS_DIR

    def config_path_for(self, worktree_path: str) -> Path:
        return self.configs_dir / MetadataStore.slugify_path(worktree_path)

    def build_config(self, worktree_path: str, metadata: LoomMetadata, settings: Settings) -> Dict[str, Any]:
        """Build the MCP config document for a loom."""
        loom_env = {
            "LOOM_WORKTREE_PATH": worktree_path,
            "LOOM_BRANCH": metadata.branch_name,
            "ISSUE_PROVIDER": metadata.issue_tracker or settings.issue_tracker,
        }
        if metadata.issue_numbers:
            loom_env["ISSUE_NUMBER"] = metadata.issue_numbers[0]
        if metadata.parent_loom is not None:
            loom_env["PARENT_BRANCH"] = metadata.parent_loom.branch_name

        servers: Dict[str, Any] = {}
        if (metadata.issue_tracker or settings.issue_tracker) == "github":
            env = dict(loom_env)
            token = settings.resolved_github_token()
            if token:
                env["GITHUB_PERSONAL_ACCESS_TOKEN"] = token
            servers["issue_management"] = {**GITHUB_MCP_SERVER, "env": env}
        else:
            logger.debug(f"No MCP server for issue tracker {metadata.issue_tracker}")

        return {"mcpServers": servers}

    def generate(self, worktree_path: str, metadata: LoomMetadata, settings: Settings) -> str:
        """Write the config file for ``worktree_path``.

        Returns:
            Absolute path of the written file

        Raises:
            OSError: If the file cannot be written
        """
        config = self.build_config(worktree_path, metadata, settings)
        self.configs_dir.mkdir(parents=True, exist_ok=True)

        config_path = self.config_path_for(worktree_path)
        temp_file = config_path.with_suffix(".tmp")
        try:
            # May contain a token
            fd = os.open(temp_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(config, f, indent=2)
            temp_file.replace(config_path)
        finally:
            if temp_file.exists():
                temp_file.unlink()

        logger.debug(f"Wrote MCP config for {worktree_path} to {config_path}")
        return str(config_path)
