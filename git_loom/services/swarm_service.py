"""Swarm coordinator.

A swarm is a parent loom plus one child worktree per work item, each
branched off the parent's branch. Child creation is a batch with
per-item results: one child failing never stops the others.
"""

import json
import re
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import yaml

from git_loom.config import Settings
from git_loom.constants import AGENTS_SUBDIR, DEFAULT_SWARM_MODELS, MCP_CONFIG_POINTER, SETTINGS_DIR
from git_loom.exceptions import GitOperationError, MetadataWriteError
from git_loom.logging_config import get_logger
from git_loom.models.loom import LoomMetadata, LoomState, ParentLoom, SwarmChildIssue
from git_loom.models.results import ChildCreationResult, SwarmSetupResult
from git_loom.models.worktree import WorktreeCreateSpec
from git_loom.services.git.worktrees import WorktreeRegistry
from git_loom.services.mcp_config import IntegrationConfigGenerator
from git_loom.services.metadata_service import MetadataStore, deterministic_session_id

logger = get_logger(__name__)

FRONTMATTER_PATTERN = re.compile(r"\A---\s*\n(.*?)\n---\s*\n?(.*)\Z", re.DOTALL)


@dataclass
class AgentDefinition:
    """An agent prompt with its frontmatter settings."""

    name: str
    prompt: str
    description: str = ""
    model: Optional[str] = None
    tools: Optional[List[str]] = field(default=None)


def parse_agent_file(text: str, default_name: str) -> AgentDefinition:
    """Parse a markdown agent file with optional YAML frontmatter.

    Raises:
        ValueError: If the frontmatter is not a YAML mapping
    """
    match = FRONTMATTER_PATTERN.match(text)
    if not match:
        return AgentDefinition(name=default_name, prompt=text.strip())

    try:
        meta = yaml.safe_load(match.group(1)) or {}
    except yaml.YAMLError as e:
        raise ValueError(f"Invalid frontmatter in agent {default_name}: {e}") from e
    if not isinstance(meta, dict):
        raise ValueError(f"Frontmatter of agent {default_name} must be a mapping")

    tools = meta.get("tools")
    if isinstance(tools, str):
        tools = [t.strip() for t in tools.split(",") if t.strip()]

    return AgentDefinition(
        name=str(meta.get("name") or default_name),
        prompt=match.group(2).strip(),
        description=str(meta.get("description") or ""),
        model=meta.get("model"),
        tools=list(tools) if tools else None,
    )


def load_agent_definitions(agents_dir: Path) -> Dict[str, AgentDefinition]:
    """Load every ``*.md`` agent in ``agents_dir``, keyed by agent name."""
    agents: Dict[str, AgentDefinition] = {}
    if not agents_dir.is_dir():
        logger.debug(f"No agent definitions at {agents_dir}")
        return agents

    for path in sorted(agents_dir.glob("*.md")):
        try:
            agent = parse_agent_file(path.read_text(encoding="utf-8"), path.stem)
        except (OSError, ValueError) as e:
            logger.warning(f"Skipping agent {path.name}: {e}")
            continue
        agents[agent.name] = agent
    return agents


def swarm_agent_file_name(agent_name: str) -> str:
    """``loom-issue-planner`` becomes ``loom-swarm-issue-planner.md``."""
    base = agent_name[len("loom-"):] if agent_name.startswith("loom-") else agent_name
    return f"loom-swarm-{base}.md"


def child_branch_name(child: SwarmChildIssue) -> str:
    safe_id = re.sub(r"[^a-zA-Z0-9\-_]", "-", child.raw_id)
    return f"issue/{safe_id}"


class SwarmCoordinator:
    """Creates and wires up the child worktrees of a swarm."""

    def __init__(
        self,
        registry: WorktreeRegistry,
        metadata_store: MetadataStore,
        settings: Settings,
        config_generator: Optional[IntegrationConfigGenerator] = None,
    ):
        self.registry = registry
        self.metadata_store = metadata_store
        self.settings = settings
        self.config_generator = config_generator or IntegrationConfigGenerator()

    def resolve_swarm_model(self, role: str, base_model: Optional[str]) -> Optional[str]:
        """Pick the model for a swarm agent.

        Highest precedence first: the role's own ``swarm_model`` override,
        the blanket ``swarm_model`` setting, the built-in default for the
        role, and finally the agent's own model.
        """
        overrides = self.settings.agents.get(role) or {}
        role_override = overrides.get("swarm_model") or overrides.get("swarmModel")
        if role_override:
            return role_override
        if self.settings.swarm_model:
            return self.settings.swarm_model
        if role in DEFAULT_SWARM_MODELS:
            return DEFAULT_SWARM_MODELS[role]
        return base_model

    def create_child_worktrees(
        self,
        child_issues: List[SwarmChildIssue],
        parent_branch: str,
        parent_worktree_path: str,
        parent_identifier: str,
    ) -> List[ChildCreationResult]:
        """Create one worktree per child, in order, branched off ``parent_branch``.

        Returns one result per child. A child whose metadata cannot be
        written has its worktree removed again. Failing to write its MCP
        config only logs a warning.
        """
        project_path = self.registry.find_main_worktree(self.settings).path
        results: List[ChildCreationResult] = []

        for child in child_issues:
            try:
                results.append(
                    self._create_child(
                        child, parent_branch, parent_worktree_path, parent_identifier, project_path
                    )
                )
                logger.info(f"Created child worktree for {child.number}")
            except Exception as e:
                logger.warning(f"Failed to create child worktree for {child.number}: {e}")
                results.append(
                    ChildCreationResult(
                        issue_id=child.raw_id,
                        worktree_path="",
                        branch="",
                        success=False,
                        error=str(e),
                    )
                )
        return results

    def _create_child(
        self,
        child: SwarmChildIssue,
        parent_branch: str,
        parent_worktree_path: str,
        parent_identifier: str,
        project_path: str,
    ) -> ChildCreationResult:
        branch = child_branch_name(child)
        worktree_path = self.registry.generate_worktree_path(branch, self.settings)

        logger.info(f"Creating child worktree for {child.number}: {worktree_path}...")
        worktree_path = self.registry.create(
            WorktreeCreateSpec(
                branch=branch,
                path=worktree_path,
                base_branch=parent_branch,
                create_branch=True,
            )
        )

        metadata = LoomMetadata(
            description=child.title or f"Issue {child.number}",
            branch_name=branch,
            worktree_path=worktree_path,
            issue_type="issue",
            issue_key=child.raw_id,
            issue_numbers=[child.raw_id],
            issue_tracker=self.settings.issue_tracker,
            issue_urls={child.raw_id: child.url} if child.url else {},
            project_path=project_path,
            session_id=deterministic_session_id(worktree_path),
            state=LoomState.PENDING,
            parent_loom=ParentLoom(
                type="epic",
                identifier=str(parent_identifier),
                branch_name=parent_branch,
                worktree_path=parent_worktree_path,
            ),
        )
        try:
            self.metadata_store.write_metadata(worktree_path, metadata)
        except MetadataWriteError:
            logger.warning(f"Metadata write failed for {child.number}, removing worktree...")
            try:
                self.registry.remove(worktree_path, remove_branch=True)
            except GitOperationError as cleanup_error:
                logger.debug(f"Could not clean up worktree at {worktree_path}: {cleanup_error}")
            raise

        self._write_integration_config(child, worktree_path, metadata)

        return ChildCreationResult(
            issue_id=child.raw_id,
            worktree_path=worktree_path,
            branch=branch,
            success=True,
        )

    def _write_integration_config(
        self, child: SwarmChildIssue, worktree_path: str, metadata: LoomMetadata
    ) -> None:
        try:
            config_path = self.config_generator.generate(worktree_path, metadata, self.settings)
            self.metadata_store.update_metadata(worktree_path, mcp_config_path=config_path)

            pointer = Path(worktree_path).joinpath(*MCP_CONFIG_POINTER)
            pointer.parent.mkdir(parents=True, exist_ok=True)
            pointer.write_text(config_path, encoding="utf-8")
            logger.debug(f"Wrote MCP config for {child.number}: {config_path}")
        except Exception as e:
            # The child works without it
            logger.warning(f"Failed to write MCP config for child {child.number}: {e}")

    def render_swarm_agents(
        self, parent_worktree_path: str, agents_source_dir: Path
    ) -> Tuple[List[str], Dict[str, Dict]]:
        """Render swarm copies of the agents into the parent's agents directory.

        Files hold the prompt body only. Model and tools are returned (and
        saved beside the agents directory) so they can be passed as CLI flags.

        Returns:
            Rendered file names and per-agent ``{model, tools}`` metadata
        """
        agents = load_agent_definitions(agents_source_dir)
        if not agents:
            return [], {}

        output_dir = Path(parent_worktree_path).joinpath(*AGENTS_SUBDIR)
        output_dir.mkdir(parents=True, exist_ok=True)

        rendered: List[str] = []
        agent_metadata: Dict[str, Dict] = {}
        for name, agent in agents.items():
            file_name = swarm_agent_file_name(name)
            entry: Dict = {"model": self.resolve_swarm_model(name, agent.model)}
            if agent.tools:
                entry["tools"] = list(agent.tools)
            agent_metadata[file_name[: -len(".md")]] = entry

            (output_dir / file_name).write_text(agent.prompt + "\n", encoding="utf-8")
            rendered.append(file_name)
            logger.debug(f"Rendered swarm agent: {file_name}")

        metadata_file = output_dir.parent / "loom-swarm-agents.json"
        metadata_file.write_text(json.dumps(agent_metadata, indent=2) + "\n", encoding="utf-8")

        logger.info(f"Rendered {len(rendered)} swarm agents to {output_dir}")
        return rendered, agent_metadata

    def copy_agents_to_child_worktrees(
        self, parent_worktree_path: str, children: List[ChildCreationResult]
    ) -> List[str]:
        """Copy the parent's agents directory into every successful child.

        Returns:
            Worktree paths of the children that received a copy
        """
        source = Path(parent_worktree_path).joinpath(*AGENTS_SUBDIR)
        if not source.is_dir():
            logger.debug(f"No agents directory at {source}, nothing to copy")
            return []

        copied = []
        for child in children:
            if not child.success:
                continue
            target = Path(child.worktree_path).joinpath(*AGENTS_SUBDIR)
            try:
                shutil.copytree(source, target, dirs_exist_ok=True)
                copied.append(child.worktree_path)
            except (OSError, shutil.Error) as e:
                logger.warning(f"Failed to copy agents to {child.worktree_path}: {e}")
        return copied

    def _record_children_on_parent(
        self,
        parent_identifier: str,
        parent_branch: str,
        parent_worktree_path: str,
        child_issues: List[SwarmChildIssue],
        dependency_map: Dict[str, List[str]],
    ) -> None:
        changes = {
            "child_issue_numbers": [c.raw_id for c in child_issues],
            "child_issues": list(child_issues),
            "dependency_map": {k: list(v) for k, v in dependency_map.items()},
        }
        if self.metadata_store.read_metadata(parent_worktree_path) is None:
            self.metadata_store.write_metadata(
                parent_worktree_path,
                LoomMetadata(
                    description=f"Swarm {parent_identifier}",
                    branch_name=parent_branch,
                    worktree_path=parent_worktree_path,
                    issue_type="epic",
                    issue_key=str(parent_identifier),
                    issue_tracker=self.settings.issue_tracker,
                    session_id=deterministic_session_id(parent_worktree_path),
                    **changes,
                ),
            )
        else:
            self.metadata_store.update_metadata(parent_worktree_path, **changes)

    def setup_swarm(
        self,
        parent_identifier: str,
        parent_branch: str,
        parent_worktree_path: str,
        child_issues: List[SwarmChildIssue],
        dependency_map: Optional[Dict[str, List[str]]] = None,
        agents_source_dir: Optional[Path] = None,
    ) -> SwarmSetupResult:
        """Create the children, render and share agents, and record the swarm.

        Raises:
            ValueError: If child identifiers repeat or the dependency map
                refers to unknown children
            MetadataWriteError: If the parent's record cannot be written
        """
        dependency_map = dependency_map or {}
        self._validate_batch(child_issues, dependency_map)

        children = self.create_child_worktrees(
            child_issues, parent_branch, parent_worktree_path, parent_identifier
        )

        if agents_source_dir is None:
            project_path = self.registry.find_main_worktree(self.settings).path
            agents_source_dir = Path(project_path) / SETTINGS_DIR / "agents"
        rendered, _ = self.render_swarm_agents(parent_worktree_path, agents_source_dir)
        self.copy_agents_to_child_worktrees(parent_worktree_path, children)

        self._record_children_on_parent(
            parent_identifier, parent_branch, parent_worktree_path, child_issues, dependency_map
        )

        result = SwarmSetupResult(
            parent_worktree_path=parent_worktree_path,
            parent_branch=parent_branch,
            child_worktrees=children,
            agents_rendered=rendered,
        )
        message = f"Swarm setup complete: {len(result.succeeded)} child worktrees"
        if result.failed:
            message += f" ({len(result.failed)} failed)"
        logger.info(message)
        return result

    @staticmethod
    def _validate_batch(child_issues: List[SwarmChildIssue], dependency_map: Dict[str, List[str]]) -> None:
        ids = [c.raw_id for c in child_issues]
        if len(set(ids)) != len(ids):
            raise ValueError("Child identifiers must be unique")
        known = set(ids)
        for child_id, deps in dependency_map.items():
            unknown = [d for d in [child_id, *deps] if d not in known]
            if unknown:
                raise ValueError(f"Dependency map refers to unknown children: {', '.join(unknown)}")
