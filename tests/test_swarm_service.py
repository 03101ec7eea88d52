"""Tests for SwarmCoordinator"""
import json
import os
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

from git_loom.config import Settings
from git_loom.exceptions import MetadataWriteError
from git_loom.models.loom import LoomState, SwarmChildIssue
from git_loom.models.results import ChildCreationResult
from git_loom.services.merge_service import MergeOrchestrator
from git_loom.services.recovery_agent import Unsupported
from git_loom.services.swarm_service import (
    SwarmCoordinator,
    child_branch_name,
    parse_agent_file,
    swarm_agent_file_name,
)

PLANNER_AGENT = """---
name: loom-issue-planner
description: Plans the work
model: opus
tools: Read, Bash(git log:*)
---
You plan issues.
"""


@pytest.fixture
def coordinator(registry, metadata_store, config_generator, settings):
    return SwarmCoordinator(registry, metadata_store, settings, config_generator=config_generator)


def _children(*numbers):
    return [SwarmChildIssue(number=f"#{n}", title=f"Task {n}", url=f"https://example.com/{n}") for n in numbers]


class TestCreateChildWorktrees:
    """Test the per-item batch of child creation."""

    def test_creates_one_worktree_per_child(self, coordinator, registry, metadata_store, feature_worktree):
        results = coordinator.create_child_worktrees(_children(1, 2), "feature", feature_worktree, "100")

        assert [r.success for r in results] == [True, True]
        assert [r.branch for r in results] == ["issue/1", "issue/2"]
        for result in results:
            assert os.path.isdir(result.worktree_path)
            metadata = metadata_store.read_metadata(result.worktree_path)
            assert metadata.state == LoomState.PENDING
            assert metadata.parent_loom.branch_name == "feature"
            assert metadata.parent_loom.identifier == "100"
            assert metadata.session_id

        # Children branch off the parent, not main
        wt = registry.find_worktree_for_branch("issue/1")
        assert (Path(wt.path) / "feature.txt").exists()

    def test_one_failure_does_not_stop_the_batch(self, coordinator, git_repo, feature_worktree):
        git_repo.git.branch("issue/2")

        results = coordinator.create_child_worktrees(_children(1, 2, 3), "feature", feature_worktree, "100")

        assert len(results) == 3
        assert [r.success for r in results] == [True, False, True]
        failed = results[1]
        assert failed.issue_id == "2"
        assert failed.worktree_path == ""
        assert "already exists" in failed.error

    def test_metadata_failure_rolls_back_worktree(
        self, coordinator, registry, git_repo, metadata_store, feature_worktree
    ):
        with patch.object(metadata_store, "write_metadata", side_effect=MetadataWriteError("/w", "disk full")):
            results = coordinator.create_child_worktrees(_children(5), "feature", feature_worktree, "100")

        assert results[0].success is False
        assert "disk full" in results[0].error
        assert registry.find_worktree_for_branch("issue/5") is None
        assert "issue/5" not in [h.name for h in git_repo.heads]

    def test_config_failure_is_not_fatal(self, registry, metadata_store, settings, feature_worktree):
        generator = Mock()
        generator.generate.side_effect = OSError("read-only file system")
        coordinator = SwarmCoordinator(registry, metadata_store, settings, config_generator=generator)

        results = coordinator.create_child_worktrees(_children(1), "feature", feature_worktree, "100")

        assert results[0].success is True
        assert metadata_store.read_metadata(results[0].worktree_path).mcp_config_path is None

    def test_config_recorded_and_pointer_written(self, coordinator, metadata_store, feature_worktree):
        results = coordinator.create_child_worktrees(_children(1), "feature", feature_worktree, "100")
        child_path = results[0].worktree_path

        config_path = metadata_store.read_metadata(child_path).mcp_config_path
        assert config_path is not None
        config = json.loads(Path(config_path).read_text())
        env = config["mcpServers"]["issue_management"]["env"]
        assert env["ISSUE_NUMBER"] == "1"
        assert env["PARENT_BRANCH"] == "feature"
        assert (Path(child_path) / ".claude" / "loom-mcp-config-path").read_text() == config_path

    def test_untitled_child_gets_description(self, coordinator, metadata_store, feature_worktree):
        results = coordinator.create_child_worktrees(
            [SwarmChildIssue(number="#9", title="")], "feature", feature_worktree, "100"
        )
        assert metadata_store.read_metadata(results[0].worktree_path).description == "Issue #9"

    def test_children_under_symlinked_root_keep_parent_link(
        self, registry, metadata_store, config_generator, feature_worktree, temp_dir
    ):
        real_root = temp_dir / "real_root"
        real_root.mkdir()
        link_root = temp_dir / "link_root"
        link_root.symlink_to(real_root, target_is_directory=True)
        settings = Settings(worktree_root=str(link_root))
        coordinator = SwarmCoordinator(registry, metadata_store, settings, config_generator=config_generator)

        results = coordinator.create_child_worktrees(_children(1), "feature", feature_worktree, "100")

        assert results[0].worktree_path == str(real_root / "project__issue-1")
        context = registry.resolve_context(str(link_root / "project__issue-1"))
        assert metadata_store.read_metadata(context.worktree_path) is not None
        orchestrator = MergeOrchestrator(
            registry, metadata_store, settings, agent_capability=Unsupported("not installed")
        )
        assert orchestrator.get_merge_target_branch(context.worktree_path) == "feature"


class TestCopyAgents:
    """Test sharing the parent's agents with its children."""

    def test_copies_to_successful_children_only(self, coordinator, temp_dir):
        parent = temp_dir / "parent"
        (parent / ".claude" / "agents").mkdir(parents=True)
        (parent / ".claude" / "agents" / "loom-swarm-issue-planner.md").write_text("plan\n")

        broken = temp_dir / "broken"
        broken.mkdir()
        (broken / ".claude").write_text("not a directory")
        good = temp_dir / "good"
        good.mkdir()

        children = [
            ChildCreationResult("1", str(broken), "issue/1", True),
            ChildCreationResult("2", "", "", False, error="boom"),
            ChildCreationResult("3", str(good), "issue/3", True),
        ]

        copied = coordinator.copy_agents_to_child_worktrees(str(parent), children)

        assert copied == [str(good)]
        assert (good / ".claude" / "agents" / "loom-swarm-issue-planner.md").read_text() == "plan\n"

    def test_no_agents_directory(self, coordinator, temp_dir):
        assert coordinator.copy_agents_to_child_worktrees(str(temp_dir), []) == []


class TestRenderSwarmAgents:
    """Test rendering agent files for swarm use."""

    def test_render(self, coordinator, temp_dir):
        source = temp_dir / "agents"
        source.mkdir()
        (source / "loom-issue-planner.md").write_text(PLANNER_AGENT)
        parent = temp_dir / "parent"
        parent.mkdir()

        rendered, metadata = coordinator.render_swarm_agents(str(parent), source)

        assert rendered == ["loom-swarm-issue-planner.md"]
        content = (parent / ".claude" / "agents" / "loom-swarm-issue-planner.md").read_text()
        assert content == "You plan issues.\n"
        assert metadata == {
            "loom-swarm-issue-planner": {"model": "sonnet", "tools": ["Read", "Bash(git log:*)"]}
        }
        saved = json.loads((parent / ".claude" / "loom-swarm-agents.json").read_text())
        assert saved == metadata

    def test_no_source_agents(self, coordinator, temp_dir):
        assert coordinator.render_swarm_agents(str(temp_dir), temp_dir / "missing") == ([], {})


class TestResolveSwarmModel:
    """Test swarm model precedence."""

    def _coordinator(self, registry, metadata_store, **settings):
        return SwarmCoordinator(registry, metadata_store, Settings(**settings), config_generator=Mock())

    def test_builtin_defaults(self, registry, metadata_store):
        coordinator = self._coordinator(registry, metadata_store)
        assert coordinator.resolve_swarm_model("loom-issue-analyzer", "haiku") == "opus"
        assert coordinator.resolve_swarm_model("loom-issue-planner", "opus") == "sonnet"

    def test_unknown_role_keeps_base_model(self, registry, metadata_store):
        coordinator = self._coordinator(registry, metadata_store)
        assert coordinator.resolve_swarm_model("my-reviewer", "haiku") == "haiku"
        assert coordinator.resolve_swarm_model("my-reviewer", None) is None

    def test_blanket_override(self, registry, metadata_store):
        coordinator = self._coordinator(registry, metadata_store, swarm_model="haiku")
        assert coordinator.resolve_swarm_model("loom-issue-analyzer", "opus") == "haiku"
        assert coordinator.resolve_swarm_model("my-reviewer", "opus") == "haiku"

    def test_role_override_wins(self, registry, metadata_store):
        coordinator = self._coordinator(
            registry,
            metadata_store,
            swarm_model="haiku",
            agents={
                "loom-issue-planner": {"model": "opus", "swarm_model": "opus"},
                "loom-issue-implementer": {"swarmModel": "sonnet"},
            },
        )
        assert coordinator.resolve_swarm_model("loom-issue-planner", None) == "opus"
        assert coordinator.resolve_swarm_model("loom-issue-implementer", None) == "sonnet"
        assert coordinator.resolve_swarm_model("loom-issue-analyzer", None) == "haiku"


class TestSetupSwarm:
    """Test the full swarm setup."""

    def test_records_children_on_parent(self, coordinator, metadata_store, feature_worktree, temp_dir):
        result = coordinator.setup_swarm(
            "100",
            "feature",
            feature_worktree,
            _children(11, 12),
            dependency_map={"12": ["11"]},
            agents_source_dir=temp_dir / "no-agents",
        )

        assert len(result.succeeded) == 2
        parent = metadata_store.read_metadata(feature_worktree)
        assert parent.issue_type == "epic"
        assert parent.child_issue_numbers == ["11", "12"]
        assert parent.dependency_map == {"12": ["11"]}
        assert [c.number for c in parent.child_issues] == ["#11", "#12"]

    def test_updates_existing_parent_record(self, coordinator, metadata_store, feature_worktree, temp_dir):
        coordinator.setup_swarm("100", "feature", feature_worktree, _children(11), agents_source_dir=temp_dir / "x")
        metadata_store.update_metadata(feature_worktree, issue_numbers=["100"])

        coordinator.setup_swarm("100", "feature", feature_worktree, _children(12), agents_source_dir=temp_dir / "x")

        parent = metadata_store.read_metadata(feature_worktree)
        assert parent.child_issue_numbers == ["12"]
        assert parent.issue_numbers == ["100"]

    def test_agents_shared_with_children(self, coordinator, feature_worktree, temp_dir):
        source = temp_dir / "agents"
        source.mkdir()
        (source / "loom-issue-planner.md").write_text(PLANNER_AGENT)

        result = coordinator.setup_swarm("100", "feature", feature_worktree, _children(11), agents_source_dir=source)

        assert result.agents_rendered == ["loom-swarm-issue-planner.md"]
        child = Path(result.child_worktrees[0].worktree_path)
        assert (child / ".claude" / "agents" / "loom-swarm-issue-planner.md").exists()

    def test_unknown_dependency_creates_nothing(self, coordinator, registry, feature_worktree):
        before = len(registry.list_worktrees())
        with pytest.raises(ValueError, match="unknown"):
            coordinator.setup_swarm("100", "feature", feature_worktree, _children(11), dependency_map={"11": ["99"]})
        assert len(registry.list_worktrees()) == before

    def test_duplicate_children_rejected(self, coordinator, feature_worktree):
        with pytest.raises(ValueError, match="unique"):
            coordinator.setup_swarm("100", "feature", feature_worktree, _children(11, 11))


class TestAgentFiles:
    """Test agent file parsing and naming."""

    def test_parse_frontmatter(self):
        agent = parse_agent_file(PLANNER_AGENT, "fallback")
        assert agent.name == "loom-issue-planner"
        assert agent.model == "opus"
        assert agent.tools == ["Read", "Bash(git log:*)"]
        assert agent.prompt == "You plan issues."

    def test_no_frontmatter(self):
        agent = parse_agent_file("Just a prompt\n", "plain")
        assert agent.name == "plain"
        assert agent.model is None
        assert agent.prompt == "Just a prompt"

    def test_frontmatter_must_be_mapping(self):
        with pytest.raises(ValueError):
            parse_agent_file("---\n- a\n- b\n---\nbody\n", "bad")

    def test_names(self):
        assert swarm_agent_file_name("loom-issue-planner") == "loom-swarm-issue-planner.md"
        assert swarm_agent_file_name("reviewer") == "loom-swarm-reviewer.md"
        assert child_branch_name(SwarmChildIssue(number="ENG-12", title="")) == "issue/ENG-12"
        assert child_branch_name(SwarmChildIssue(number="#7", title="")) == "issue/7"
