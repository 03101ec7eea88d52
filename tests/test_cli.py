"""Tests for the command-line interface"""
import json
from pathlib import Path

import pytest

from git_loom.cli import main, parse_args
from git_loom.cli.args import parse_dependencies
from git_loom.models.loom import LoomMetadata, LoomState


@pytest.fixture(autouse=True)
def isolated_state(monkeypatch, temp_dir):
    """Keep metadata and MCP configs out of the real home directory."""
    monkeypatch.setattr("git_loom.services.metadata_service.DEFAULT_LOOMS_DIR", temp_dir / "state" / "looms")
    monkeypatch.setattr("git_loom.services.mcp_config.DEFAULT_MCP_CONFIGS_DIR", temp_dir / "state" / "mcp-configs")
    monkeypatch.setattr("git_loom.services.recovery_agent.shutil.which", lambda binary: None)


def _json_lines(output):
    return [json.loads(line) for line in output.splitlines() if line.startswith("{")]


class TestParseArgs:
    """Test argument parsing."""

    def test_rebase_flags(self):
        args = parse_args(["rebase", "--dry-run", "--json"])
        assert args.command == "rebase"
        assert args.dry_run is True
        assert args.json is True
        assert args.force is False

    def test_command_required(self):
        with pytest.raises(SystemExit):
            parse_args([])

    def test_state_choices(self):
        assert parse_args(["state", "active"]).state == "active"
        with pytest.raises(SystemExit):
            parse_args(["state", "archived"])

    def test_swarm_dependencies(self):
        args = parse_args(["swarm", "11", "12", "--depends", "12:11", "--depends", "#13:#11,#12"])
        assert args.children == ["11", "12"]
        assert parse_dependencies(args.depends) == {"12": ["11"], "13": ["11", "12"]}

    def test_bad_dependency(self):
        with pytest.raises(ValueError):
            parse_dependencies(["12-11"])


class TestMain:
    """Test end-to-end command handling."""

    def test_rebase_outside_repository(self, monkeypatch, temp_dir, capsys):
        outside = temp_dir / "plain"
        outside.mkdir()
        monkeypatch.chdir(outside)

        assert main(["rebase", "--json"]) == 1

        lines = _json_lines(capsys.readouterr().out)
        assert lines[0]["success"] is False
        assert "Not a git repository" in lines[0]["error"]

    def test_rebase_from_main_worktree(self, monkeypatch, git_repo, capsys):
        monkeypatch.chdir(git_repo.working_dir)

        assert main(["rebase", "--json"]) == 1

        lines = _json_lines(capsys.readouterr().out)
        assert lines == [{"success": False, "error": lines[0]["error"]}]
        assert "main worktree" in lines[0]["error"]

    def test_rebase_up_to_date(self, monkeypatch, feature_worktree, capsys):
        monkeypatch.chdir(feature_worktree)

        assert main(["rebase", "--json"]) == 0

        assert _json_lines(capsys.readouterr().out) == [
            {"conflictsDetected": False, "claudeLaunched": False, "conflictsResolved": False}
        ]

    def test_rebase_with_unresolvable_conflicts(self, monkeypatch, conflicting_worktree, capsys):
        monkeypatch.chdir(conflicting_worktree)

        assert main(["rebase", "--json"]) == 1

        outcome = _json_lines(capsys.readouterr().out)[0]
        assert outcome["conflictsDetected"] is True
        assert outcome["claudeLaunched"] is False
        assert outcome["conflictsResolved"] is False

    def test_list_json(self, monkeypatch, git_repo, feature_worktree, capsys):
        monkeypatch.chdir(git_repo.working_dir)

        assert main(["list", "--json"]) == 0

        lines = _json_lines(capsys.readouterr().out)
        assert [line["branch"] for line in lines] == ["main", "feature"]
        assert [line["isMain"] for line in lines] == [True, False]

    def test_state_transition(self, monkeypatch, metadata_store, feature_worktree):
        # Same directory the CLI's default store points at
        metadata_store.write_metadata(
            feature_worktree,
            LoomMetadata(
                description="Feature", branch_name="feature", worktree_path=feature_worktree,
                state=LoomState.PENDING,
            ),
        )
        monkeypatch.chdir(feature_worktree)

        assert main(["state", "active"]) == 0
        assert metadata_store.read_metadata(feature_worktree).state == LoomState.ACTIVE
        assert main(["state", "pending"]) == 1

    def test_swarm_from_children_file(self, monkeypatch, metadata_store, feature_worktree, temp_dir, capsys):
        children_file = temp_dir / "children.json"
        children_file.write_text(json.dumps([
            {"number": "#21", "title": "First"},
            {"number": "#22", "title": "Second"},
        ]))
        monkeypatch.chdir(feature_worktree)

        exit_code = main([
            "swarm", "--children-file", str(children_file), "--depends", "22:21",
            "--agents-dir", str(temp_dir / "no-agents"), "--json",
        ])

        assert exit_code == 0
        results = _json_lines(capsys.readouterr().out)
        assert [r["issueId"] for r in results] == ["21", "22"]
        assert all(r["success"] for r in results)
        assert Path(results[0]["worktreePath"]).is_dir()
        assert metadata_store.read_metadata(feature_worktree).dependency_map == {"22": ["21"]}

    def test_swarm_without_children(self, monkeypatch, feature_worktree):
        monkeypatch.chdir(feature_worktree)
        assert main(["swarm"]) == 1
