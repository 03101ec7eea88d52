"""Tests for low-level git helpers and output parsing"""
from pathlib import Path

import pytest

from git_loom.exceptions import GitOperationError
from git_loom.services.git.commands import (
    branch_exists,
    detect_conflicted_files,
    detect_uncommitted_changes,
    get_worktree_root,
    is_rebase_in_progress,
    is_valid_git_repo,
    parse_porcelain_status,
    parse_porcelain_status_z,
    parse_worktree_list,
    run_git,
)


class TestParsePorcelainStatus:
    """Test parsing of `git status --porcelain` lines."""

    def test_staged_file_with_spaces(self):
        summary = parse_porcelain_status("M  file with spaces.ts")
        assert summary.staged_files == ["file with spaces.ts"]
        assert summary.unstaged_files == []

    def test_untracked_file_is_never_staged(self):
        summary = parse_porcelain_status("?? file2.ts")
        assert summary.staged_files == []
        assert summary.unstaged_files == ["file2.ts"]

    def test_rename_keeps_full_text(self):
        summary = parse_porcelain_status("R  old.ts -> new.ts")
        assert summary.staged_files == ["old.ts -> new.ts"]

    def test_modified_in_both_index_and_worktree(self):
        summary = parse_porcelain_status("MM both.py")
        assert summary.staged_files == ["both.py"]
        assert summary.unstaged_files == ["both.py"]

    def test_worktree_only_change(self):
        summary = parse_porcelain_status(" M src/app.py")
        assert summary.staged_files == []
        assert summary.unstaged_files == ["src/app.py"]

    def test_blank_and_short_lines_ignored(self):
        summary = parse_porcelain_status("\nM  a.txt\n\n?\n")
        assert summary.staged_files == ["a.txt"]
        assert summary.unstaged_files == []
        assert summary.has_uncommitted_changes

    def test_empty_output(self):
        assert not parse_porcelain_status("").has_uncommitted_changes


class TestParsePorcelainStatusZ:
    """Test parsing of NUL-separated `git status --porcelain -z` output."""

    def test_rename_joins_original_path(self):
        summary = parse_porcelain_status_z("R  new name.ts\0old name.ts\0?? a b.txt\0")
        assert summary.staged_files == ["old name.ts -> new name.ts"]
        assert summary.unstaged_files == ["a b.txt"]

    def test_paths_are_taken_literally(self):
        summary = parse_porcelain_status_z(' M "quoted".txt\0A  café.txt\0')
        assert summary.unstaged_files == ['"quoted".txt']
        assert summary.staged_files == ["café.txt"]

    def test_copy_consumes_source_field(self):
        summary = parse_porcelain_status_z("C  copy.py\0orig.py\0 M other.py\0")
        assert summary.staged_files == ["orig.py -> copy.py"]
        assert summary.unstaged_files == ["other.py"]

    def test_empty_output(self):
        assert not parse_porcelain_status_z("").has_uncommitted_changes


class TestParseWorktreeList:
    """Test parsing of `git worktree list --porcelain`."""

    def test_multiple_blocks(self):
        output = (
            "worktree /repo\n"
            "HEAD aaaa\n"
            "branch refs/heads/main\n"
            "\n"
            "worktree /repo__feature\n"
            "HEAD bbbb\n"
            "branch refs/heads/feature/x\n"
            "locked needs review\n"
            "\n"
            "worktree /repo__detached\n"
            "HEAD cccc\n"
            "detached\n"
        )
        worktrees = parse_worktree_list(output)

        assert [wt.path for wt in worktrees] == ["/repo", "/repo__feature", "/repo__detached"]
        assert worktrees[0].branch == "main"
        assert worktrees[1].branch == "feature/x"
        assert worktrees[1].locked is True
        assert worktrees[1].lock_reason == "needs review"
        assert worktrees[2].branch is None
        assert worktrees[2].detached is True

    def test_bare_repository(self):
        worktrees = parse_worktree_list("worktree /repo.git\nbare\n")
        assert len(worktrees) == 1
        assert worktrees[0].bare is True
        assert worktrees[0].branch is None

    def test_empty_output(self):
        assert parse_worktree_list("") == []


class TestRunGit:
    """Test the git command wrapper against a real repository."""

    def test_returns_stdout(self, git_repo):
        output = run_git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=git_repo.working_dir)
        assert output.strip() == "main"

    def test_failure_raises_with_detail(self, git_repo):
        with pytest.raises(GitOperationError) as exc_info:
            run_git(["rev-parse", "--verify", "does-not-exist"], cwd=git_repo.working_dir)

        error = exc_info.value
        assert error.operation == "rev-parse"
        assert error.status not in (None, 0)

    def test_operation_name_skips_config_flags(self, git_repo):
        with pytest.raises(GitOperationError) as exc_info:
            run_git(["-c", "core.hooksPath=/dev/null", "rebase", "no-such-branch"], cwd=git_repo.working_dir)
        assert exc_info.value.operation == "rebase"


class TestRepositoryQueries:
    """Test repository inspection helpers."""

    def test_is_valid_git_repo(self, git_repo, temp_dir):
        outside = temp_dir / "outside"
        outside.mkdir()
        assert is_valid_git_repo(git_repo.working_dir) is True
        assert is_valid_git_repo(str(outside)) is False
        assert is_valid_git_repo(str(temp_dir / "missing")) is False

    def test_worktree_root_from_subdirectory(self, git_repo):
        nested = Path(git_repo.working_dir) / "src" / "pkg"
        nested.mkdir(parents=True)
        assert Path(get_worktree_root(str(nested))).resolve() == Path(git_repo.working_dir).resolve()

    def test_branch_exists(self, git_repo):
        assert branch_exists("main", git_repo.working_dir) is True
        assert branch_exists("nope", git_repo.working_dir) is False

    def test_detect_uncommitted_changes(self, git_repo):
        repo_path = Path(git_repo.working_dir)
        (repo_path / "README.md").write_text("changed\n")
        (repo_path / "new file.txt").write_text("new\n")

        summary = detect_uncommitted_changes(git_repo.working_dir)
        assert "README.md" in summary.unstaged_files
        assert "new file.txt" in summary.unstaged_files
        assert summary.staged_files == []

    def test_detect_uncommitted_changes_with_unusual_names(self, git_repo, commit_file):
        commit_file(git_repo.working_dir, "old name.txt", "content\n")
        git_repo.git.mv("old name.txt", "new name.txt")
        (Path(git_repo.working_dir) / "café notes.txt").write_text("new\n")

        summary = detect_uncommitted_changes(git_repo.working_dir)
        assert summary.staged_files == ["old name.txt -> new name.txt"]
        assert summary.unstaged_files == ["café notes.txt"]

    def test_conflict_detection(self, conflicting_worktree):
        assert detect_conflicted_files(conflicting_worktree) == []
        assert is_rebase_in_progress(conflicting_worktree) is False

        with pytest.raises(GitOperationError):
            run_git(["rebase", "main"], cwd=conflicting_worktree)

        assert detect_conflicted_files(conflicting_worktree) == ["shared.txt"]
        assert is_rebase_in_progress(conflicting_worktree) is True
