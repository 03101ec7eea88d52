"""Pytest fixtures for git-loom tests"""
import tempfile
from pathlib import Path

import git
import pytest

from git_loom.config import Settings
from git_loom.services.git import WorktreeRegistry
from git_loom.services.mcp_config import IntegrationConfigGenerator
from git_loom.services.metadata_service import MetadataStore


@pytest.fixture(autouse=True)
def non_interactive_git(monkeypatch):
    """Keep git from opening an editor during rebase --continue / merge."""
    monkeypatch.setenv("GIT_EDITOR", "true")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        # Resolve so paths match what git reports (e.g. /private/var on macOS)
        yield Path(tmpdir).resolve()


@pytest.fixture
def commit_file():
    """Write a file in a worktree and commit it. Returns the new commit sha."""

    def _commit(worktree_path, name, content, message=None):
        repo = git.Repo(worktree_path)
        try:
            (Path(worktree_path) / name).write_text(content)
            repo.index.add([name])
            return repo.index.commit(message or f"Update {name}").hexsha
        finally:
            repo.close()

    return _commit


@pytest.fixture
def git_repo(temp_dir):
    """Create a real Git repository with one commit on main."""
    repo_path = temp_dir / "project"
    repo_path.mkdir()

    repo = git.Repo.init(repo_path)
    repo.config_writer().set_value("user", "name", "Test User").release()
    repo.config_writer().set_value("user", "email", "test@example.com").release()
    repo.config_writer().set_value("commit", "gpgsign", "false").release()

    (repo_path / "README.md").write_text("# Test Repository\n")
    (repo_path / "shared.txt").write_text("line one\nline two\nline three\n")
    repo.index.add(["README.md", "shared.txt"])
    repo.index.commit("Initial commit")

    repo.git.branch("-M", "main")

    yield repo

    repo.close()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def registry(git_repo):
    return WorktreeRegistry(git_repo.working_dir)


@pytest.fixture
def metadata_store(temp_dir):
    return MetadataStore(temp_dir / "state" / "looms")


@pytest.fixture
def config_generator(temp_dir):
    return IntegrationConfigGenerator(temp_dir / "state" / "mcp-configs")


@pytest.fixture
def feature_worktree(git_repo, temp_dir, commit_file):
    """A linked worktree on branch 'feature' with one commit of its own."""
    path = temp_dir / "project__feature"
    git_repo.git.worktree("add", "-b", "feature", str(path), "main")
    commit_file(path, "feature.txt", "feature work\n", "Add feature")
    return str(path)


@pytest.fixture
def conflicting_worktree(git_repo, feature_worktree, commit_file):
    """Feature and main both changed the same line of shared.txt."""
    commit_file(feature_worktree, "shared.txt", "line one\nfeature version\nline three\n", "Feature edit")
    commit_file(git_repo.working_dir, "shared.txt", "line one\nmain version\nline three\n", "Main edit")
    return feature_worktree
