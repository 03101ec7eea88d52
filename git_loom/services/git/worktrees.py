"""Worktree registry for git-loom.

Wraps ``git worktree`` plumbing. Nothing is cached: every query re-reads
the worktree list from git, since other processes (and git itself) change
it underneath us.
"""

import os
import re
import shutil
from typing import List, Optional

from git_loom.config import Settings
from git_loom.exceptions import (
    BranchExistsError,
    BranchNotFoundError,
    GitOperationError,
    MainWorktreeForbiddenError,
    NotAGitRepoError,
    RootResolutionError,
    UnmanagedDirectoryError,
    WorktreePathExistsError,
)
from git_loom.models.worktree import Worktree, WorktreeContext, WorktreeCreateSpec
from git_loom.services.git.commands import (
    branch_exists,
    get_worktree_root,
    is_valid_git_repo,
    parse_worktree_list,
    run_git,
)
from git_loom.logging_config import get_logger

logger = get_logger(__name__)


def normalize_path(path: str) -> str:
    """Canonical form used for every path comparison."""
    return os.path.normcase(os.path.realpath(os.path.abspath(path)))


def sanitize_branch_name(branch_name: str) -> str:
    """Turn a branch name into a filesystem-safe slug."""
    sanitized = re.sub(r"[^a-zA-Z0-9\-_]", "-", branch_name)
    sanitized = re.sub(r"-+", "-", sanitized).strip("-")
    return sanitized.lower()


class WorktreeRegistry:
    """Lists, creates, removes and validates git worktrees."""

    def __init__(self, repo_path: str):
        """Initialize the registry.

        Args:
            repo_path: Path to any worktree of the repository
        """
        self.repo_path = repo_path

    def list_worktrees(self) -> List[Worktree]:
        """Get all worktrees of the repository, main worktree first.

        Raises:
            GitOperationError: If git cannot list worktrees
        """
        output = run_git(["worktree", "list", "--porcelain"], cwd=self.repo_path)
        worktrees = parse_worktree_list(output)
        logger.debug(f"Found {len(worktrees)} worktrees")
        return worktrees

    def find_by_path(self, path: str, worktrees: Optional[List[Worktree]] = None) -> Optional[Worktree]:
        """Find the registered worktree whose root is exactly ``path``."""
        target = normalize_path(path)
        for wt in worktrees if worktrees is not None else self.list_worktrees():
            if normalize_path(wt.path) == target:
                return wt
        return None

    def find_worktree_for_branch(self, branch_name: str) -> Optional[Worktree]:
        """Find the worktree that has ``branch_name`` checked out."""
        for wt in self.list_worktrees():
            if wt.branch == branch_name:
                return wt
        return None

    def find_main_worktree(self, settings: Settings, worktrees: Optional[List[Worktree]] = None) -> Worktree:
        """Return the one worktree designated as main.

        Resolution order: the configured ``main_worktree_path``, then the
        worktree with the configured main branch checked out, then the
        repository root (always listed first by git). Branch name alone is
        never enough because the trunk may have been renamed.
        """
        worktrees = worktrees if worktrees is not None else self.list_worktrees()
        if not worktrees:
            raise GitOperationError("worktree_list", "Repository has no worktrees")

        if settings.main_worktree_path:
            configured = self.find_by_path(settings.main_worktree_path, worktrees)
            if configured is not None:
                return configured
            logger.warning(
                f"Configured main worktree {settings.main_worktree_path} is not registered; "
                "falling back to branch lookup"
            )

        for wt in worktrees:
            if wt.branch == settings.main_branch and not wt.bare:
                return wt

        for wt in worktrees:
            if not wt.bare:
                return wt
        return worktrees[0]

    def is_main_worktree(self, worktree: Worktree, settings: Settings) -> bool:
        """Check whether ``worktree`` is the main worktree under ``settings``."""
        main = self.find_main_worktree(settings)
        return normalize_path(main.path) == normalize_path(worktree.path)

    def resolve_context(self, cwd: str, command: str = "git-loom") -> WorktreeContext:
        """Resolve an arbitrary directory to the registered worktree containing it.

        ``cwd`` may be a subdirectory of a worktree. The checks run in a fixed
        order so the most basic problem is reported first.

        Raises:
            NotAGitRepoError: ``cwd`` is not inside any git repository
            RootResolutionError: the worktree root cannot be determined
            UnmanagedDirectoryError: the root is not a registered worktree
        """
        if not is_valid_git_repo(cwd):
            raise NotAGitRepoError(command)

        root = get_worktree_root(cwd)
        if not root:
            raise RootResolutionError(command)

        worktrees = self.list_worktrees()
        worktree = self.find_by_path(root, worktrees)
        if worktree is None:
            raise UnmanagedDirectoryError(root, command)

        return WorktreeContext(worktree_path=worktree.path, worktree=worktree)

    def validate_context(
        self,
        cwd: str,
        settings: Settings,
        forbid_main: bool = True,
        command: str = "git-loom rebase",
    ) -> WorktreeContext:
        """Validate that ``cwd`` is inside a managed worktree.

        Runs :meth:`resolve_context` and then, for main-exclusive operations,
        rejects the main worktree.

        Raises:
            WorktreeValidationError: one of its four subclasses, in check order
        """
        context = self.resolve_context(cwd, command)
        if forbid_main and self.is_main_worktree(context.worktree, settings):
            raise MainWorktreeForbiddenError(command)
        return context

    def create(self, spec: WorktreeCreateSpec) -> str:
        """Create a new worktree.

        Args:
            spec: Branch, path and base branch for the new worktree

        Returns:
            Path of the created worktree as git lists it (symlinks resolved)

        Raises:
            BranchExistsError: ``create_branch`` is set, the branch exists and
                ``force`` is not set
            WorktreePathExistsError: the target path exists and ``force`` is not set
            GitOperationError: git refused to create the worktree
        """
        if not spec.branch:
            raise ValueError("Branch name is required")

        path = os.path.abspath(spec.path)

        if spec.create_branch:
            if branch_exists(spec.branch, self.repo_path) and not spec.force:
                raise BranchExistsError(spec.branch)
        elif not branch_exists(spec.branch, self.repo_path):
            raise BranchNotFoundError(spec.branch, "Set create_branch to create it")

        if os.path.exists(path):
            if not spec.force:
                raise WorktreePathExistsError(path)
            logger.debug(f"Removing existing path {path} before creating worktree")
            shutil.rmtree(path)

        args = ["worktree", "add"]
        if spec.create_branch:
            args.extend(["-B" if spec.force else "-b", spec.branch])
        if spec.force:
            args.append("--force")
        args.append(path)
        if not spec.create_branch:
            args.append(spec.branch)
        elif spec.base_branch:
            args.append(spec.base_branch)

        run_git(args, cwd=self.repo_path)

        # Callers key metadata on this path, so hand back the one git records
        registered = self.find_by_path(path)
        if registered is not None:
            path = registered.path
        logger.info(f"Created worktree for {spec.branch} at {path}")
        return path

    def remove(self, path: str, remove_branch: bool = False) -> None:
        """Force-remove a worktree.

        Idempotent: a path that is no longer registered, or whose directory
        has already been (partially) deleted, is cleaned up without error.

        Args:
            path: Worktree directory
            remove_branch: Also delete the worktree's branch (failure is logged only)

        Raises:
            GitOperationError: git refused to remove a worktree that still exists on disk
        """
        worktree = self.find_by_path(path)
        if worktree is None:
            logger.debug(f"{path} is not a registered worktree; cleaning leftovers only")
            if os.path.isdir(path):
                shutil.rmtree(path, ignore_errors=True)
            self.prune()
            return

        args = ["worktree", "remove", "--force"]
        if worktree.locked:
            args.append("--force")  # Locked worktrees need a second --force
        args.append(worktree.path)

        try:
            run_git(args, cwd=self.repo_path)
            logger.info(f"Removed worktree at {worktree.path}")
        except GitOperationError as e:
            if os.path.exists(worktree.path):
                logger.error(f"Failed to remove worktree at {worktree.path}: {e}")
                raise
            logger.debug(f"Worktree directory {worktree.path} already gone, pruning: {e}")
            self.prune()

        if remove_branch and worktree.branch and not worktree.bare:
            try:
                run_git(["branch", "-D", worktree.branch], cwd=self.repo_path)
                logger.info(f"Deleted branch {worktree.branch}")
            except GitOperationError as e:
                logger.warning(f"Could not delete branch {worktree.branch}: {e}")

    def prune(self) -> None:
        """Prune administrative data for worktrees missing on disk."""
        run_git(["worktree", "prune"], cwd=self.repo_path)
        logger.debug("Pruned orphaned worktree metadata")

    def generate_worktree_path(self, branch_name: str, settings: Settings) -> str:
        """Suggest a path for a new worktree of ``branch_name``.

        Worktrees live beside the main worktree (or under ``worktree_root``),
        named ``<project>__<sanitized-branch>``.
        """
        main = self.find_main_worktree(settings)
        main_path = main.path.rstrip("/\\")
        root = settings.worktree_root or os.path.dirname(main_path)
        project = os.path.basename(main_path)
        return os.path.join(root, f"{project}__{sanitize_branch_name(branch_name)}")
