"""Custom exceptions for git-loom"""

from typing import List, Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from git_loom.models.results import MergeOutcome


class GitLoomError(Exception):
    """Base exception for all git-loom errors."""
    pass


class WorktreeValidationError(GitLoomError):
    """Raised when an operation is run from an invalid location.

    Every validation failure carries a suggestion telling the user what to
    do instead, since this is usually the first error someone sees when
    they run a command from the wrong directory.
    """

    def __init__(self, message: str, suggestion: str):
        self.message = message
        self.suggestion = suggestion
        super().__init__(message)


class NotAGitRepoError(WorktreeValidationError):
    """The working directory is not inside any git repository."""

    def __init__(self, command: str = "git-loom rebase"):
        super().__init__(
            "Not a git repository.",
            f"Run '{command}' from within a worktree created by git-loom.",
        )


class RootResolutionError(WorktreeValidationError):
    """The worktree root could not be determined from the working directory."""

    def __init__(self, command: str = "git-loom rebase"):
        super().__init__(
            "Could not determine repository root.",
            f"Run '{command}' from within a worktree created by git-loom.",
        )


class UnmanagedDirectoryError(WorktreeValidationError):
    """The resolved root is not one of the repository's registered worktrees."""

    def __init__(self, path: str, command: str = "git-loom rebase"):
        self.path = path
        super().__init__(
            "This directory is not a git-loom worktree.",
            f"Run '{command}' from within a worktree created by git-loom. "
            "Use 'git-loom list' to see available worktrees.",
        )


class MainWorktreeForbiddenError(WorktreeValidationError):
    """The operation must not be run from the main worktree."""

    def __init__(self, command: str = "git-loom rebase"):
        super().__init__(
            f"Cannot run '{command}' from the main worktree.",
            f"Navigate to a feature worktree and run '{command}' from there.",
        )


class GitOperationError(GitLoomError):
    """Exception raised for errors in Git operations."""

    def __init__(
        self,
        operation: str,
        message: Optional[str] = None,
        stderr: Optional[str] = None,
        status: Optional[int] = None,
    ):
        self.operation = operation
        self.message = message
        self.stderr = stderr
        self.status = status

        error_msg = f"Git operation '{operation}' failed"
        if status is not None:
            error_msg += f" (exit {status})"
        if message:
            error_msg += f": {message}"
        elif stderr:
            error_msg += f": {stderr}"

        super().__init__(error_msg)


class BranchExistsError(GitOperationError):
    """Exception raised when a branch that should be created already exists."""

    def __init__(self, branch: str):
        self.branch = branch
        super().__init__("create_branch", f"Branch '{branch}' already exists")


class BranchNotFoundError(GitOperationError):
    """Exception raised when a branch is not found."""

    def __init__(self, branch: str, hint: Optional[str] = None):
        self.branch = branch
        message = f"Branch '{branch}' does not exist"
        if hint:
            message += f". {hint}"
        super().__init__("find_branch", message)


class WorktreePathExistsError(GitOperationError):
    """Exception raised when the target path of a new worktree is taken."""

    def __init__(self, path: str):
        self.path = path
        super().__init__("worktree_add", f"Path already exists: {path}")


class UnresolvedConflictError(GitLoomError):
    """Conflicts remain after the single recovery attempt."""

    def __init__(
        self,
        conflicted_files: List[str],
        outcome: "MergeOutcome",
        operation: str = "rebase",
    ):
        self.conflicted_files = conflicted_files
        self.outcome = outcome
        self.operation = operation

        file_list = "\n".join(f"  • {f}" for f in conflicted_files)
        continue_cmd = "git rebase --continue" if operation == "rebase" else "git commit"
        abort_cmd = f"git {operation} --abort"
        super().__init__(
            f"{operation.capitalize()} failed - merge conflicts require manual resolution:\n"
            f"{file_list}\n\n"
            "To resolve manually:\n"
            "  1. Fix conflicts in the files above\n"
            "  2. Stage resolved files: git add <files>\n"
            f"  3. Continue: {continue_cmd}\n"
            f"  4. Or abort: {abort_cmd}"
        )


class MetadataWriteError(GitLoomError):
    """Exception raised when a loom metadata record cannot be persisted."""

    def __init__(self, worktree_path: str, message: str):
        self.worktree_path = worktree_path
        super().__init__(f"Failed to write metadata for {worktree_path}: {message}")


class InvalidStateTransitionError(GitLoomError):
    """Exception raised when a loom state change is not in the transition table."""

    def __init__(self, current: Optional[str], requested: str):
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid loom state transition: {current or 'unset'} -> {requested}"
        )


class RecoveryAgentError(GitLoomError):
    """Exception raised when the recovery agent process fails."""
    pass


class SettingsError(GitLoomError):
    """Exception raised for malformed or invalid settings."""
    pass


class IssueTrackerError(GitLoomError):
    """Exception raised for errors in issue tracker operations."""

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.message = message

        error_msg = f"Issue tracker operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)
