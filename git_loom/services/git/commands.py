"""Low-level git command helpers shared by the git services."""

import os
import re
from typing import Dict, Any, List, Optional, Sequence

import git

from git_loom.exceptions import GitOperationError
from git_loom.models.results import FileStatusSummary
from git_loom.models.worktree import Worktree
from git_loom.logging_config import get_logger

logger = get_logger(__name__)

# GitPython wraps captured streams as "\n  stderr: '<text>'"
_STREAM_PATTERN = re.compile(r"^\s*(?:stderr|stdout):\s*'(.*)'\s*$", re.DOTALL)


def _clean_stream(text: Optional[str]) -> str:
    if not text:
        return ""
    match = _STREAM_PATTERN.match(text)
    return (match.group(1) if match else text).strip()


def run_git(args: Sequence[str], cwd: str) -> str:
    """Run a git command in ``cwd`` and return its stdout.

    Raises:
        GitOperationError: If git exits non-zero or cannot be started. The
            original stderr and exit status are preserved verbatim.
    """
    operation = args[0] if args else "git"
    if args and args[0] == "-c" and len(args) > 2:
        operation = args[2]
    logger.debug(f"git {' '.join(args)} (cwd={cwd})")
    try:
        return git.Git(cwd).execute(["git", *args])
    except git.exc.GitCommandError as e:
        stderr = _clean_stream(getattr(e, "stderr", None))
        stdout = _clean_stream(getattr(e, "stdout", None))
        status = e.status if isinstance(e.status, int) else None
        raise GitOperationError(operation, stderr or stdout or None, stderr=stderr, status=status) from e
    except git.exc.CommandError as e:
        # git missing from PATH or cwd unusable
        raise GitOperationError(operation, str(e)) from e


def parse_worktree_list(output: str) -> List[Worktree]:
    """Parse ``git worktree list --porcelain`` output.

    Format (one block per worktree, blank line between blocks):
        worktree /path/to/worktree
        HEAD <sha>
        branch refs/heads/<name> | detached | bare
        locked [reason]
        prunable [reason]
    """
    worktrees: List[Worktree] = []
    current: Dict[str, Any] = {}

    def flush():
        if current.get("path"):
            worktrees.append(
                Worktree(
                    path=current["path"],
                    branch=current.get("branch"),
                    commit=current.get("commit", ""),
                    bare=current.get("bare", False),
                    detached=current.get("detached", False),
                    locked=current.get("locked", False),
                    lock_reason=current.get("lock_reason"),
                    prunable=current.get("prunable", False),
                )
            )

    for line in output.split("\n"):
        line = line.rstrip("\r")
        if not line.strip():
            flush()
            current = {}
            continue

        key, _, value = line.partition(" ")
        if key == "worktree":
            flush()
            current = {"path": value}
        elif key == "HEAD":
            current["commit"] = value
        elif key == "branch":
            if value.startswith("refs/heads/"):
                current["branch"] = value[len("refs/heads/"):]
            else:
                current["branch"] = value
        elif key == "detached":
            current["detached"] = True
        elif key == "bare":
            current["bare"] = True
        elif key == "locked":
            current["locked"] = True
            current["lock_reason"] = value or None
        elif key == "prunable":
            current["prunable"] = True

    # Handle last entry if no trailing blank line
    flush()
    return worktrees


def _add_status_entry(summary: FileStatusSummary, index_status: str, worktree_status: str, filename: str) -> None:
    if index_status == "?" and worktree_status == "?":
        summary.unstaged_files.append(filename)
        return

    if index_status not in (" ", "?"):
        summary.staged_files.append(filename)
    if worktree_status != " ":
        summary.unstaged_files.append(filename)


def parse_porcelain_status(output: str) -> FileStatusSummary:
    """Parse ``git status --porcelain`` (v1) output into staged/unstaged paths.

    Each line is ``XY <path>``. X is the index status, Y the working tree
    status. ``??`` marks an untracked file, which is always unstaged. The
    path is everything after the status code and separator, so names with
    spaces and rename arrows (``old -> new``) are kept intact.
    """
    summary = FileStatusSummary()
    for line in output.split("\n"):
        if len(line.strip()) == 0 or len(line) < 3:
            continue
        _add_status_entry(summary, line[0], line[1], line[3:])

    return summary


def parse_porcelain_status_z(output: str) -> FileStatusSummary:
    """Parse ``git status --porcelain -z`` output into staged/unstaged paths.

    Entries are NUL-terminated and paths are never quoted. A rename or copy
    entry ``XY <new>`` is followed by a second field holding the original
    path; the pair is reported as ``old -> new``.
    """
    summary = FileStatusSummary()
    fields = output.split("\0")
    i = 0
    while i < len(fields):
        entry = fields[i]
        i += 1
        if len(entry) < 3:
            continue

        index_status, worktree_status = entry[0], entry[1]
        filename = entry[3:]
        if "R" in (index_status, worktree_status) or "C" in (index_status, worktree_status):
            if i < len(fields) and fields[i]:
                filename = f"{fields[i]} -> {filename}"
            i += 1

        _add_status_entry(summary, index_status, worktree_status, filename)

    return summary


def is_valid_git_repo(path: str) -> bool:
    """Check whether ``path`` is inside a git working tree or git dir."""
    if not os.path.isdir(path):
        return False
    try:
        run_git(["rev-parse", "--git-dir"], cwd=path)
        return True
    except GitOperationError:
        return False


def get_worktree_root(path: str) -> Optional[str]:
    """Return the top-level directory of the worktree containing ``path``."""
    try:
        root = run_git(["rev-parse", "--show-toplevel"], cwd=path).strip()
    except GitOperationError as e:
        logger.debug(f"Could not resolve worktree root for {path}: {e}")
        return None
    return root or None


def get_current_branch(path: str) -> Optional[str]:
    """Return the checked-out branch name, or None when detached."""
    try:
        branch = run_git(["branch", "--show-current"], cwd=path).strip()
    except GitOperationError:
        return None
    return branch or None


def ref_exists(ref: str, cwd: str) -> bool:
    """Check whether a fully-qualified ref (e.g. refs/heads/main) exists."""
    try:
        run_git(["show-ref", "--verify", "--quiet", ref], cwd=cwd)
        return True
    except GitOperationError:
        return False


def branch_exists(branch: str, cwd: str) -> bool:
    """Check whether a local branch exists."""
    return ref_exists(f"refs/heads/{branch}", cwd)


def detect_uncommitted_changes(worktree_path: str) -> FileStatusSummary:
    """Return staged and unstaged paths in a worktree."""
    output = run_git(["status", "--porcelain", "-z"], cwd=worktree_path)
    return parse_porcelain_status_z(output)


def detect_conflicted_files(worktree_path: str) -> List[str]:
    """List paths with unresolved conflicts (unmerged index entries)."""
    try:
        output = run_git(["diff", "--name-only", "--diff-filter=U"], cwd=worktree_path)
    except GitOperationError as e:
        # Not necessarily a conflict; the caller decides what a failure means
        logger.debug(f"Could not list conflicted files in {worktree_path}: {e}")
        return []
    return [line for line in output.split("\n") if line.strip()]


def get_git_dir(worktree_path: str) -> str:
    """Absolute git dir of a worktree (``.git`` is a file inside linked worktrees)."""
    return run_git(["rev-parse", "--absolute-git-dir"], cwd=worktree_path).strip()


def is_rebase_in_progress(worktree_path: str) -> bool:
    git_dir = get_git_dir(worktree_path)
    return any(
        os.path.exists(os.path.join(git_dir, name)) for name in ("rebase-merge", "rebase-apply")
    )


def is_merge_in_progress(worktree_path: str) -> bool:
    return os.path.exists(os.path.join(get_git_dir(worktree_path), "MERGE_HEAD"))
