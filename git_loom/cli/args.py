"""Command-line argument parsing for git-loom."""

import argparse
from typing import List, Optional

from git_loom.__version__ import __version__
from git_loom.models.loom import LoomState


def _add_common(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument(
        "--debug", action="store_true", help="Show debug information for troubleshooting"
    )


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        prog="git-loom",
        description="Parallel git worktrees with assisted rebase recovery",
        epilog="Settings are read from .loom/settings.json and .loom/settings.local.json "
        "in the main worktree.",
    )
    parser.add_argument("--version", action="version", version=f"git-loom {__version__}")
    _add_common(parser)

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    list_parser = subparsers.add_parser("list", help="List worktrees and their loom state")
    list_parser.add_argument("--json", action="store_true", help="One JSON object per line")

    rebase_parser = subparsers.add_parser(
        "rebase", help="Rebase the current worktree onto its merge target"
    )
    rebase_parser.add_argument(
        "--force", action="store_true", help="Rebase even if already up to date"
    )
    rebase_parser.add_argument(
        "--dry-run", action="store_true", help="Preview mode - show what would run"
    )
    rebase_parser.add_argument("--json", action="store_true", help="Print the outcome as JSON")

    merge_parser = subparsers.add_parser(
        "merge-main", help="Merge the merge target into the current worktree"
    )
    merge_parser.add_argument(
        "--force", action="store_true", help="Merge even if already up to date"
    )
    merge_parser.add_argument(
        "--dry-run", action="store_true", help="Preview mode - show what would run"
    )
    merge_parser.add_argument("--json", action="store_true", help="Print the outcome as JSON")

    finish_parser = subparsers.add_parser(
        "finish", help="Rebase, then fast-forward the merge target onto this branch"
    )
    finish_parser.add_argument("--force", action="store_true", help="Rebase even if already up to date")
    finish_parser.add_argument(
        "--dry-run", action="store_true", help="Preview mode - show what would run"
    )

    swarm_parser = subparsers.add_parser(
        "swarm", help="Create child worktrees under the current (parent) worktree"
    )
    swarm_parser.add_argument(
        "children", nargs="*", metavar="CHILD", help="GitHub issue numbers of the children"
    )
    swarm_parser.add_argument(
        "--children-file",
        metavar="FILE",
        help="JSON list of {number, title, body, url} objects instead of fetching from GitHub",
    )
    swarm_parser.add_argument(
        "--depends",
        action="append",
        default=[],
        metavar="CHILD:DEP[,DEP]",
        help="Declare that CHILD depends on DEP (repeatable)",
    )
    swarm_parser.add_argument(
        "--id", dest="parent_id", help="Identifier of the parent (default: its branch name)"
    )
    swarm_parser.add_argument(
        "--agents-dir", metavar="DIR", help="Agent definitions to render (default: .loom/agents)"
    )
    swarm_parser.add_argument("--json", action="store_true", help="One JSON object per child")

    state_parser = subparsers.add_parser("state", help="Change the current loom's state")
    state_parser.add_argument(
        "state", choices=[s.value for s in LoomState], help="New state"
    )

    return parser.parse_args(argv)


def parse_dependencies(values: List[str]) -> dict:
    """Turn ``CHILD:DEP[,DEP]`` strings into a dependency map.

    Raises:
        ValueError: If a value is not in ``CHILD:DEP`` form
    """
    dependency_map = {}
    for value in values:
        child, sep, deps = value.partition(":")
        if not sep or not child.strip():
            raise ValueError(f"Invalid dependency '{value}', expected CHILD:DEP[,DEP]")
        dependency_map.setdefault(child.strip().lstrip("#"), []).extend(
            d.strip().lstrip("#") for d in deps.split(",") if d.strip()
        )
    return dependency_map
