"""Command-line interface for git-loom"""

import json
import os
import sys
from pathlib import Path
from typing import List, Optional

from rich.console import Console

from git_loom.cli.args import parse_args, parse_dependencies
from git_loom.config import Settings, load_settings
from git_loom.exceptions import (
    GitLoomError,
    NotAGitRepoError,
    UnresolvedConflictError,
    WorktreeValidationError,
)
from git_loom.logging_config import setup_logging, get_logger
from git_loom.models.loom import LoomState, SwarmChildIssue
from git_loom.models.results import MergeOutcome
from git_loom.services.display_service import DisplayService
from git_loom.services.git import WorktreeRegistry
from git_loom.services.git.commands import is_valid_git_repo
from git_loom.services.github_service import GitHubIssueService
from git_loom.services.merge_service import MergeOrchestrator
from git_loom.services.metadata_service import MetadataStore
from git_loom.services.swarm_service import SwarmCoordinator

console = Console()
logger = get_logger(__name__)

# Commands whose output is a MergeOutcome
OUTCOME_COMMANDS = ("rebase", "merge-main")


def _load_context(cwd: str, parsed_args):
    """Build the registry and settings for the repository containing ``cwd``.

    Settings are read from the repository root, which git always lists first.
    """
    if not is_valid_git_repo(cwd):
        raise NotAGitRepoError(f"git-loom {parsed_args.command}")

    registry = WorktreeRegistry(cwd)
    worktrees = registry.list_worktrees()
    settings_root = next((wt.path for wt in worktrees if not wt.bare), cwd)
    settings = load_settings(settings_root, verbose=parsed_args.verbose, debug=parsed_args.debug)
    return registry, settings


def _load_children_file(path: str) -> List[SwarmChildIssue]:
    with open(path, "r", encoding="utf-8") as f:
        data = json.load(f)
    if not isinstance(data, list):
        raise ValueError(f"{path} must contain a JSON list of child issues")
    return [SwarmChildIssue.from_dict(item) for item in data]


def cmd_list(registry: WorktreeRegistry, settings: Settings, store: MetadataStore, parsed_args) -> int:
    worktrees = registry.list_worktrees()
    main = registry.find_main_worktree(settings, worktrees)
    metadata = {wt.path: store.read_metadata(wt.path) for wt in worktrees}
    DisplayService(json_output=parsed_args.json).display_worktrees(worktrees, main.path, metadata)
    return 0


def cmd_outcome(orchestrator: MergeOrchestrator, cwd: str, parsed_args) -> int:
    display = DisplayService(json_output=parsed_args.json)
    run = orchestrator.rebase if parsed_args.command == "rebase" else orchestrator.merge_main
    operation = "Rebase" if parsed_args.command == "rebase" else "Merge"
    try:
        outcome = run(cwd, dry_run=parsed_args.dry_run, force=parsed_args.force)
    except UnresolvedConflictError as e:
        display.display_merge_outcome(e.outcome, operation)
        if not parsed_args.json:
            console.print(f"[red]{e}[/red]")
        return 1

    display.display_merge_outcome(outcome, operation)
    return 0 if outcome.success else 1


def cmd_finish(orchestrator: MergeOrchestrator, cwd: str, parsed_args) -> int:
    display = DisplayService()
    try:
        outcome, merged = orchestrator.finish(cwd, dry_run=parsed_args.dry_run, force=parsed_args.force)
    except UnresolvedConflictError as e:
        display.display_merge_outcome(e.outcome)
        console.print(f"[red]{e}[/red]")
        return 1

    display.display_merge_outcome(outcome)
    if not outcome.success:
        return 1
    if parsed_args.dry_run:
        console.print("[yellow]Dry run - nothing was merged[/yellow]")
    else:
        console.print(f"[green]Fast-forwarded {merged} commit(s)[/green]")
    return 0


def cmd_swarm(
    registry: WorktreeRegistry, settings: Settings, store: MetadataStore, cwd: str, parsed_args
) -> int:
    context = registry.validate_context(cwd, settings, command="git-loom swarm")
    parent_branch = context.worktree.branch
    if not parent_branch:
        raise GitLoomError("The parent worktree must have a branch checked out")

    if parsed_args.children_file:
        children = _load_children_file(parsed_args.children_file)
    elif parsed_args.children:
        children = GitHubIssueService(context.worktree_path, settings).fetch_child_issues(parsed_args.children)
    else:
        raise GitLoomError("No children given. Pass issue numbers or --children-file.")

    parent_meta = store.read_metadata(context.worktree_path)
    parent_id = parsed_args.parent_id or (parent_meta.issue_key if parent_meta else None) or parent_branch

    coordinator = SwarmCoordinator(registry, store, settings)
    result = coordinator.setup_swarm(
        parent_identifier=parent_id,
        parent_branch=parent_branch,
        parent_worktree_path=context.worktree_path,
        child_issues=children,
        dependency_map=parse_dependencies(parsed_args.depends),
        agents_source_dir=Path(parsed_args.agents_dir) if parsed_args.agents_dir else None,
    )

    DisplayService(json_output=parsed_args.json).display_child_results(result.child_worktrees)
    if result.agents_rendered and not parsed_args.json:
        console.print(f"Rendered {len(result.agents_rendered)} swarm agent(s)")
    return 1 if result.child_worktrees and not result.succeeded else 0


def cmd_state(registry: WorktreeRegistry, store: MetadataStore, cwd: str, parsed_args) -> int:
    context = registry.resolve_context(cwd, command="git-loom state")
    updated = store.transition_state(context.worktree_path, LoomState(parsed_args.state))
    console.print(f"[green]{updated.branch_name} is now {updated.state.value}[/green]")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the application."""
    argv = sys.argv[1:] if argv is None else argv
    debug = "--debug" in argv
    parsed_args = None
    try:
        parsed_args = parse_args(argv)
        setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

        cwd = os.getcwd()
        registry, settings = _load_context(cwd, parsed_args)
        store = MetadataStore()

        if parsed_args.debug:
            console.print("[yellow]Debug mode enabled[/yellow]")
            console.print("[yellow]Configuration:[/yellow]")
            for key, value in settings.to_dict().items():
                if key == "github_token" and value:
                    value = "***"
                console.print(f"  {key}: {value}")

        if parsed_args.command == "list":
            return cmd_list(registry, settings, store, parsed_args)
        if parsed_args.command in OUTCOME_COMMANDS:
            return cmd_outcome(MergeOrchestrator(registry, store, settings), cwd, parsed_args)
        if parsed_args.command == "finish":
            return cmd_finish(MergeOrchestrator(registry, store, settings), cwd, parsed_args)
        if parsed_args.command == "swarm":
            return cmd_swarm(registry, settings, store, cwd, parsed_args)
        if parsed_args.command == "state":
            return cmd_state(registry, store, cwd, parsed_args)
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 130
    except WorktreeValidationError as e:
        if parsed_args is not None and parsed_args.command in OUTCOME_COMMANDS and parsed_args.json:
            print(json.dumps(MergeOutcome.failed(f"{e.message} {e.suggestion}").to_dict()))
        else:
            DisplayService().display_error(e)
        return 1
    except (GitLoomError, OSError, ValueError) as e:
        DisplayService().display_error(e)
        if debug:
            console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
