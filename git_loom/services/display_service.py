"""Display service for worktrees, merge outcomes and swarm results"""
import json
from typing import Any, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from git_loom.constants import STATE_COLORS, SYMBOL_LOCKED, SYMBOL_MAIN_WORKTREE, WORKTREE_COLUMNS
from git_loom.exceptions import WorktreeValidationError
from git_loom.logging_config import get_logger
from git_loom.models.loom import LoomMetadata
from git_loom.models.results import ChildCreationResult, MergeOutcome
from git_loom.models.worktree import Worktree

console = Console()
logger = get_logger(__name__)


def print_json_line(data: Dict[str, Any]) -> None:
    """Print one JSON object on its own line for scripts to consume."""
    print(json.dumps(data, sort_keys=False))


class DisplayService:
    def __init__(self, json_output: bool = False, output: Optional[Console] = None):
        self.json_output = json_output
        self.console = output or console

    def display_worktrees(
        self,
        worktrees: List[Worktree],
        main_path: str,
        metadata: Dict[str, Optional[LoomMetadata]],
    ) -> None:
        """Show the worktree population with loom state.

        Args:
            worktrees: Worktrees as listed by git
            main_path: Path of the main worktree
            metadata: Loom metadata per worktree path (None when untracked)
        """
        if self.json_output:
            for wt in worktrees:
                meta = metadata.get(wt.path)
                print_json_line(
                    {
                        "path": wt.path,
                        "branch": wt.branch,
                        "commit": wt.commit,
                        "isMain": wt.path == main_path,
                        "locked": wt.locked,
                        "state": meta.state.value if meta and meta.state else None,
                        "parentBranch": meta.parent_loom.branch_name if meta and meta.parent_loom else None,
                    }
                )
            return

        table = Table()
        for col in WORKTREE_COLUMNS:
            if col.width:
                table.add_column(col.label, max_width=col.width)
            else:
                table.add_column(col.label)

        for wt in worktrees:
            meta = metadata.get(wt.path)
            branch = wt.branch or ("(bare)" if wt.bare else "(detached)")
            if wt.path == main_path:
                branch += SYMBOL_MAIN_WORKTREE
            if wt.locked:
                branch += SYMBOL_LOCKED

            state = meta.state.value if meta and meta.state else ""
            state_text = f"[{STATE_COLORS[state]}]{state}[/{STATE_COLORS[state]}]" if state else ""
            parent = meta.parent_loom.branch_name if meta and meta.parent_loom else ""

            table.add_row(branch, wt.commit[:8], state_text, parent, wt.path)

        self.console.print(table)
        self.console.print(f"\n{SYMBOL_MAIN_WORKTREE.strip()} = main worktree")

    def display_merge_outcome(self, outcome: MergeOutcome, operation: str = "Rebase") -> None:
        if self.json_output:
            print_json_line(outcome.to_dict())
            return

        if outcome.error and not outcome.conflicts_detected:
            self.console.print(f"[red]{outcome.error}[/red]")
        elif not outcome.conflicts_detected:
            self.console.print(f"[green]{operation} completed, no conflicts[/green]")
        elif outcome.conflicts_resolved:
            self.console.print(f"[green]{operation} completed, conflicts resolved by recovery agent[/green]")
        else:
            self.console.print(f"[red]{operation} stopped on conflicts that need manual resolution[/red]")

    def display_child_results(self, results: List[ChildCreationResult]) -> None:
        if self.json_output:
            for result in results:
                print_json_line(result.to_dict())
            return

        for result in results:
            if result.success:
                self.console.print(f"[green]✓[/green] {result.issue_id}: {result.branch} at {result.worktree_path}")
            else:
                self.console.print(f"[red]✗[/red] {result.issue_id}: {result.error}")

        failed = sum(1 for r in results if not r.success)
        summary = f"\n{len(results) - failed} of {len(results)} child worktrees created"
        self.console.print(summary if not failed else f"[yellow]{summary}[/yellow]")

    def display_error(self, error: Exception) -> None:
        if isinstance(error, WorktreeValidationError):
            self.console.print(f"[red]{error.message}[/red]")
            self.console.print(f"[yellow]{error.suggestion}[/yellow]")
        else:
            self.console.print(f"[red]Error: {error}[/red]")
