"""Rebase and merge orchestration with one-shot conflict recovery.

Every operation here follows the same shape: validate where we are, work
out what to rebase/merge onto, short-circuit when there is nothing to do,
run git, and, if git stops on conflicts, hand the worktree to the recovery
agent exactly once before checking whether the conflicts are gone.
"""

from typing import List, Optional, Tuple

from git_loom.config import Settings
from git_loom.constants import WIP_COMMIT_MESSAGE
from git_loom.exceptions import (
    BranchNotFoundError,
    GitOperationError,
    UnresolvedConflictError,
    WorktreeValidationError,
)
from git_loom.logging_config import get_logger
from git_loom.models.results import MergeOutcome
from git_loom.services.git.commands import (
    branch_exists,
    detect_conflicted_files,
    detect_uncommitted_changes,
    get_current_branch,
    is_merge_in_progress,
    is_rebase_in_progress,
    ref_exists,
    run_git,
)
from git_loom.services.git.worktrees import WorktreeRegistry
from git_loom.services.metadata_service import MetadataStore
from git_loom.services.recovery_agent import (
    AgentCapability,
    Supported,
    Unsupported,
    detect_recovery_agent,
)

logger = get_logger(__name__)

NO_HOOKS = ["-c", "core.hooksPath=/dev/null"]

RECOVERY_PROMPT = (
    "Please help resolve the git {operation} conflicts in this repository. "
    "Analyze the conflicted files, understand the changes from both branches, "
    "fix the conflicts, stage the resolved files with 'git add', "
    "and finally run '{continue_command}' to complete the {operation}. "
    "Once the issue is resolved, tell the user they can use /exit to continue with the process."
    "\n\nConflicted files:\n{file_list}"
)


def build_recovery_prompt(operation: str, conflicted_files: List[str]) -> str:
    """Task description handed to the recovery agent."""
    continue_command = "git rebase --continue" if operation == "rebase" else "git commit --no-edit"
    return RECOVERY_PROMPT.format(
        operation=operation,
        continue_command=continue_command,
        file_list="\n".join(f"- {f}" for f in conflicted_files),
    )


class MergeOrchestrator:
    """Brings loom branches back in line with their merge target."""

    def __init__(
        self,
        registry: WorktreeRegistry,
        metadata_store: MetadataStore,
        settings: Settings,
        agent_capability: Optional[AgentCapability] = None,
        interactive_recovery: bool = True,
    ):
        """Initialize the orchestrator.

        Args:
            registry: Worktree registry of the repository
            metadata_store: Where loom metadata lives
            settings: Loaded settings
            agent_capability: Recovery agent to use; detected from settings when omitted
            interactive_recovery: Run the agent attached to the terminal
        """
        self.registry = registry
        self.metadata_store = metadata_store
        self.settings = settings
        self.agent_capability = (
            agent_capability if agent_capability is not None else detect_recovery_agent(settings)
        )
        self.interactive_recovery = interactive_recovery

    # Entry points that validate the working directory first

    def rebase(
        self, cwd: str, dry_run: Optional[bool] = None, force: Optional[bool] = None
    ) -> MergeOutcome:
        """Rebase the worktree containing ``cwd`` onto its merge target.

        Validation failures come back as a failed outcome and leave git alone.

        Raises:
            UnresolvedConflictError: Conflicts remain after the recovery attempt
            GitOperationError: Git failed for a reason other than conflicts
        """
        try:
            context = self.registry.validate_context(cwd, self.settings, command="git-loom rebase")
        except WorktreeValidationError as e:
            logger.debug(f"Rebase validation failed: {e.message}")
            return MergeOutcome.failed(f"{e.message} {e.suggestion}")
        return self.rebase_on_main(context.worktree_path, dry_run=dry_run, force=force)

    def merge_main(
        self, cwd: str, dry_run: Optional[bool] = None, force: Optional[bool] = None
    ) -> MergeOutcome:
        """Merge the merge target into the worktree containing ``cwd``."""
        try:
            context = self.registry.validate_context(cwd, self.settings, command="git-loom merge-main")
        except WorktreeValidationError as e:
            logger.debug(f"Merge validation failed: {e.message}")
            return MergeOutcome.failed(f"{e.message} {e.suggestion}")
        return self.merge_main_into_branch(context.worktree_path, dry_run=dry_run, force=force)

    def finish(
        self, cwd: str, dry_run: Optional[bool] = None, force: Optional[bool] = None
    ) -> Tuple[MergeOutcome, int]:
        """Rebase the current loom and fast-forward its merge target onto it.

        Returns:
            The rebase outcome and the number of commits fast-forwarded
        """
        try:
            context = self.registry.validate_context(cwd, self.settings, command="git-loom finish")
        except WorktreeValidationError as e:
            return MergeOutcome.failed(f"{e.message} {e.suggestion}"), 0

        outcome = self.rebase_on_main(context.worktree_path, dry_run=dry_run, force=force)
        branch = context.worktree.branch or get_current_branch(context.worktree_path)
        if not branch:
            raise GitOperationError("merge", "Cannot finish a detached HEAD worktree")
        merged = self.fast_forward_merge(branch, context.worktree_path, dry_run=dry_run)
        return outcome, merged

    # Merge target resolution

    def _merge_target(self, worktree_path: str) -> Tuple[str, bool]:
        """Local branch to reconcile with, and whether the loom is a child."""
        metadata = self.metadata_store.read_metadata(worktree_path)
        if metadata is not None and metadata.parent_loom is not None:
            parent_branch = metadata.parent_loom.branch_name
            if parent_branch and branch_exists(parent_branch, worktree_path):
                logger.debug(f"Child loom; merge target is parent branch {parent_branch}")
                return parent_branch, True
            logger.warning(
                f"Parent branch '{parent_branch}' no longer exists; "
                f"using {self.settings.main_branch} instead"
            )
            return self.settings.main_branch, True
        return self.settings.main_branch, False

    def get_merge_target_branch(self, worktree_path: str) -> str:
        """Branch a loom merges into: its parent's branch, or the main branch."""
        return self._merge_target(worktree_path)[0]

    def _resolve_target_ref(self, worktree_path: str, dry_run: bool) -> str:
        """Resolve and verify the ref to rebase or merge onto.

        PR merge modes reconcile top-level looms with ``origin/<main>``.

        Raises:
            BranchNotFoundError: If the target ref does not exist
        """
        branch, is_child = self._merge_target(worktree_path)
        use_remote = self.settings.uses_remote_target and not is_child

        if use_remote:
            if dry_run:
                logger.info("[DRY RUN] Would fetch from origin")
            else:
                logger.info("Fetching from origin...")
                run_git(["fetch", "origin"], cwd=worktree_path)
            target = f"origin/{branch}"
            ref_path = f"refs/remotes/{target}"
        else:
            logger.info(f"Using local branch {branch}")
            target = branch
            ref_path = f"refs/heads/{target}"

        if not ref_exists(ref_path, worktree_path):
            hint = (
                f"Ensure the repository has a '{branch}' branch on origin"
                if use_remote
                else "Ensure the branch exists locally"
            )
            raise BranchNotFoundError(target, hint)
        return target

    def _is_up_to_date(self, target: str, worktree_path: str, head: str = "HEAD") -> bool:
        merge_base = run_git(["merge-base", target, head], cwd=worktree_path).strip()
        target_head = run_git(["rev-parse", target], cwd=worktree_path).strip()
        return merge_base == target_head

    def _commits_between(self, base: str, head: str, cwd: str) -> List[str]:
        output = run_git(["log", "--oneline", f"{base}..{head}"], cwd=cwd).strip()
        return output.split("\n") if output else []

    # Rebase

    def _abort_stale_rebase(self, worktree_path: str, dry_run: bool) -> None:
        """Abort a rebase left behind by an earlier, interrupted run."""
        if not is_rebase_in_progress(worktree_path):
            return
        if dry_run:
            logger.warning("[DRY RUN] An interrupted rebase is in progress and would be aborted")
            return

        logger.warning("Aborting interrupted rebase left in the worktree")
        try:
            run_git(["rebase", "--abort"], cwd=worktree_path)
        except GitOperationError as e:
            # Finished on its own between the check and the abort
            if "No rebase in progress" in str(e):
                logger.debug("Rebase already finished before abort")
                return
            raise GitOperationError(
                "rebase",
                f"Could not abort the interrupted rebase: {e.stderr or e.message}. "
                "Run 'git rebase --abort' manually, then try again.",
                stderr=e.stderr,
                status=e.status,
            ) from e

    def _create_wip_commit(self, worktree_path: str) -> str:
        run_git(["add", "-A"], cwd=worktree_path)
        run_git(["commit", "--no-verify", "-m", WIP_COMMIT_MESSAGE], cwd=worktree_path)
        return run_git(["rev-parse", "HEAD"], cwd=worktree_path).strip()

    def _restore_wip_commit(self, worktree_path: str, wip_commit: str) -> None:
        """Undo the WIP commit, leaving its changes uncommitted again."""
        logger.info("Restoring uncommitted changes from WIP commit...")
        try:
            run_git(["reset", "--soft", "HEAD~1"], cwd=worktree_path)
            run_git(["reset", "HEAD"], cwd=worktree_path)
        except GitOperationError as e:
            logger.warning(
                f"Failed to restore WIP commit ({wip_commit}). Your changes are safe in the "
                f"commit history. Manual recovery: git reset --soft HEAD~1 ({e})"
            )

    def rebase_on_main(
        self,
        worktree_path: str,
        dry_run: Optional[bool] = None,
        force: Optional[bool] = None,
    ) -> MergeOutcome:
        """Rebase a worktree's branch onto its merge target.

        Uncommitted changes ride along in a temporary WIP commit that is
        undone after the rebase. On conflicts the recovery agent gets one
        attempt; it is never retried.

        Args:
            worktree_path: Root of an already validated worktree
            dry_run: Only report what would happen
            force: Rebase even if the branch is already up to date

        Raises:
            UnresolvedConflictError: Conflicts remain after the recovery attempt
            BranchNotFoundError: The merge target does not exist
            GitOperationError: Git failed for a reason other than conflicts
        """
        dry_run = self.settings.dry_run if dry_run is None else dry_run
        force = self.settings.force if force is None else force

        self._abort_stale_rebase(worktree_path, dry_run)
        target = self._resolve_target_ref(worktree_path, dry_run)

        if not force and self._is_up_to_date(target, worktree_path):
            logger.info(f"Branch is already up to date with {target}. No rebase needed.")
            return MergeOutcome()

        commits = self._commits_between(target, "HEAD", worktree_path)
        if commits:
            logger.info(f"Found {len(commits)} commit(s) to rebase:")
            for commit in commits:
                logger.info(f"  {commit}")
        else:
            logger.info(f"{target} has moved forward. Rebasing to update branch...")

        if dry_run:
            logger.info(f"[DRY RUN] Would execute: git rebase {target}")
            return MergeOutcome()

        wip_commit = None
        if detect_uncommitted_changes(worktree_path).has_uncommitted_changes:
            logger.info("Uncommitted changes detected, creating temporary WIP commit...")
            wip_commit = self._create_wip_commit(worktree_path)
            logger.debug(f"Created WIP commit {wip_commit}")

        logger.info(f"Starting rebase on {target}...")
        try:
            run_git([*NO_HOOKS, "rebase", target], cwd=worktree_path)
        except GitOperationError:
            conflicted = detect_conflicted_files(worktree_path)
            if not conflicted:
                logger.error("Rebase failed without conflicts. Run 'git status' for details.")
                raise
            outcome = self._attempt_recovery(worktree_path, conflicted, "rebase")
            if not outcome.conflicts_resolved:
                remaining = detect_conflicted_files(worktree_path) or conflicted
                raise UnresolvedConflictError(remaining, outcome, "rebase")
            if wip_commit:
                self._restore_wip_commit(worktree_path, wip_commit)
            return outcome

        logger.info("Rebase completed successfully")
        if wip_commit:
            self._restore_wip_commit(worktree_path, wip_commit)
        return MergeOutcome()

    # Merge

    def merge_main_into_branch(
        self,
        worktree_path: str,
        dry_run: Optional[bool] = None,
        force: Optional[bool] = None,
    ) -> MergeOutcome:
        """Merge the merge target into a worktree's branch.

        Same recovery loop as :meth:`rebase_on_main`. The worktree must be
        clean because a merge commit cannot carry a WIP commit through.

        Raises:
            UnresolvedConflictError: Conflicts remain after the recovery attempt
            BranchNotFoundError: The merge target does not exist
            GitOperationError: Uncommitted changes, or git failed for a reason
                other than conflicts
        """
        dry_run = self.settings.dry_run if dry_run is None else dry_run
        force = self.settings.force if force is None else force

        target = self._resolve_target_ref(worktree_path, dry_run)
        if not force and self._is_up_to_date(target, worktree_path):
            logger.info(f"Branch already contains {target}. No merge needed.")
            return MergeOutcome()

        if dry_run:
            incoming = self._commits_between("HEAD", target, worktree_path)
            logger.info(f"[DRY RUN] Would execute: git merge {target} ({len(incoming)} incoming commit(s))")
            return MergeOutcome()

        if detect_uncommitted_changes(worktree_path).has_uncommitted_changes:
            raise GitOperationError(
                "merge", "Uncommitted changes in worktree. Commit or stash them before merging."
            )

        logger.info(f"Merging {target} into current branch...")
        try:
            run_git([*NO_HOOKS, "merge", "--no-edit", target], cwd=worktree_path)
        except GitOperationError:
            conflicted = detect_conflicted_files(worktree_path)
            if not conflicted:
                logger.error("Merge failed without conflicts. Run 'git status' for details.")
                raise
            outcome = self._attempt_recovery(worktree_path, conflicted, "merge")
            if not outcome.conflicts_resolved:
                remaining = detect_conflicted_files(worktree_path) or conflicted
                raise UnresolvedConflictError(remaining, outcome, "merge")
            return outcome

        logger.info("Merge completed successfully")
        return MergeOutcome()

    # Recovery

    def _attempt_recovery(self, worktree_path: str, conflicted_files: List[str], operation: str) -> MergeOutcome:
        """Give the recovery agent one chance, then check the result.

        Resolved means no unmerged paths remain and the rebase or merge is
        no longer in progress.
        """
        outcome = MergeOutcome(conflicts_detected=True)
        capability = self.agent_capability

        if not isinstance(capability, Supported):
            reason = capability.reason if isinstance(capability, Unsupported) else "unknown agent capability"
            logger.info(f"Recovery agent unavailable ({reason}); manual resolution required")
            outcome.error = f"Conflicts detected and no recovery agent is available: {reason}"
            return outcome

        logger.info(f"Launching recovery agent to resolve conflicts in {len(conflicted_files)} file(s)...")
        outcome.claude_launched = True
        try:
            capability.agent.invoke(
                build_recovery_prompt(operation, conflicted_files),
                working_directory=worktree_path,
                interactive=self.interactive_recovery,
            )
        except Exception as e:
            logger.warning(f"Recovery agent failed: {e}")
            outcome.error = f"Recovery agent failed: {e}"
            return outcome

        remaining = detect_conflicted_files(worktree_path)
        if remaining:
            logger.warning(f"Conflicts still exist in {len(remaining)} file(s) after recovery attempt")
            outcome.error = "Conflicts remain after recovery attempt; manual resolution required"
            return outcome

        still_running = (
            is_rebase_in_progress(worktree_path)
            if operation == "rebase"
            else is_merge_in_progress(worktree_path)
        )
        if still_running:
            logger.warning(f"{operation.capitalize()} still in progress after recovery attempt")
            outcome.error = f"{operation.capitalize()} still in progress; manual resolution required"
            return outcome

        logger.info(f"Conflicts resolved by recovery agent, {operation} completed")
        outcome.conflicts_resolved = True
        return outcome

    # Fast-forward

    def _validate_fast_forward_possible(self, target: str, branch: str, cwd: str) -> None:
        merge_base = run_git(["merge-base", target, branch], cwd=cwd).strip()
        target_head = run_git(["rev-parse", target], cwd=cwd).strip()
        if merge_base != target_head:
            raise GitOperationError(
                "merge",
                f"Cannot perform fast-forward merge. {target} has moved forward since "
                f"{branch} was last rebased (merge base {merge_base[:8]}, {target} at "
                f"{target_head[:8]}). Run 'git-loom rebase' first.",
            )

    def fast_forward_merge(self, branch: str, worktree_path: str, dry_run: Optional[bool] = None) -> int:
        """Fast-forward the merge target of ``worktree_path`` to ``branch``.

        The merge runs in whichever worktree has the target checked out.

        Returns:
            Number of commits merged (0 when there was nothing to merge or in dry run)

        Raises:
            GitOperationError: The target worktree is on the wrong branch, the
                merge is not a fast-forward, or git failed
        """
        dry_run = self.settings.dry_run if dry_run is None else dry_run
        target = self.get_merge_target_branch(worktree_path)

        target_worktree = self.registry.find_worktree_for_branch(target)
        if target_worktree is None:
            logger.debug(f"No worktree has {target} checked out, using main worktree")
            target_worktree = self.registry.find_main_worktree(self.settings)
        target_path = target_worktree.path

        current = get_current_branch(target_path)
        if current != target:
            raise GitOperationError(
                "merge",
                f"Expected {target} branch but found {current or 'detached HEAD'} at {target_path}",
            )

        self._validate_fast_forward_possible(target, branch, target_path)

        commits = self._commits_between(target, branch, target_path)
        if not commits:
            logger.info(f"Branch has no commits ahead of {target}. No merge needed.")
            return 0

        logger.info(f"Found {len(commits)} commit(s) to merge:")
        for commit in commits:
            logger.info(f"  {commit}")

        if dry_run:
            logger.info(f"[DRY RUN] Would execute: git merge --ff-only {branch}")
            return 0

        try:
            run_git(["merge", "--ff-only", branch], cwd=target_path)
        except GitOperationError as e:
            raise GitOperationError(
                "merge",
                f"Fast-forward merge failed: {e.stderr or e.message}. "
                "Check 'git status', abort with 'git merge --abort' if needed, then rebase and retry.",
                stderr=e.stderr,
                status=e.status,
            ) from e

        logger.info(f"Fast-forward merge completed, merged {len(commits)} commit(s)")
        return len(commits)
