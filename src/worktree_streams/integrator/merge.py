"""Merging a stream branch back into the mainline checkout."""

from __future__ import annotations

from worktree_streams.core.agent import AgentLauncher, build_conflict_prompt
from worktree_streams.core.errors import IntegrationConflict, IntegrationOtherFailure
from worktree_streams.schemas.lifecycle import LifecycleContext
from worktree_streams.schemas.streams import PhaseOutcome
from worktree_streams.utils.console import log_detail, log_error, log_info, log_step, log_warn
from worktree_streams.utils.git import (
    abort_merge,
    get_unmerged_files,
    is_ancestor,
    merge_branch,
    merge_in_progress,
)


class Integrator:
    """Folds a stream branch into the mainline, resolving conflicts with the agent."""

    def __init__(self, agent: AgentLauncher):
        """Initialize the integrator.

        Args:
            agent: Launcher used for the interactive conflict-resolution session
        """
        self.agent = agent

    def integrate(self, ctx: LifecycleContext, abort_on_conflict: bool = False) -> PhaseOutcome:
        """Merge ``ctx.branch`` into the mainline branch.

        A failed merge with no conflicted paths is aborted. Conflicted paths
        are handed to an interactive agent session in the mainline
        directory; integration succeeds only if none remain afterwards and
        the branch ended up merged.

        Args:
            ctx: Lifecycle context of the stream being merged
            abort_on_conflict: Abort the merge when conflicts remain, leaving
                the mainline clean for the next merge (batch reconcile)

        Raises:
            IntegrationOtherFailure: Merge failed without conflicts, or the
                mainline already had a merge in progress
            IntegrationConflict: Conflicts remain after the agent session
            AgentUnavailable: No agent to resolve conflicts with
        """
        log_step("Phase 2: Merge")

        if merge_in_progress(ctx.source_dir):
            raise IntegrationOtherFailure(
                f"A merge is already in progress in {ctx.source_dir}. "
                "Finish it with 'git commit' or drop it with 'git merge --abort', "
                f"then run: gwt merge {ctx.branch}\n"
                f"Worktree preserved at: {ctx.workspace_path}",
                workspace_path=ctx.workspace_path,
            )

        log_detail(f"Merging {ctx.branch} into {ctx.source_branch}...")

        result = merge_branch(ctx.branch, ctx.source_dir)
        if result.ok:
            log_info("Merge successful")
            return PhaseOutcome(success=True)

        log_warn("Merge failed")
        if result.output.strip():
            log_detail(result.output.strip())

        unmerged = get_unmerged_files(ctx.source_dir)
        if not unmerged:
            log_error("No unmerged files detected. Aborting merge.")
            if merge_in_progress(ctx.source_dir):
                abort_merge(ctx.source_dir)
            raise IntegrationOtherFailure(
                "Merge failed (no conflict markers found). "
                f"Worktree preserved at: {ctx.workspace_path}",
                workspace_path=ctx.workspace_path,
            )

        log_warn("Merge conflicts detected")
        self._report_paths("Unmerged files:", unmerged)

        log_step("Starting Claude to resolve conflicts (interactive)...")
        self.agent.run([build_conflict_prompt(unmerged)], cwd=ctx.source_dir)

        remaining = get_unmerged_files(ctx.source_dir)
        if remaining:
            log_error("Unresolved conflicts remain:")
            self._report_paths(None, remaining)
            if abort_on_conflict:
                abort_merge(ctx.source_dir)
                raise IntegrationConflict(
                    f"Unresolved conflicts in {', '.join(remaining)}. Merge aborted. "
                    f"Retry later with: gwt merge {ctx.branch}\n"
                    f"Worktree preserved at: {ctx.workspace_path}",
                    paths=remaining,
                    workspace_path=ctx.workspace_path,
                )
            raise IntegrationConflict(
                "Unresolved conflicts remain. Resolve manually:\n"
                f"  cd {ctx.source_dir}\n"
                f"  git add {' '.join(remaining)}\n"
                "  git commit --no-edit\n"
                f"Worktree preserved at: {ctx.workspace_path}",
                paths=remaining,
                workspace_path=ctx.workspace_path,
            )

        if not is_ancestor(ctx.branch, "HEAD", ctx.source_dir):
            log_error("Conflict session ended without completing the merge")
            if abort_on_conflict and merge_in_progress(ctx.source_dir):
                abort_merge(ctx.source_dir)
            raise IntegrationOtherFailure(
                f"{ctx.branch} was not merged. Finish with 'git commit --no-edit' "
                f"in {ctx.source_dir} or retry with: gwt merge {ctx.branch}\n"
                f"Worktree preserved at: {ctx.workspace_path}",
                workspace_path=ctx.workspace_path,
            )

        log_info("Conflicts resolved and merge completed")
        return PhaseOutcome(success=True, message="conflicts resolved")

    @staticmethod
    def _report_paths(header: str | None, paths: list[str]) -> None:
        if header:
            log_detail(header)
        for path in paths:
            log_detail(path)
