"""Phase orchestrator: one branch from workspace creation to teardown.

Workspaces are only discarded automatically when there is provably nothing
to lose (no commits and a clean tree) or when the phases that consumed them
have all succeeded. Every failure path leaves the workspace in place.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from worktree_streams.core.agent import AgentLauncher, build_agent_args
from worktree_streams.core.errors import (
    BranchUnresolvable,
    LifecycleAborted,
    LifecycleError,
    PublishFailed,
    WorkspaceMissing,
)
from worktree_streams.core.state import LifecyclePhase, PhaseStateMachine
from worktree_streams.integrator.merge import Integrator
from worktree_streams.schemas.config import GwtConfig
from worktree_streams.schemas.lifecycle import LifecycleConfig, LifecycleContext
from worktree_streams.schemas.streams import PhaseOutcome
from worktree_streams.utils.console import (
    auto_continue,
    confirm_continue,
    log_detail,
    log_info,
    log_step,
    log_warn,
)
from worktree_streams.utils.git import get_current_branch, has_uncommitted_changes, push, rev_parse
from worktree_streams.utils.process import ProcessRunner
from worktree_streams.worktree.manager import WorkspaceManager

# Exit code of a lifecycle that produced no commits
EXIT_NO_CHANGES = 3

NO_OP_PHRASES = ("No new commits", "nothing to merge")
NO_CHANGES_MESSAGE = f"{NO_OP_PHRASES[0]} on worktree branch - {NO_OP_PHRASES[1]}"

Decision = Callable[[str], bool]


@dataclass
class LifecycleResult:
    """Final phase and per-phase outcomes of one lifecycle run."""

    phase: LifecyclePhase
    context: LifecycleContext | None = None
    outcomes: dict[LifecyclePhase, PhaseOutcome] = field(default_factory=dict)

    def _done(self, phase: LifecyclePhase) -> bool:
        outcome = self.outcomes.get(phase)
        return outcome is not None and outcome.success and not outcome.skipped

    @property
    def integrated(self) -> bool:
        return self._done(LifecyclePhase.INTEGRATE)

    @property
    def published(self) -> bool:
        return self._done(LifecyclePhase.PUBLISH)

    @property
    def torn_down(self) -> bool:
        return self._done(LifecyclePhase.TEARDOWN)


class PhaseOrchestrator:
    """Drives one branch through materialize, execute, integrate, publish, teardown."""

    def __init__(
        self,
        config: LifecycleConfig,
        source_dir: Path,
        settings: GwtConfig | None = None,
        runner: ProcessRunner | None = None,
        agent: AgentLauncher | None = None,
        workspaces: WorkspaceManager | None = None,
        decide: Decision | None = None,
    ):
        """Initialize the orchestrator for one branch.

        Args:
            config: Lifecycle parameters
            source_dir: Mainline checkout
            settings: Loaded .gwt.yaml settings
            runner: Process-execution collaborator
            agent: Agent launcher (built from settings when omitted)
            workspaces: Workspace manager (built from settings when omitted)
            decide: Continue/abort callback; auto-continue when headless,
                terminal prompt otherwise
        """
        self.config = config
        self.source_dir = Path(source_dir)
        self.settings = settings or GwtConfig()
        self.runner = runner or ProcessRunner()
        self.agent = agent or AgentLauncher(self.settings.agent, self.runner)
        self.workspaces = workspaces or WorkspaceManager(
            self.source_dir, separator=self.settings.workspace.separator
        )
        self.decide = decide or (auto_continue if config.headless else confirm_continue)
        self.integrator = Integrator(self.agent)
        self.machine = PhaseStateMachine(config.branch)
        self.outcomes: dict[LifecyclePhase, PhaseOutcome] = {}

    @property
    def phase(self) -> LifecyclePhase:
        return self.machine.phase

    def resolve_source_branch(self) -> str:
        branch = get_current_branch(self.source_dir)
        if not branch:
            raise BranchUnresolvable("Cannot determine current branch (detached HEAD?)")
        return branch

    def materialize(self) -> LifecycleContext:
        """Create or reuse the workspace and prepare it for the agent."""
        log_step("Phase 1: Work")

        try:
            source_branch = self.resolve_source_branch()
            log_detail(f"Source branch: {source_branch}")
            source_head = rev_parse("HEAD", self.source_dir)

            log_step(f"Creating worktree for branch: {self.config.branch}")
            workspace_path = self.workspaces.materialize(
                self.config.branch, self.config.from_ref
            )
        except LifecycleError:
            self.machine.transition_to(LifecyclePhase.ABORTED)
            raise

        log_detail(f"Worktree path: {workspace_path}")
        self.agent.prepare_workspace(self.source_dir, workspace_path)

        self.machine.transition_to(LifecyclePhase.EXECUTE)
        return LifecycleContext(
            config=self.config,
            source_dir=self.source_dir,
            source_branch=source_branch,
            source_head=source_head,
            workspace_path=workspace_path,
        )

    def attach(self, run_agent: bool = False) -> LifecycleContext:
        """Build a context for an existing workspace.

        Args:
            run_agent: Resume at the execute phase (rescue) instead of
                going straight to integrate (merge)
        """
        start = LifecyclePhase.EXECUTE if run_agent else LifecyclePhase.INTEGRATE
        self.machine = PhaseStateMachine(self.config.branch, initial_phase=start)

        source_branch = self.resolve_source_branch()
        workspace_path = self.workspaces.locate(self.config.branch)
        if workspace_path is None:
            raise WorkspaceMissing(
                f"Worktree for branch '{self.config.branch}' does not exist"
            )

        if run_agent:
            self.agent.prepare_workspace(self.source_dir, workspace_path)

        return LifecycleContext(
            config=self.config,
            source_dir=self.source_dir,
            source_branch=source_branch,
            source_head=rev_parse("HEAD", self.source_dir),
            workspace_path=workspace_path,
        )

    def execute(self, ctx: LifecycleContext, resume: bool = False) -> LifecyclePhase:
        """Run the agent in the workspace and decide where to go next.

        The agent's exit code is advisory: a nonzero exit asks the decision
        callback whether to continue.

        Returns:
            INTEGRATE, NO_OP_DONE, or DONE (work-only)

        Raises:
            LifecycleAborted: The user declined to continue, or the workspace
                has uncommitted changes but no commits
            AgentUnavailable: No agent executable
        """
        try:
            self.agent.find()
        except LifecycleError:
            self.machine.transition_to(LifecyclePhase.ABORTED)
            raise

        args = build_agent_args(self.config)

        if resume:
            log_step("Starting Claude with --resume...")
            exit_code = self.agent.run(["--resume", *args], cwd=ctx.workspace_path)
            if exit_code != 0:
                log_warn(f"Claude --resume exited with code {exit_code}")
                if not self.config.headless and self.decide(
                    "Retry with a fresh Claude session?"
                ):
                    log_step("Starting fresh Claude session...")
                    exit_code = self.agent.run(args, cwd=ctx.workspace_path)
        else:
            log_step("Starting Claude in worktree...")
            exit_code = self.agent.run(args, cwd=ctx.workspace_path)

        if exit_code != 0:
            log_warn(f"Claude exited with code {exit_code}")
            if not self.decide("Continue to merge?"):
                self._abort(f"Aborted. Worktree preserved at: {ctx.workspace_path}", ctx)

        return self.check_for_changes(ctx)

    def check_for_changes(self, ctx: LifecycleContext) -> LifecyclePhase:
        """Compare the workspace head with the mainline head at phase start."""
        baseline = ctx.source_head or rev_parse("HEAD", ctx.source_dir)
        workspace_head = rev_parse("HEAD", ctx.workspace_path)

        if workspace_head == baseline:
            if has_uncommitted_changes(ctx.workspace_path):
                log_warn(
                    "Worktree has uncommitted changes but no commits. "
                    "Preserving worktree."
                )
                self._abort(f"Worktree preserved at: {ctx.workspace_path}", ctx)

            log_warn(NO_CHANGES_MESSAGE)
            if not self.config.no_cleanup:
                self.discard(ctx)
            self.machine.transition_to(LifecyclePhase.NO_OP_DONE)
            return LifecyclePhase.NO_OP_DONE

        if self.config.work_only:
            self.machine.transition_to(LifecyclePhase.DONE)
            return LifecyclePhase.DONE

        self.machine.transition_to(LifecyclePhase.INTEGRATE)
        return LifecyclePhase.INTEGRATE

    def integrate(
        self, ctx: LifecycleContext, abort_on_conflict: bool = False
    ) -> PhaseOutcome:
        """Merge the stream branch into the mainline (see Integrator)."""
        try:
            outcome = self.integrator.integrate(ctx, abort_on_conflict=abort_on_conflict)
        except LifecycleError:
            self.machine.transition_to(LifecyclePhase.ABORTED)
            raise

        self.outcomes[LifecyclePhase.INTEGRATE] = outcome
        self.machine.transition_to(LifecyclePhase.PUBLISH)
        return outcome

    def publish(self, ctx: LifecycleContext) -> PhaseOutcome:
        """Push the mainline once. No automatic retry.

        Raises:
            PublishFailed: If the push fails
        """
        if self.config.no_push:
            log_info("Skipping push (--no-push)")
            outcome = PhaseOutcome(success=True, skipped=True)
        else:
            log_step("Phase 3: Push")
            result = push(ctx.source_dir)
            if not result.ok:
                self.machine.transition_to(LifecyclePhase.ABORTED)
                raise PublishFailed(
                    f"Push failed. Retry with: cd {ctx.source_dir} && git push\n"
                    f"Worktree preserved at: {ctx.workspace_path}",
                    workspace_path=ctx.workspace_path,
                )
            log_info("Pushed successfully")
            outcome = PhaseOutcome(success=True)

        self.outcomes[LifecyclePhase.PUBLISH] = outcome
        self.machine.transition_to(LifecyclePhase.TEARDOWN)
        return outcome

    def teardown(self, ctx: LifecycleContext) -> PhaseOutcome:
        """Remove the workspace. Failure is a warning, never an error."""
        if self.config.no_cleanup:
            log_info("Skipping cleanup (--no-cleanup)")
            outcome = PhaseOutcome(success=True, skipped=True)
        else:
            log_step("Phase 4: Cleanup")
            if self.discard(ctx):
                outcome = PhaseOutcome(success=True)
            else:
                outcome = PhaseOutcome(success=False, message="Worktree removal failed")

        self.outcomes[LifecyclePhase.TEARDOWN] = outcome
        self.machine.transition_to(LifecyclePhase.DONE)
        return outcome

    def discard(self, ctx: LifecycleContext, require_clean: bool = False) -> bool:
        """Destroy the workspace, printing manual guidance on failure.

        With ``require_clean`` a workspace holding uncommitted changes is
        kept instead.
        """
        if require_clean and has_uncommitted_changes(ctx.workspace_path):
            log_warn(f"Worktree has uncommitted changes, keeping it: {ctx.workspace_path}")
            return False

        if self.workspaces.destroy(ctx.branch):
            log_info("Worktree removed")
            return True

        log_warn("Could not remove worktree (non-critical)")
        log_detail(
            f"Remove manually: git worktree remove {ctx.workspace_path} --force "
            f"&& git branch -d {ctx.branch}"
        )
        return False

    def reconcile(self, ctx: LifecycleContext) -> LifecycleResult:
        """Integrate, publish, and tear down an executed workspace."""
        self.integrate(ctx)
        self.publish(ctx)
        self.teardown(ctx)
        return LifecycleResult(self.phase, ctx, dict(self.outcomes))

    def run(self) -> LifecycleResult:
        """Run the full lifecycle for a new or reused workspace."""
        ctx = self.materialize()
        return self._finish(ctx, self.execute(ctx))

    def rescue(self) -> LifecycleResult:
        """Resume the agent in an existing workspace, then finish the lifecycle."""
        log_step(f"Rescuing worktree: {self.config.branch}")
        ctx = self.attach(run_agent=True)
        log_detail(f"Source branch: {ctx.source_branch}")
        log_detail(f"Worktree path: {ctx.workspace_path}")
        return self._finish(ctx, self.execute(ctx, resume=True))

    def _finish(self, ctx: LifecycleContext, next_phase: LifecyclePhase) -> LifecycleResult:
        if next_phase != LifecyclePhase.INTEGRATE:
            return LifecycleResult(next_phase, ctx, dict(self.outcomes))
        return self.reconcile(ctx)

    def _abort(self, message: str, ctx: LifecycleContext) -> None:
        self.machine.transition_to(LifecyclePhase.ABORTED)
        raise LifecycleAborted(message, workspace_path=ctx.workspace_path)
