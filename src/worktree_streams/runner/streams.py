"""Fan streams out as child lifecycles and reconcile them one at a time.

Each stream's agent phase runs as its own ``gwt run --work-only`` child
process. Integration, publishing, and teardown touch the shared mainline
checkout, so the invoking process performs them serially afterwards.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from worktree_streams.core.agent import trust_directory
from worktree_streams.core.errors import LifecycleError
from worktree_streams.core.lifecycle import EXIT_NO_CHANGES, NO_OP_PHRASES, PhaseOrchestrator
from worktree_streams.schemas.config import GwtConfig
from worktree_streams.schemas.lifecycle import LifecycleConfig
from worktree_streams.schemas.streams import RunReport, StreamDescriptor, StreamOutcome
from worktree_streams.utils.console import (
    LOG_PREFIXES,
    log_detail,
    log_error,
    log_info,
    log_step,
    log_warn,
)
from worktree_streams.utils.process import ProcessRunner
from worktree_streams.worktree.manager import WorkspaceManager, workspace_dir_name

_ANSI = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")

OrchestratorFactory = Callable[[LifecycleConfig], PhaseOrchestrator]


def strip_ansi(text: str) -> str:
    return _ANSI.sub("", text)


def extract_reason(diagnostics: str) -> str | None:
    """Last non-empty diagnostic line without colors or log-level prefix."""
    for line in reversed(strip_ansi(diagnostics).splitlines()):
        line = line.strip()
        if not line:
            continue
        for prefix in LOG_PREFIXES:
            if line.startswith(prefix):
                line = line[len(prefix) :].strip()
                break
        if line:
            return line
    return None


def is_no_op(diagnostics: str) -> bool:
    """True if the last diagnostic line carries the nothing-to-integrate signature."""
    last = extract_reason(diagnostics)
    return last is not None and all(phrase in last for phrase in NO_OP_PHRASES)


def classify_outcome(
    stream: StreamDescriptor,
    exit_code: int,
    diagnostics: str = "",
) -> StreamOutcome:
    """Turn a child lifecycle's exit into a stream outcome.

    A no-op is skipped, not failed. The exit code decides: EXIT_NO_CHANGES
    is a no-op and any other nonzero exit is a failure. Text is consulted
    only for a zero exit, as a fallback for children that report a no-op
    on their last line without the dedicated exit code.
    """
    if exit_code == EXIT_NO_CHANGES or (exit_code == 0 and is_no_op(diagnostics)):
        return StreamOutcome(
            stream=stream,
            success=True,
            skipped=True,
            reason=extract_reason(diagnostics) or "no changes",
            exit_code=exit_code,
        )

    if exit_code != 0:
        return StreamOutcome(
            stream=stream,
            success=False,
            error=f"exited with code {exit_code}",
            reason=extract_reason(diagnostics),
            exit_code=exit_code,
        )

    return StreamOutcome(stream=stream, success=True, exit_code=exit_code)


class StreamRunner:
    """Runs a batch of streams in parallel, sequential, or detached mode."""

    def __init__(
        self,
        template: LifecycleConfig,
        source_dir: Path,
        self_command: Sequence[str],
        settings: GwtConfig | None = None,
        runner: ProcessRunner | None = None,
        orchestrator_factory: OrchestratorFactory | None = None,
    ):
        """Initialize the stream runner.

        Args:
            template: Lifecycle parameters shared by every stream
            source_dir: Mainline checkout
            self_command: argv prefix that re-invokes this tool
            settings: Loaded .gwt.yaml settings
            runner: Process-execution collaborator
            orchestrator_factory: Builds the orchestrator used to reconcile
                one stream (defaults to a PhaseOrchestrator on source_dir)
        """
        self.template = template
        self.source_dir = Path(source_dir)
        self.self_command = list(self_command)
        self.settings = settings or GwtConfig()
        self.runner = runner or ProcessRunner()
        self.orchestrator_factory = orchestrator_factory or self._default_orchestrator

    def _default_orchestrator(self, config: LifecycleConfig) -> PhaseOrchestrator:
        return PhaseOrchestrator(
            config, self.source_dir, settings=self.settings, runner=self.runner
        )

    def build_child_argv(self, stream: StreamDescriptor, headless: bool) -> list[str]:
        """Command line for one stream's work-only child lifecycle.

        Teardown is always disabled in the child so the workspace survives
        for the serial integration pass.
        """
        argv = [
            *self.self_command,
            "run",
            "--branch",
            stream.branch,
            "--work-only",
            "--no-cleanup",
        ]
        if headless:
            argv.append("--headless")
        if self.template.model:
            argv.extend(["--model", self.template.model])
        if self.template.max_budget_usd:
            argv.extend(["--max-budget-usd", self.template.max_budget_usd])
        if self.template.permission_mode:
            argv.extend(["--permission-mode", self.template.permission_mode])
        if self.template.from_ref:
            argv.extend(["--from", self.template.from_ref])

        argv.extend(["--", stream.prompt, *self.template.extra_agent_flags])
        return argv

    def run_one(self, stream: StreamDescriptor, headless: bool = True) -> StreamOutcome:
        """Execute one stream's child lifecycle and classify it."""
        log_step(f"[START] {stream.id}: {stream.title}")
        argv = self.build_child_argv(stream, headless)

        if headless:
            result = self.runner.run(argv, cwd=self.source_dir)
            outcome = classify_outcome(stream, result.returncode, result.output)
            if outcome.failed and result.stderr.strip():
                for line in result.stderr.strip().splitlines()[-5:]:
                    log_detail(strip_ansi(line))
        else:
            exit_code = self.runner.run_interactive(argv, cwd=self.source_dir)
            outcome = classify_outcome(stream, exit_code)

        if outcome.skipped:
            log_warn(f"[SKIP] {stream.id}: {stream.title}")
        elif outcome.failed:
            log_error(f"[FAIL] {stream.id}: {stream.title}")
        else:
            log_info(f"[DONE] {stream.id}: {stream.title}")
        return outcome

    def _settle(self, stream: StreamDescriptor, headless: bool) -> StreamOutcome:
        try:
            return self.run_one(stream, headless)
        except Exception as e:  # one stream's crash must not cancel its siblings
            log_error(f"[FAIL] {stream.id}: {e}")
            return StreamOutcome(stream=stream, success=False, error=str(e))

    def trust_workspaces(self, streams: Sequence[StreamDescriptor]) -> None:
        """Mark every stream's workspace trusted before children start.

        Children then find their entry already present and leave the
        shared trust file alone instead of rewriting it concurrently.
        """
        agent = self.settings.agent
        if not agent.trust_workspaces:
            return
        trust_file = Path(agent.trust_file).expanduser()
        workspaces = WorkspaceManager(self.source_dir, self.settings.workspace.separator)
        for stream in streams:
            trust_directory(workspaces.get_workspace_path(stream.branch), trust_file)

    def run_parallel(self, streams: Sequence[StreamDescriptor]) -> list[StreamOutcome]:
        """Start every stream at once (headless) and wait for all of them."""
        log_step(f"Running {len(streams)} streams in parallel...")
        if not streams:
            return []

        self.trust_workspaces(streams)
        with ThreadPoolExecutor(max_workers=len(streams)) as pool:
            futures = [pool.submit(self._settle, stream, True) for stream in streams]
            return [future.result() for future in futures]

    def run_sequential(self, streams: Sequence[StreamDescriptor]) -> list[StreamOutcome]:
        """Run streams one at a time, interactively, in input order."""
        log_step(f"Running {len(streams)} streams sequentially (interactive)...")
        return [self._settle(stream, False) for stream in streams]

    def launch_detached(self, streams: Sequence[StreamDescriptor]) -> list[str]:
        """Start every stream in the background and return their branches."""
        self.trust_workspaces(streams)
        log_dir = self.settings.runner.resolve_log_dir()
        branches: list[str] = []

        for stream in streams:
            dir_name = workspace_dir_name(stream.branch, self.settings.workspace.separator)
            log_path = log_dir / f"gwt-{dir_name}.log"
            pid = self.runner.launch_detached(
                self.build_child_argv(stream, headless=True),
                cwd=self.source_dir,
                log_path=log_path,
            )
            log_info(f"[DETACHED] {stream.id}: pid {pid}, log {log_path}")
            branches.append(stream.branch)

        return branches

    def run(self, streams: Sequence[StreamDescriptor], interactive: bool = False) -> RunReport:
        """Execute all streams, then reconcile the successful ones serially."""
        outcomes = self.run_sequential(streams) if interactive else self.run_parallel(streams)
        return self.reconcile(outcomes)

    def reconcile(self, outcomes: Sequence[StreamOutcome]) -> RunReport:
        """Integrate, publish, and tear down streams one at a time."""
        for outcome in outcomes:
            if outcome.skipped:
                self._discard(outcome)
            elif outcome.success:
                self._reconcile_one(outcome)
        return RunReport(outcomes=list(outcomes))

    def _stream_config(self, stream: StreamDescriptor) -> LifecycleConfig:
        return self.template.for_branch(
            stream.branch, stream.prompt, headless=True, work_only=False
        )

    def _reconcile_one(self, outcome: StreamOutcome) -> None:
        stream = outcome.stream
        orchestrator = self.orchestrator_factory(self._stream_config(stream))

        try:
            ctx = orchestrator.attach()
            orchestrator.integrate(ctx, abort_on_conflict=True)
        except LifecycleError as e:
            log_warn(f"Merge failed for {stream.id}: {e}")
            outcome.success = False
            outcome.error = f"merge failed: {e}"
            return
        outcome.integrated = True

        try:
            published = orchestrator.publish(ctx)
        except LifecycleError as e:
            log_warn(f"Push failed for {stream.id}: {e}")
            outcome.success = False
            outcome.error = f"push failed: {e}"
            return
        outcome.published = not published.skipped

        torn_down = orchestrator.teardown(ctx)
        outcome.torn_down = torn_down.success and not torn_down.skipped
        if not torn_down.success:
            outcome.reason = torn_down.message

    def _discard(self, outcome: StreamOutcome) -> None:
        if self.template.no_cleanup:
            return

        orchestrator = self.orchestrator_factory(self._stream_config(outcome.stream))
        try:
            ctx = orchestrator.attach()
        except LifecycleError as e:
            log_warn(f"Could not discard {outcome.stream.branch}: {e}")
            return
        outcome.torn_down = orchestrator.discard(ctx, require_clean=True)
