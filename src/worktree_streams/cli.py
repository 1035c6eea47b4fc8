"""CLI interface for Git Worktree Task streams."""

from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click
from rich.table import Table

from worktree_streams import __version__
from worktree_streams.core.agent import AgentLauncher
from worktree_streams.core.errors import LifecycleError, TeardownFailed, WorkspaceMissing
from worktree_streams.core.lifecycle import EXIT_NO_CHANGES, LifecycleResult, PhaseOrchestrator
from worktree_streams.core.state import LifecyclePhase
from worktree_streams.planner.branch_names import generate_branch_name
from worktree_streams.planner.decompose import TaskSource
from worktree_streams.runner.streams import StreamRunner
from worktree_streams.schemas.config import CONFIG_FILENAME, GwtConfig
from worktree_streams.schemas.lifecycle import LifecycleConfig
from worktree_streams.schemas.streams import RunReport, StreamDescriptor
from worktree_streams.utils.console import console, log_detail, log_error, log_info, log_step
from worktree_streams.utils.git import get_repo_root, has_uncommitted_changes
from worktree_streams.worktree.manager import WorkspaceManager

PASSTHROUGH = {"ignore_unknown_options": True, "allow_extra_args": True}

SELF_COMMAND = (sys.executable, "-m", "worktree_streams")


def agent_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options shared by every command that runs the agent."""
    options = [
        click.option("--model", default=None, help="Claude model override"),
        click.option("--max-budget-usd", default=None, help="Cost limit for Claude"),
        click.option("--permission-mode", default=None, help="Permission mode for Claude"),
        click.option("--from", "from_ref", default=None, help="Base ref for new worktrees"),
        click.option("--no-push", is_flag=True, help="Skip push after merge"),
        click.option("--no-cleanup", is_flag=True, help="Keep worktree after merge"),
    ]
    for option in reversed(options):
        func = option(func)
    return func


def _environment() -> tuple[Path, GwtConfig]:
    """Mainline directory and its configuration, resolved once per command."""
    source_dir = Path.cwd()
    repo_root = get_repo_root(source_dir) or source_dir
    return source_dir, GwtConfig.load(repo_root / CONFIG_FILENAME)


def _lifecycle_config(
    cfg: GwtConfig,
    branch: str,
    prompt: str = "",
    headless: bool = False,
    work_only: bool = False,
    extra: tuple[str, ...] = (),
    **options: Any,
) -> LifecycleConfig:
    """Merge command-line options over .gwt.yaml agent defaults."""
    return LifecycleConfig(
        branch=branch,
        prompt=prompt,
        headless=headless,
        work_only=work_only,
        model=options.get("model") or cfg.agent.model,
        max_budget_usd=options.get("max_budget_usd") or cfg.agent.max_budget_usd,
        permission_mode=options.get("permission_mode") or cfg.agent.permission_mode,
        from_ref=options.get("from_ref"),
        no_push=bool(options.get("no_push")),
        no_cleanup=bool(options.get("no_cleanup")),
        extra_agent_flags=extra,
    )


def _finish_lifecycle(run: Callable[[], LifecycleResult]) -> None:
    """Run a lifecycle and map its result onto the process exit code."""
    try:
        result = run()
    except LifecycleError as e:
        log_error(str(e))
        sys.exit(1)

    ctx = result.context
    if result.phase == LifecyclePhase.NO_OP_DONE:
        log_info("Done (no changes)")
        sys.exit(EXIT_NO_CHANGES)

    if ctx is None:
        return

    if LifecyclePhase.INTEGRATE not in result.outcomes:
        log_info(f"Work phase complete. Worktree: {ctx.workspace_path}")
        return

    _print_summary(ctx.branch, ctx.source_branch, result)


def _print_summary(branch: str, source_branch: str, result: LifecycleResult) -> None:
    """Print the completion summary of one lifecycle."""
    publish = result.outcomes.get(LifecyclePhase.PUBLISH)
    teardown = result.outcomes.get(LifecyclePhase.TEARDOWN)

    table = Table(title="gwt complete", show_header=False)
    table.add_column("Field", style="bold")
    table.add_column("Value")
    table.add_row("Branch", f"{branch} -> {source_branch}")
    table.add_row("Merged", "yes" if result.integrated else "no")
    table.add_row("Pushed", "skipped" if publish and publish.skipped else "yes")
    if teardown and teardown.skipped:
        table.add_row("Cleanup", "skipped")
    else:
        table.add_row("Cleanup", "done" if result.torn_down else "[yellow]failed[/yellow]")
    console.print(table)


def _print_report(title: str, report: RunReport) -> None:
    """Print the per-stream summary of a batch."""
    table = Table(title=title)
    table.add_column("Status")
    table.add_column("Stream", style="cyan")
    table.add_column("Merge")
    table.add_column("Push")
    table.add_column("Cleanup")
    table.add_column("Detail", style="dim")

    for o in report.outcomes:
        if o.skipped:
            status = "[yellow]SKIP[/yellow]"
        elif o.success:
            status = "[green]OK[/green]"
        else:
            status = "[red]FAIL[/red]"

        pending = o.success and not o.skipped
        merge = "merged" if o.integrated else ("[yellow]not merged[/yellow]" if pending else "-")
        push = "pushed" if o.published else ("[yellow]not pushed[/yellow]" if pending else "-")
        clean = "cleaned" if o.torn_down else "kept"
        detail = "; ".join(x for x in (o.reason, o.error) if x)

        table.add_row(status, f"{o.stream.id}: {o.stream.title}", merge, push, clean, detail)

    console.print(table)

    parts = [f"{len(report.succeeded)} succeeded"]
    if report.skipped:
        parts.append(f"{len(report.skipped)} skipped")
    parts.append(f"{len(report.failed)} failed")
    console.print(f"[bold]{', '.join(parts)}[/bold]")


def _check_batch_mode(interactive: bool, detach: bool) -> None:
    if interactive and detach:
        raise click.UsageError("--interactive and --detach are mutually exclusive.")


def _run_streams(
    title: str,
    streams: list[StreamDescriptor],
    template: LifecycleConfig,
    cfg: GwtConfig,
    source_dir: Path,
    interactive: bool,
    detach: bool,
) -> None:
    for s in streams:
        log_detail(f"- {s.id}: {s.title}")
        log_detail(f"  branch: {s.branch}")

    runner = StreamRunner(template, source_dir, SELF_COMMAND, settings=cfg)

    if detach:
        branches = runner.launch_detached(streams)
        log_step(f"Detached {len(branches)} stream(s). Use these to check on them:")
        for b in branches:
            log_detail(f"gwt rescue {b}    or    gwt merge {b}")
            click.echo(b)
        return

    report = runner.run(streams, interactive=interactive)
    _print_report(title, report)
    sys.exit(report.exit_code)


@click.group()
@click.version_option(version=__version__)
def main() -> None:
    """Git Worktree Task: run coding-agent tasks in disposable worktrees.

    Each task gets its own branch and worktree next to the repository,
    then is merged back, pushed, and cleaned up.
    """
    pass


@main.command(context_settings=PASSTHROUGH)
@click.argument("prompt", required=False, default="")
@click.option("--branch", "-b", default=None, help="Branch name (generated if omitted)")
@click.option("--headless", "-p", "--print", is_flag=True, help="Non-interactive agent run")
@click.option("--work-only", is_flag=True, help="Run work phase only (skip merge/push/cleanup)")
@agent_options
@click.pass_context
def run(
    ctx: click.Context,
    prompt: str,
    branch: str | None,
    headless: bool,
    work_only: bool,
    **options: Any,
) -> None:
    """Run one task in a new worktree, then merge, push, and clean up.

    Flags after `--` are passed to the agent verbatim.
    """
    source_dir, cfg = _environment()
    config = _lifecycle_config(
        cfg,
        branch or generate_branch_name(namespace=cfg.workspace.branch_namespace),
        prompt,
        headless=headless,
        work_only=work_only,
        extra=tuple(ctx.args),
        **options,
    )
    orchestrator = PhaseOrchestrator(config, source_dir, settings=cfg)
    _finish_lifecycle(orchestrator.run)


@main.command(context_settings=PASSTHROUGH)
@click.argument("task", required=False)
@click.option("--file", "input_file", type=click.Path(exists=True, dir_okay=False),
              help="Read task description from a file")
@click.option("--interactive", is_flag=True, help="Run streams one at a time, interactively")
@click.option("--detach", is_flag=True, help="Start streams in the background and exit")
@agent_options
@click.pass_context
def split(
    ctx: click.Context,
    task: str | None,
    input_file: str | None,
    interactive: bool,
    detach: bool,
    **options: Any,
) -> None:
    """Split a task into independent streams and run them in parallel."""
    _check_batch_mode(interactive, detach)
    if input_file:
        task = Path(input_file).read_text(encoding="utf-8").strip()
    if not task:
        raise click.UsageError("No task description provided. Pass a string or use --file.")

    source_dir, cfg = _environment()
    template = _lifecycle_config(cfg, "template", extra=tuple(ctx.args), **options)
    source = TaskSource(AgentLauncher(cfg.agent), namespace=cfg.workspace.branch_namespace)

    try:
        streams = source.decompose(task, template.model)
    except LifecycleError as e:
        log_error(f"Split failed: {e}")
        log_step("Fallback: use gwt directly to run the task in a worktree")
        log_detail("Run the whole task in one worktree:")
        log_detail(f'  gwt run "{task}"')
        log_detail("Or run one command per sub-task:")
        log_detail('  gwt run --branch <branch-name> "<sub-task prompt>"')
        sys.exit(1)

    log_step(f"Decomposed into {len(streams)} work stream(s):")
    _run_streams("gwt split summary", streams, template, cfg, source_dir, interactive, detach)


@main.command(context_settings=PASSTHROUGH)
@click.option("--grouping-model", default=None, help="Model for the grouping step")
@click.option("--interactive", is_flag=True, help="Run streams one at a time, interactively")
@click.option("--detach", is_flag=True, help="Start streams in the background and exit")
@agent_options
@click.pass_context
def beads(
    ctx: click.Context,
    grouping_model: str | None,
    interactive: bool,
    detach: bool,
    **options: Any,
) -> None:
    """Group ready beads (`bd ready`) and run each group as a stream."""
    _check_batch_mode(interactive, detach)
    source_dir, cfg = _environment()
    template = _lifecycle_config(cfg, "template", extra=tuple(ctx.args), **options)
    source = TaskSource(AgentLauncher(cfg.agent), namespace=cfg.workspace.branch_namespace)

    try:
        items = source.fetch_ready_beads()
        log_info("Fetched beads")
        log_detail(items)
        streams = source.group(items, grouping_model or cfg.agent.grouping_model)
    except LifecycleError as e:
        log_error(f"Grouping failed: {e}")
        sys.exit(1)

    log_step(f"Grouped into {len(streams)} work stream(s):")
    _run_streams("gwt beads summary", streams, template, cfg, source_dir, interactive, detach)


@main.command(context_settings=PASSTHROUGH)
@click.argument("branch")
@click.option("--headless", "-p", "--print", is_flag=True, help="Non-interactive agent run")
@click.option("--work-only", is_flag=True, help="Run work phase only (skip merge/push/cleanup)")
@agent_options
@click.pass_context
def rescue(
    ctx: click.Context,
    branch: str,
    headless: bool,
    work_only: bool,
    **options: Any,
) -> None:
    """Resume a Claude session in an orphaned worktree."""
    source_dir, cfg = _environment()
    config = _lifecycle_config(
        cfg, branch, headless=headless, work_only=work_only, extra=tuple(ctx.args), **options
    )
    orchestrator = PhaseOrchestrator(config, source_dir, settings=cfg)
    _finish_lifecycle(orchestrator.rescue)


@main.command()
@click.argument("branches", nargs=-1, required=True)
@click.option("--no-push", is_flag=True, help="Skip push after merge")
@click.option("--no-cleanup", is_flag=True, help="Keep worktree after merge")
def merge(branches: tuple[str, ...], no_push: bool, no_cleanup: bool) -> None:
    """Merge worktree branch(es) into the current branch (no agent)."""
    source_dir, cfg = _environment()
    failed: list[str] = []

    for branch in branches:
        config = _lifecycle_config(cfg, branch, no_push=no_push, no_cleanup=no_cleanup)
        orchestrator = PhaseOrchestrator(config, source_dir, settings=cfg)
        log_step(f"Merging {branch}")
        try:
            ctx = orchestrator.attach()
            result = orchestrator.reconcile(ctx)
        except LifecycleError as e:
            log_error(f"Failed to merge {branch}: {e}")
            failed.append(branch)
            continue
        _print_summary(branch, ctx.source_branch, result)

    if failed:
        log_error(f"Failed to merge {len(failed)} branch(es): {', '.join(failed)}")
        sys.exit(1)


@main.command()
@click.argument("branches", nargs=-1, required=True)
@click.option("--force", is_flag=True, help="Force-delete unmerged branches (git branch -D)")
def delete(branches: tuple[str, ...], force: bool) -> None:
    """Remove worktree(s) and their branches."""
    source_dir, cfg = _environment()
    wm = WorkspaceManager(source_dir, separator=cfg.workspace.separator)
    failed: list[str] = []

    for branch in branches:
        try:
            _delete_one(wm, branch, force)
        except LifecycleError as e:
            log_error(f"Failed to delete {branch}: {e}")
            failed.append(branch)

    if failed:
        log_error(f"Failed to delete {len(failed)} branch(es): {', '.join(failed)}")
        sys.exit(1)


def _delete_one(wm: WorkspaceManager, branch: str, force: bool) -> None:
    path = wm.locate(branch)
    if path is None:
        raise WorkspaceMissing(f"Worktree for branch '{branch}' does not exist")

    log_step(f"Removing worktree for branch: {branch}")
    if not wm.destroy(branch):
        raise TeardownFailed(
            "Failed to remove worktree. Try manually:\n"
            f"  git worktree remove {path} --force && git branch -d {branch}",
            workspace_path=path,
        )

    if force:
        wm.force_delete_branch(branch)
    log_info(f"Worktree removed: {path}")


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
def status(as_json: bool) -> None:
    """Show worktree status."""
    source_dir, cfg = _environment()
    wm = WorkspaceManager(source_dir, separator=cfg.workspace.separator)
    prefix = f"{cfg.workspace.branch_namespace}/"

    statuses = [
        {
            "branch": wt.branch,
            "path": str(wt.path),
            "head": wt.commit,
            "is_gwt": wt.branch.startswith(prefix),
            "is_main": wt.is_main,
            "has_changes": False if wt.is_main else has_uncommitted_changes(wt.path),
        }
        for wt in wm.list_workspaces()
    ]

    if as_json:
        click.echo(json.dumps({"worktrees": statuses}, indent=2))
        return

    if not statuses:
        console.print("[yellow]No worktrees found.[/yellow]")
        return

    table = Table(title="Git Worktrees")
    table.add_column("Branch", style="green")
    table.add_column("Path")
    table.add_column("Flags", style="dim")

    for s in statuses:
        flags = [
            name
            for name, key in (("main", "is_main"), ("gwt", "is_gwt"), ("changes", "has_changes"))
            if s[key]
        ]
        table.add_row(s["branch"] or "-", s["path"], ", ".join(flags))

    console.print(table)


@main.command()
@click.argument("output", type=click.Path(), default=CONFIG_FILENAME)
def init(output: str) -> None:
    """Initialize a new configuration file."""
    output_path = Path(output)

    if output_path.exists():
        if not click.confirm(f"{output} already exists. Overwrite?"):
            return

    config = GwtConfig()
    config.save(output_path)
    console.print(f"[green]Created:[/green] {output}")


@main.command()
def version() -> None:
    """Show version information."""
    console.print(f"gwt version {__version__}")


if __name__ == "__main__":
    main()
