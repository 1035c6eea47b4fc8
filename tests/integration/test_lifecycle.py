"""Integration tests for the phase orchestrator.

Each test drives a real git repository through the lifecycle with a shell
script standing in for the agent. Headless runs pass the prompt with -p;
the conflict-resolution session passes it positionally.
"""

from pathlib import Path

import pytest

from conftest import run_git
from worktree_streams.core.errors import (
    AgentUnavailable,
    BranchUnresolvable,
    IntegrationConflict,
    IntegrationOtherFailure,
    LifecycleAborted,
    PublishFailed,
    WorkspaceMissing,
)
from worktree_streams.core.lifecycle import PhaseOrchestrator
from worktree_streams.core.state import LifecyclePhase
from worktree_streams.schemas.config import AgentSettings, GwtConfig
from worktree_streams.schemas.lifecycle import LifecycleConfig
from worktree_streams.utils.git import (
    get_unmerged_files,
    merge_branch,
    merge_in_progress,
    rev_parse,
)
from worktree_streams.worktree.manager import WorkspaceManager

BRANCH = "gwt/feature-0001"

COMMIT_WORK = """\
echo "feature" > feature.txt
git add feature.txt
git commit -q -m "agent work"
"""


def conflicting_agent(main_dir: Path, resolve: bool, resolution: str | None = None) -> str:
    """Agent that commits to README.md in the workspace and the mainline.

    When ``resolve`` is set, the conflict-resolution session finishes the
    merge; otherwise it leaves the conflict in place. ``resolution``
    replaces the conflict session's script outright.
    """
    if resolution is None:
        resolution = (
            'echo "resolved" > README.md\ngit add README.md\ngit commit -q --no-edit\n'
            if resolve
            else "exit 0\n"
        )
    return f"""\
if [ "$1" = "-p" ]; then
  echo "workspace" > README.md
  git commit -q -am "workspace edit"
  cd "{main_dir}" && echo "mainline" > README.md && git commit -q -am "mainline edit"
  exit 0
fi
{resolution}"""


def orchestrator(
    repo: Path,
    settings: GwtConfig,
    decide=None,
    **overrides,
) -> PhaseOrchestrator:
    options = {"branch": BRANCH, "prompt": "do it", "headless": True, "no_push": True}
    options.update(overrides)
    return PhaseOrchestrator(LifecycleConfig(**options), repo, settings=settings, decide=decide)


def workspace_of(repo: Path) -> Path:
    return repo.resolve().parent / "gwt-feature-0001"


class TestFullLifecycle:
    """End-to-end lifecycle runs."""

    def test_commit_is_merged_and_cleaned_up(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(COMMIT_WORK)

        result = orchestrator(git_repo, settings_for(agent)).run()

        assert result.phase == LifecyclePhase.DONE
        assert result.integrated
        assert not result.published
        assert result.torn_down
        assert (git_repo / "feature.txt").read_text() == "feature\n"
        assert not workspace_of(git_repo).exists()
        assert rev_parse(f"refs/heads/{BRANCH}", git_repo) is None

    def test_no_changes_discards_workspace(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        head = rev_parse("HEAD", git_repo)
        agent = make_agent("exit 0\n")

        result = orchestrator(git_repo, settings_for(agent)).run()

        assert result.phase == LifecyclePhase.NO_OP_DONE
        assert not result.integrated
        assert rev_parse("HEAD", git_repo) == head
        assert not workspace_of(git_repo).exists()

    def test_no_changes_keeps_workspace_with_no_cleanup(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent("exit 0\n")

        result = orchestrator(git_repo, settings_for(agent), no_cleanup=True).run()

        assert result.phase == LifecyclePhase.NO_OP_DONE
        assert workspace_of(git_repo).exists()

    def test_uncommitted_changes_abort(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent('echo "draft" > draft.txt\n')
        orch = orchestrator(git_repo, settings_for(agent))

        with pytest.raises(LifecycleAborted) as exc:
            orch.run()

        assert orch.phase == LifecyclePhase.ABORTED
        assert exc.value.workspace_path == workspace_of(git_repo)
        assert (workspace_of(git_repo) / "draft.txt").exists()

    def test_work_only_stops_after_agent(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        head = rev_parse("HEAD", git_repo)
        agent = make_agent(COMMIT_WORK)

        result = orchestrator(git_repo, settings_for(agent), work_only=True).run()

        assert result.phase == LifecyclePhase.DONE
        assert result.outcomes == {}
        assert rev_parse("HEAD", git_repo) == head
        assert (workspace_of(git_repo) / "feature.txt").exists()

    def test_nonzero_exit_continues_when_headless(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(COMMIT_WORK + "exit 2\n")

        result = orchestrator(git_repo, settings_for(agent)).run()

        assert result.integrated

    def test_nonzero_exit_declined_aborts(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(COMMIT_WORK + "exit 2\n")
        questions: list[str] = []

        def decline(question: str) -> bool:
            questions.append(question)
            return False

        orch = orchestrator(git_repo, settings_for(agent), decide=decline, headless=False)

        with pytest.raises(LifecycleAborted):
            orch.run()

        assert questions == ["Continue to merge?"]
        assert workspace_of(git_repo).exists()
        assert not (git_repo / "feature.txt").exists()

    def test_reuses_existing_workspace(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(COMMIT_WORK)
        settings = settings_for(agent)
        orchestrator(git_repo, settings, work_only=True).run()

        result = orchestrator(git_repo, settings).run()

        assert result.integrated
        assert (git_repo / "feature.txt").exists()

    def test_workspace_is_trusted(
        self, git_repo: Path, make_agent, settings_for, tmp_path: Path
    ) -> None:
        (git_repo / ".claude").mkdir()
        (git_repo / ".claude" / "settings.local.json").write_text("{}")
        agent = make_agent("test -f .claude/settings.local.json || exit 9\n" + COMMIT_WORK)

        result = orchestrator(git_repo, settings_for(agent), no_cleanup=True).run()

        assert result.integrated
        assert str(workspace_of(git_repo)) in (tmp_path / "claude.json").read_text()


class TestFailures:
    """Failure paths preserve the workspace."""

    def test_detached_head(self, git_repo: Path, make_agent, settings_for) -> None:
        run_git("checkout", "--detach", cwd=git_repo)
        orch = orchestrator(git_repo, settings_for(make_agent(COMMIT_WORK)))

        with pytest.raises(BranchUnresolvable):
            orch.run()

        assert orch.phase == LifecyclePhase.ABORTED
        assert not workspace_of(git_repo).exists()

    def test_agent_unavailable(self, git_repo: Path, tmp_path: Path) -> None:
        settings = GwtConfig(
            agent=AgentSettings(
                command=str(tmp_path / "missing"), trust_file=str(tmp_path / "c.json")
            )
        )
        orch = orchestrator(git_repo, settings)

        with pytest.raises(AgentUnavailable):
            orch.run()

        assert orch.phase == LifecyclePhase.ABORTED

    def test_conflict_resolved_by_agent(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(conflicting_agent(git_repo, resolve=True))

        result = orchestrator(git_repo, settings_for(agent)).run()

        assert result.integrated
        assert result.outcomes[LifecyclePhase.INTEGRATE].message == "conflicts resolved"
        assert (git_repo / "README.md").read_text() == "resolved\n"
        assert not workspace_of(git_repo).exists()

    def test_conflict_left_unresolved(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(conflicting_agent(git_repo, resolve=False))
        orch = orchestrator(git_repo, settings_for(agent))

        with pytest.raises(IntegrationConflict) as exc:
            orch.run()

        assert exc.value.paths == ["README.md"]
        assert orch.phase == LifecyclePhase.ABORTED
        assert workspace_of(git_repo).exists()
        assert merge_in_progress(git_repo)

    def test_conflict_aborted_for_later_retry(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        settings = settings_for(make_agent(conflicting_agent(git_repo, resolve=False)))
        orchestrator(git_repo, settings, work_only=True).run()
        orch = orchestrator(git_repo, settings)
        ctx = orch.attach()

        with pytest.raises(IntegrationConflict) as exc:
            orch.integrate(ctx, abort_on_conflict=True)

        assert f"gwt merge {BRANCH}" in str(exc.value)
        assert orch.phase == LifecyclePhase.ABORTED
        assert not merge_in_progress(git_repo)
        assert get_unmerged_files(git_repo) == []
        assert (git_repo / "README.md").read_text() == "mainline\n"
        assert workspace_of(git_repo).exists()

    def test_conflict_session_that_abandons_merge(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        script = conflicting_agent(git_repo, resolve=False, resolution="git merge --abort\n")
        orch = orchestrator(git_repo, settings_for(make_agent(script)))

        with pytest.raises(IntegrationOtherFailure) as exc:
            orch.run()

        assert "was not merged" in str(exc.value)
        assert LifecyclePhase.INTEGRATE not in orch.outcomes
        assert workspace_of(git_repo).exists()

    def test_unrelated_history_is_aborted(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        path = WorkspaceManager(git_repo).materialize(BRANCH)
        run_git("checkout", "-q", "--orphan", "unrelated", cwd=path)
        (path / "README.md").write_text("another root\n")
        run_git("commit", "-q", "-am", "unrelated root", cwd=path)
        run_git("branch", "-M", "unrelated", BRANCH, cwd=path)
        head = rev_parse("HEAD", git_repo)
        orch = orchestrator(git_repo, settings_for(make_agent("exit 0\n")))

        with pytest.raises(IntegrationOtherFailure) as exc:
            orch.reconcile(orch.attach())

        assert exc.value.workspace_path == workspace_of(git_repo)
        assert orch.phase == LifecyclePhase.ABORTED
        assert rev_parse("HEAD", git_repo) == head
        assert not merge_in_progress(git_repo)
        assert workspace_of(git_repo).exists()

    def test_existing_merge_in_mainline_is_left_alone(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        settings = settings_for(make_agent(COMMIT_WORK))
        orchestrator(git_repo, settings, work_only=True).run()
        run_git("checkout", "-q", "-b", "side", cwd=git_repo)
        (git_repo / "README.md").write_text("side\n")
        run_git("commit", "-q", "-am", "side", cwd=git_repo)
        run_git("checkout", "-q", "main", cwd=git_repo)
        (git_repo / "README.md").write_text("main\n")
        run_git("commit", "-q", "-am", "main", cwd=git_repo)
        assert not merge_branch("side", git_repo).ok
        orch = orchestrator(git_repo, settings)

        with pytest.raises(IntegrationOtherFailure) as exc:
            orch.reconcile(orch.attach())

        assert "already in progress" in str(exc.value)
        assert merge_in_progress(git_repo)
        assert get_unmerged_files(git_repo) == ["README.md"]
        assert not (git_repo / "feature.txt").exists()

    def test_teardown_failure_keeps_earlier_outcomes(
        self, git_repo: Path, bare_remote: Path, make_agent, settings_for
    ) -> None:
        settings = settings_for(make_agent(COMMIT_WORK))
        orchestrator(git_repo, settings, work_only=True).run()
        run_git("worktree", "lock", str(workspace_of(git_repo)), cwd=git_repo)
        orch = orchestrator(git_repo, settings, no_push=False)

        result = orch.reconcile(orch.attach())

        assert result.phase == LifecyclePhase.DONE
        assert result.integrated and result.published
        assert not result.torn_down
        assert result.outcomes[LifecyclePhase.TEARDOWN].message == "Worktree removal failed"
        assert rev_parse("main", bare_remote) == rev_parse("HEAD", git_repo)
        assert workspace_of(git_repo).exists()

    def test_discard_keeps_dirty_workspace_when_clean_required(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        path = WorkspaceManager(git_repo).materialize(BRANCH)
        (path / "draft.txt").write_text("x")
        orch = orchestrator(git_repo, settings_for(make_agent("exit 0\n")))
        ctx = orch.attach()

        assert not orch.discard(ctx, require_clean=True)
        assert (path / "draft.txt").exists()
        assert orch.discard(ctx)
        assert not path.exists()

    def test_publish_to_remote(
        self, git_repo: Path, bare_remote: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(COMMIT_WORK)

        result = orchestrator(git_repo, settings_for(agent), no_push=False).run()

        assert result.published
        assert rev_parse("main", bare_remote) == rev_parse("HEAD", git_repo)

    def test_publish_failure_preserves_workspace(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        agent = make_agent(COMMIT_WORK)
        orch = orchestrator(git_repo, settings_for(agent), no_push=False)

        with pytest.raises(PublishFailed) as exc:
            orch.run()

        assert "git push" in str(exc.value)
        assert orch.outcomes[LifecyclePhase.INTEGRATE].success
        assert (git_repo / "feature.txt").exists()
        assert workspace_of(git_repo).exists()


class TestAttach:
    """Resuming work in existing workspaces."""

    def test_reconcile_existing_workspace(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        settings = settings_for(make_agent(COMMIT_WORK))
        orchestrator(git_repo, settings, work_only=True).run()

        orch = orchestrator(git_repo, settings)
        result = orch.reconcile(orch.attach())

        assert result.phase == LifecyclePhase.DONE
        assert (git_repo / "feature.txt").exists()
        assert not workspace_of(git_repo).exists()

    def test_attach_missing_workspace(self, git_repo: Path, make_agent, settings_for) -> None:
        orch = orchestrator(git_repo, settings_for(make_agent("exit 0\n")))
        with pytest.raises(WorkspaceMissing):
            orch.attach()

    def test_rescue_resumes_agent(self, git_repo: Path, make_agent, settings_for) -> None:
        run_git("branch", BRANCH, cwd=git_repo)
        run_git("worktree", "add", str(workspace_of(git_repo)), BRANCH, cwd=git_repo)
        agent = make_agent('[ "$1" = "--resume" ] || exit 7\n' + COMMIT_WORK)

        result = orchestrator(git_repo, settings_for(agent), prompt="").rescue()

        assert result.integrated
        assert (git_repo / "feature.txt").exists()

    def test_rescue_falls_back_to_fresh_session(
        self, git_repo: Path, make_agent, settings_for
    ) -> None:
        run_git("worktree", "add", "-b", BRANCH, str(workspace_of(git_repo)), cwd=git_repo)
        agent = make_agent('[ "$1" = "--resume" ] && exit 1\n' + COMMIT_WORK)

        result = orchestrator(
            git_repo, settings_for(agent), prompt="", headless=False, decide=lambda q: True
        ).rescue()

        assert result.integrated
