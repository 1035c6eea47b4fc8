"""Tests for .gwt.yaml configuration and lifecycle models."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from worktree_streams.schemas.config import GwtConfig
from worktree_streams.schemas.lifecycle import LifecycleConfig
from worktree_streams.schemas.streams import RunReport, StreamDescriptor, StreamOutcome


class TestGwtConfig:
    """Tests for GwtConfig loading and saving."""

    def test_defaults_when_missing(self, tmp_path: Path) -> None:
        config = GwtConfig.load(tmp_path / ".gwt.yaml")
        assert config.workspace.branch_namespace == "gwt"
        assert config.workspace.separator == "-"
        assert config.agent.grouping_model == "sonnet"
        assert config.agent.command is None

    def test_load_partial(self, tmp_path: Path) -> None:
        path = tmp_path / ".gwt.yaml"
        path.write_text("agent:\n  model: opus\nworkspace:\n  branch_namespace: work\n")

        config = GwtConfig.load(path)

        assert config.agent.model == "opus"
        assert config.workspace.branch_namespace == "work"
        assert config.agent.settings_dir == ".claude"

    def test_empty_file(self, tmp_path: Path) -> None:
        path = tmp_path / ".gwt.yaml"
        path.write_text("")
        assert GwtConfig.load(path) == GwtConfig()

    def test_invalid_value(self, tmp_path: Path) -> None:
        path = tmp_path / ".gwt.yaml"
        path.write_text("agent:\n  trust_workspaces: maybe\n")
        with pytest.raises(ValidationError):
            GwtConfig.load(path)

    def test_save_and_load(self, tmp_path: Path) -> None:
        config = GwtConfig()
        config.agent.model = "haiku"
        path = tmp_path / "nested" / ".gwt.yaml"

        config.save(path)

        assert GwtConfig.load(path).agent.model == "haiku"
        assert "command" not in path.read_text()

    def test_log_dir(self, tmp_path: Path) -> None:
        config = GwtConfig.model_validate({"runner": {"log_dir": str(tmp_path)}})
        assert config.runner.resolve_log_dir() == tmp_path


class TestLifecycleConfig:
    """Tests for LifecycleConfig."""

    def test_frozen(self) -> None:
        config = LifecycleConfig(branch="b")
        with pytest.raises(ValidationError):
            config.branch = "other"

    def test_for_branch(self) -> None:
        template = LifecycleConfig(branch="t", model="opus", no_push=True, work_only=True)
        config = template.for_branch("gwt/a", "do a", work_only=False)

        assert config.branch == "gwt/a"
        assert config.prompt == "do a"
        assert config.model == "opus"
        assert config.no_push
        assert not config.work_only
        assert template.branch == "t"


class TestRunReport:
    """Tests for RunReport aggregation."""

    def make_outcome(self, stream_id: str, **kwargs) -> StreamOutcome:
        stream = StreamDescriptor(
            id=stream_id, title=stream_id, prompt="p", branch=f"b/{stream_id}"
        )
        return StreamOutcome(stream=stream, **kwargs)

    def test_exit_code_zero_with_skips(self) -> None:
        report = RunReport(
            outcomes=[
                self.make_outcome("a", success=True),
                self.make_outcome("b", success=True, skipped=True),
            ]
        )
        assert report.exit_code == 0
        assert len(report.succeeded) == 1
        assert len(report.skipped) == 1

    def test_exit_code_one_with_failure(self) -> None:
        report = RunReport(
            outcomes=[self.make_outcome("a", success=True), self.make_outcome("b")]
        )
        assert report.exit_code == 1
        assert [o.stream.id for o in report.failed] == ["b"]

    def test_descriptor_requires_fields(self) -> None:
        with pytest.raises(ValidationError):
            StreamDescriptor(id="", title="t", prompt="p", branch="b")
