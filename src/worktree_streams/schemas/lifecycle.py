"""Pydantic models for a single stream lifecycle."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field


class LifecycleConfig(BaseModel):
    """Execution parameters for one lifecycle run. Immutable."""

    model_config = ConfigDict(frozen=True)

    branch: str = Field(..., description="Stream branch name")
    prompt: str = Field(default="", description="Task prompt for the agent")
    headless: bool = Field(default=False, description="Run the agent non-interactively")
    model: str | None = Field(default=None, description="Agent model override")
    max_budget_usd: str | None = Field(default=None, description="Agent cost limit")
    permission_mode: str | None = Field(default=None, description="Agent permission mode")
    from_ref: str | None = Field(default=None, description="Base ref for a new workspace")
    no_push: bool = Field(default=False, description="Skip the publish phase")
    no_cleanup: bool = Field(default=False, description="Skip the teardown phase")
    work_only: bool = Field(
        default=False, description="Stop after the agent phase (no integrate/publish/teardown)"
    )
    extra_agent_flags: tuple[str, ...] = Field(
        default=(), description="Flags appended verbatim to the agent command"
    )

    def for_branch(self, branch: str, prompt: str, **overrides: object) -> "LifecycleConfig":
        """Copy of this template bound to another stream."""
        return self.model_copy(update={"branch": branch, "prompt": prompt, **overrides})


class LifecycleContext(BaseModel):
    """Handle produced by materialize and threaded through later phases."""

    config: LifecycleConfig
    source_dir: Path = Field(..., description="Mainline checkout")
    source_branch: str = Field(..., description="Mainline branch at invocation time")
    source_head: str | None = Field(
        default=None, description="Mainline HEAD when the lifecycle started"
    )
    workspace_path: Path = Field(..., description="Resolved workspace directory")

    @property
    def branch(self) -> str:
        return self.config.branch
