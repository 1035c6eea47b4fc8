"""Pydantic models for .gwt.yaml configuration."""

from __future__ import annotations

import tempfile
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

CONFIG_FILENAME = ".gwt.yaml"


class AgentSettings(BaseModel):
    """How the coding agent is found and invoked."""

    command: str | None = Field(
        default=None, description="Agent executable (skips discovery when set)"
    )
    model: str | None = Field(default=None, description="Default model override")
    max_budget_usd: str | None = Field(default=None, description="Default cost limit")
    permission_mode: str | None = Field(
        default=None, description="Default permission mode"
    )
    grouping_model: str = Field(
        default="sonnet", description="Model used to group work items"
    )
    settings_dir: str = Field(
        default=".claude", description="Settings directory copied into new workspaces"
    )
    trust_file: str = Field(
        default="~/.claude.json", description="Agent config file recording trusted dirs"
    )
    trust_workspaces: bool = Field(
        default=True, description="Mark new workspaces as trusted"
    )


class WorkspaceSettings(BaseModel):
    """Workspace naming settings."""

    branch_namespace: str = Field(default="gwt", description="Prefix for generated branches")
    separator: str = Field(
        default="-", description="Replaces '/' when mapping branches to directories"
    )


class RunnerSettings(BaseModel):
    """Stream runner settings."""

    log_dir: str | None = Field(
        default=None, description="Directory for detached stream logs (temp dir if unset)"
    )

    def resolve_log_dir(self) -> Path:
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(tempfile.gettempdir())


class GwtConfig(BaseModel):
    """Complete configuration for .gwt.yaml."""

    agent: AgentSettings = Field(default_factory=AgentSettings)
    workspace: WorkspaceSettings = Field(default_factory=WorkspaceSettings)
    runner: RunnerSettings = Field(default_factory=RunnerSettings)

    @classmethod
    def load(cls, path: str | Path) -> "GwtConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            return cls()

        with open(path) as f:
            data = yaml.safe_load(f) or {}

        return cls.model_validate(data)

    def save(self, path: str | Path) -> None:
        """Save configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        with open(path, "w") as f:
            yaml.dump(
                self.model_dump(exclude_none=True),
                f,
                default_flow_style=False,
                sort_keys=False,
            )
