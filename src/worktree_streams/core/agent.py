"""Coding-agent discovery and invocation."""

from __future__ import annotations

import json
import os
import shutil
import tempfile
from collections.abc import Sequence
from pathlib import Path

from worktree_streams.core.errors import AgentUnavailable
from worktree_streams.schemas.config import AgentSettings
from worktree_streams.schemas.lifecycle import LifecycleConfig
from worktree_streams.utils.console import log_warn
from worktree_streams.utils.process import CommandResult, ProcessRunner

AGENT_NAMES = ("claude", "claude-code")
INSTALL_HINT = "Claude Code not found. Install from https://claude.com/claude-code"


def build_agent_args(config: LifecycleConfig) -> list[str]:
    """Translate lifecycle parameters into agent command-line arguments.

    Headless runs pass the prompt with ``-p``; interactive runs pass it as
    the opening message. Extra flags are appended verbatim.
    """
    args: list[str] = []

    if config.prompt:
        if config.headless:
            args.extend(["-p", config.prompt])
        else:
            args.append(config.prompt)

    if config.model:
        args.extend(["--model", config.model])
    if config.max_budget_usd:
        args.extend(["--max-budget-usd", config.max_budget_usd])
    if config.permission_mode:
        args.extend(["--permission-mode", config.permission_mode])

    args.extend(config.extra_agent_flags)
    return args


def build_conflict_prompt(paths: Sequence[str]) -> str:
    """Instructions for resolving the listed conflicted files."""
    listing = "\n".join(paths)
    return f"""There are git merge conflicts that need resolving. The following files have conflicts:

{listing}

Please resolve all merge conflicts in these files. For each file:
1. Open the file and find the conflict markers (<<<<<<< ======= >>>>>>>)
2. Resolve each conflict by choosing the correct code or combining changes
3. Remove all conflict markers
4. Stage the resolved files with git add

After resolving all conflicts, run 'git commit --no-edit' to complete the merge."""


class AgentLauncher:
    """Finds the agent executable and runs it in a directory."""

    def __init__(
        self,
        settings: AgentSettings | None = None,
        runner: ProcessRunner | None = None,
    ):
        self.settings = settings or AgentSettings()
        self.runner = runner or ProcessRunner()
        self._command: str | None = None

    def find(self) -> str:
        """Locate the agent executable.

        Order: configured command, ``~/.claude/local/claude``, then PATH.

        Raises:
            AgentUnavailable: If no executable is found
        """
        if self._command:
            return self._command

        candidates: list[str] = []
        if self.settings.command:
            found = shutil.which(self.settings.command)
            if not found:
                raise AgentUnavailable(f"Configured agent not found: {self.settings.command}")
            candidates.append(found)

        local = Path.home() / ".claude" / "local" / "claude"
        if local.is_file() and os.access(local, os.X_OK):
            candidates.append(str(local))

        for name in AGENT_NAMES:
            found = shutil.which(name)
            if found:
                candidates.append(found)

        if not candidates:
            raise AgentUnavailable(INSTALL_HINT)

        self._command = candidates[0]
        return self._command

    def run(self, args: Sequence[str], cwd: Path) -> int:
        """Run the agent attached to the terminal and return its exit code."""
        return self.runner.run_interactive([self.find(), *args], cwd=cwd)

    def run_captured(self, args: Sequence[str], cwd: Path | None = None) -> CommandResult:
        """Run the agent with output captured (used for text generation)."""
        return self.runner.run([self.find(), *args], cwd=cwd)

    def prepare_workspace(self, source_dir: Path, workspace_path: Path) -> None:
        """Copy agent settings into a workspace and mark it trusted."""
        settings_dir = source_dir / self.settings.settings_dir
        if settings_dir.is_dir():
            shutil.copytree(
                settings_dir,
                workspace_path / self.settings.settings_dir,
                dirs_exist_ok=True,
            )

        if self.settings.trust_workspaces:
            trust_directory(workspace_path, Path(self.settings.trust_file).expanduser())


def trust_directory(directory: Path, trust_file: Path) -> bool:
    """Record ``directory`` as trusted in the agent's JSON config.

    The file is replaced atomically, so a concurrent reader never sees a
    partial write. A file that exists but cannot be parsed is left alone.

    Returns:
        True if the file was updated, False if already trusted or the
        file could not be read
    """
    abs_dir = str(Path(directory).resolve())

    config: dict = {}
    if trust_file.exists():
        try:
            config = json.loads(trust_file.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            log_warn(f"Could not read {trust_file}, not marking {abs_dir} trusted: {e}")
            return False
        if not isinstance(config, dict):
            log_warn(f"Unexpected content in {trust_file}, not marking {abs_dir} trusted")
            return False

    projects = config.get("projects")
    if not isinstance(projects, dict):
        projects = {}
    existing = projects.get(abs_dir)
    if not isinstance(existing, dict):
        existing = {}

    if existing.get("hasTrustDialogAccepted"):
        return False

    projects[abs_dir] = {**existing, "hasTrustDialogAccepted": True}
    config["projects"] = projects

    trust_file.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(
        dir=trust_file.parent, prefix=f".{trust_file.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(config, indent=2) + "\n")
        os.replace(tmp_name, trust_file)
    except OSError:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return True
