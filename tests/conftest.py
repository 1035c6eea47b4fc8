"""Shared fixtures: throwaway git repositories and scripted fake agents.

These fixtures require git to be installed and available.
"""

import subprocess
from collections.abc import Callable
from pathlib import Path

import pytest

from worktree_streams.schemas.config import AgentSettings, GwtConfig


def run_git(*args: str, cwd: Path) -> str:
    """Run git and return stdout, failing the test on error."""
    result = subprocess.run(
        ["git", *args], cwd=cwd, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """Create a temporary git repository on branch main with one commit.

    Workspaces are created next to it, inside tmp_path.
    """
    repo_path = tmp_path / "repo"
    repo_path.mkdir()

    run_git("init", cwd=repo_path)
    run_git("config", "user.email", "test@test.com", cwd=repo_path)
    run_git("config", "user.name", "Test User", cwd=repo_path)

    (repo_path / "README.md").write_text("# Test Repo\n")
    run_git("add", "README.md", cwd=repo_path)
    run_git("commit", "-m", "Initial commit", cwd=repo_path)
    run_git("branch", "-M", "main", cwd=repo_path)

    return repo_path


@pytest.fixture
def bare_remote(tmp_path: Path, git_repo: Path) -> Path:
    """Attach a bare 'origin' to git_repo with main tracking it."""
    remote = tmp_path / "origin.git"
    run_git("init", "--bare", str(remote), cwd=tmp_path)
    run_git("remote", "add", "origin", str(remote), cwd=git_repo)
    run_git("push", "-u", "origin", "main", cwd=git_repo)
    return remote


@pytest.fixture
def make_agent(tmp_path: Path) -> Callable[[str], Path]:
    """Factory writing an executable shell script that stands in for the agent."""
    counter = iter(range(1000))

    def factory(body: str) -> Path:
        script = tmp_path / f"fake-agent-{next(counter)}"
        script.write_text("#!/bin/sh\n" + body)
        script.chmod(0o755)
        return script

    return factory


@pytest.fixture
def settings_for(tmp_path: Path) -> Callable[[Path], GwtConfig]:
    """Settings that use a given fake agent and a private trust file."""

    def factory(agent: Path) -> GwtConfig:
        return GwtConfig(
            agent=AgentSettings(
                command=str(agent),
                trust_file=str(tmp_path / "claude.json"),
            )
        )

    return factory
