"""Subprocess execution for git, the agent, and child lifecycles."""

from __future__ import annotations

import os
import subprocess
import time
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path


@dataclass
class CommandResult:
    """Result of a command execution."""

    returncode: int
    stdout: str
    stderr: str
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return self.stdout + self.stderr


def run_command(
    argv: Sequence[str],
    cwd: str | Path | None = None,
    timeout: int | None = None,
) -> CommandResult:
    """Run a command and capture its output.

    Args:
        argv: Program and arguments (no shell interpretation)
        cwd: Working directory for the command
        timeout: Timeout in seconds, None to wait indefinitely

    Returns:
        CommandResult with returncode, stdout, stderr
    """
    start = time.time()

    try:
        result = subprocess.run(
            list(argv),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        duration_ms = int((time.time() - start) * 1000)

        return CommandResult(
            returncode=result.returncode,
            stdout=result.stdout,
            stderr=result.stderr,
            duration_ms=duration_ms,
        )
    except subprocess.TimeoutExpired:
        duration_ms = int((time.time() - start) * 1000)
        return CommandResult(
            returncode=-1,
            stdout="",
            stderr=f"Command timed out after {timeout} seconds",
            duration_ms=duration_ms,
        )
    except OSError as e:
        duration_ms = int((time.time() - start) * 1000)
        return CommandResult(
            returncode=127,
            stdout="",
            stderr=str(e),
            duration_ms=duration_ms,
        )


def run_interactive(argv: Sequence[str], cwd: str | Path | None = None) -> int:
    """Run a command attached to the current terminal.

    Returns:
        The exit code (1 if the program could not be started)
    """
    try:
        return subprocess.run(list(argv), cwd=cwd).returncode
    except OSError:
        return 1


def launch_detached(
    argv: Sequence[str],
    cwd: str | Path | None = None,
    log_path: str | Path | None = None,
) -> int:
    """Start a command in its own session and return without waiting.

    Args:
        argv: Program and arguments
        cwd: Working directory
        log_path: File receiving stdout and stderr (discarded when None)

    Returns:
        Process id of the launched child
    """
    if log_path is not None:
        Path(log_path).parent.mkdir(parents=True, exist_ok=True)
        sink = open(log_path, "ab")
    else:
        sink = open(os.devnull, "wb")

    with sink:
        proc = subprocess.Popen(
            list(argv),
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            stdout=sink,
            stderr=subprocess.STDOUT,
            start_new_session=True,
        )
    return proc.pid


class ProcessRunner:
    """Process-execution collaborator handed to the orchestrator and runner.

    Tests substitute an object with the same three methods.
    """

    def run(self, argv: Sequence[str], cwd: str | Path | None = None) -> CommandResult:
        return run_command(argv, cwd=cwd)

    def run_interactive(self, argv: Sequence[str], cwd: str | Path | None = None) -> int:
        return run_interactive(argv, cwd=cwd)

    def launch_detached(
        self,
        argv: Sequence[str],
        cwd: str | Path | None = None,
        log_path: str | Path | None = None,
    ) -> int:
        return launch_detached(argv, cwd=cwd, log_path=log_path)
