"""Error taxonomy for the stream lifecycle."""

from __future__ import annotations

from pathlib import Path


class LifecycleError(Exception):
    """Base error for lifecycle failures.

    Carries the preserved workspace path, when there is one, so the CLI
    can always tell the user where the unintegrated work lives.
    """

    def __init__(self, message: str, workspace_path: Path | str | None = None):
        super().__init__(message)
        self.workspace_path = Path(workspace_path) if workspace_path else None


class WorkspaceCreateFailed(LifecycleError):
    """Neither creating nor attaching a workspace succeeded."""


class WorkspaceMissing(LifecycleError):
    """No workspace is registered for the requested branch."""


class BranchUnresolvable(LifecycleError):
    """The mainline branch is detached or unknown."""


class LifecycleAborted(LifecycleError):
    """Stopped before integration; the workspace is preserved."""


class IntegrationConflict(LifecycleError):
    """Conflicts remain after the agent's resolution pass."""

    def __init__(
        self,
        message: str,
        paths: list[str],
        workspace_path: Path | str | None = None,
    ):
        super().__init__(message, workspace_path)
        self.paths = list(paths)


class IntegrationOtherFailure(LifecycleError):
    """The merge failed without leaving conflicted paths."""


class PublishFailed(LifecycleError):
    """The single push attempt failed."""


class TeardownFailed(LifecycleError):
    """The workspace could not be removed. Never fatal inside a lifecycle."""


class AgentUnavailable(LifecycleError):
    """The coding agent executable could not be found."""


class DecompositionParseFailed(LifecycleError):
    """The task-source response could not be decoded into streams."""

    def __init__(self, message: str, raw_response: str):
        super().__init__(message)
        self.raw_response = raw_response


class StateTransitionError(Exception):
    """Error raised when an invalid phase transition is attempted."""
