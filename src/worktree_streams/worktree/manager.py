"""Git worktree management for stream isolation.

Workspaces live next to the mainline checkout, never inside it, in one flat
namespace: ``<repo-parent>/<branch with '/' replaced>``. Two branches that
map to the same directory name (``a/b-c`` and ``a-b/c``) cannot both have a
workspace; the second one fails to materialize instead of sharing it.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

from worktree_streams.core.errors import WorkspaceCreateFailed
from worktree_streams.utils.console import log_warn
from worktree_streams.utils.git import (
    add_worktree,
    delete_branch,
    get_repo_root,
    has_uncommitted_changes,
    list_worktrees_porcelain,
    remove_worktree,
)


@dataclass
class WorktreeInfo:
    """Information about a registered git worktree."""

    path: Path
    branch: str
    commit: str
    is_main: bool = False


def workspace_dir_name(branch: str, separator: str = "-") -> str:
    """Filesystem-safe directory name for a branch.

    Args:
        branch: Branch name, possibly hierarchical (``gwt/add-tests-1a2b``)
        separator: Replacement for path separators

    Returns:
        Single path component
    """
    return branch.replace("/", separator).replace("\\", separator)


def parse_worktree_list(output: str) -> list[WorktreeInfo]:
    """Parse ``git worktree list --porcelain`` output.

    The first entry is always the main working tree.
    """
    worktrees: list[WorktreeInfo] = []

    for block in output.strip().split("\n\n"):
        current: dict[str, str] = {}
        for line in block.split("\n"):
            if line.startswith("worktree "):
                current["worktree"] = line[9:]
            elif line.startswith("HEAD "):
                current["HEAD"] = line[5:]
            elif line.startswith("branch "):
                current["branch"] = line[7:]

        if not current.get("worktree"):
            continue

        worktrees.append(
            WorktreeInfo(
                path=Path(current["worktree"]),
                branch=current.get("branch", "").removeprefix("refs/heads/"),
                commit=current.get("HEAD", ""),
                is_main=not worktrees,
            )
        )

    return worktrees


class WorkspaceManager:
    """Creates, locates, and destroys the isolated workspace of a branch."""

    def __init__(self, repo_root: Path | None = None, separator: str = "-"):
        """Initialize workspace manager.

        Args:
            repo_root: Root of the mainline git checkout
            separator: Replacement for '/' in workspace directory names
        """
        self.repo_root = repo_root or get_repo_root() or Path.cwd()
        self.separator = separator

    def get_workspace_path(self, branch: str) -> Path:
        """Directory a workspace for ``branch`` is created in."""
        root = get_repo_root(self.repo_root) or self.repo_root
        return root.resolve().parent / workspace_dir_name(branch, self.separator)

    def materialize(self, branch: str, from_ref: str | None = None) -> Path:
        """Create or reuse the workspace for a branch.

        Tries a new branch first, then attaches an existing branch. A
        workspace that is already registered for the branch is reused.

        Args:
            branch: Branch name
            from_ref: Start point for a newly created branch

        Returns:
            Path to the workspace

        Raises:
            WorkspaceCreateFailed: If no workspace could be created or found
        """
        path = self.get_workspace_path(branch)

        owner = self._owner_of(path)
        if owner is not None and owner != branch:
            raise WorkspaceCreateFailed(
                f"Workspace directory {path} is already used by branch '{owner}'. "
                f"'{branch}' maps to the same directory name."
            )

        created = add_worktree(
            path, branch, cwd=self.repo_root, create_branch=True, start_point=from_ref
        )
        if created.ok:
            return self.locate(branch) or path

        attached = add_worktree(path, branch, cwd=self.repo_root, create_branch=False)
        if attached.ok:
            return self.locate(branch) or path

        existing = self.locate(branch)
        if existing is not None:
            log_warn("Worktree already exists, reusing it")
            return existing

        error = attached.stderr.strip() or created.stderr.strip() or "unknown error"
        raise WorkspaceCreateFailed(f"Failed to create worktree for {branch}: {error}")

    def _owner_of(self, path: Path) -> str | None:
        """Branch of the worktree registered at ``path``, or None."""
        target = path.resolve()
        for wt in self.list_workspaces():
            if wt.path.resolve() == target:
                return wt.branch
        return None

    def locate(self, branch: str) -> Path | None:
        """Registered workspace path for a branch, or None."""
        for wt in self.list_workspaces():
            if wt.branch == branch and not wt.is_main:
                return wt.path
        return None

    def exists(self, branch: str) -> bool:
        return self.locate(branch) is not None

    def destroy(self, branch: str) -> bool:
        """Remove the workspace of a branch, then best-effort delete the branch.

        The branch is only deleted when the workspace was removed, and only
        if it is fully merged.

        Returns:
            True if the workspace was removed
        """
        path = self.locate(branch)
        if path is None:
            log_warn(f"No worktree registered for {branch}")
            return False
        result = remove_worktree(path, cwd=self.repo_root, force=True)

        if result.ok:
            delete_branch(branch, cwd=self.repo_root)
        elif result.stderr.strip():
            log_warn(f"worktree remove failed: {result.stderr.strip()}")

        return result.ok

    def force_delete_branch(self, branch: str) -> bool:
        return delete_branch(branch, cwd=self.repo_root, force=True).ok

    def list_workspaces(self) -> list[WorktreeInfo]:
        """List all registered worktrees, main checkout first."""
        return parse_worktree_list(list_worktrees_porcelain(self.repo_root))

    def has_changes(self, branch: str) -> bool:
        path = self.locate(branch)
        return path is not None and has_uncommitted_changes(path)
