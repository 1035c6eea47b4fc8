"""Git operations utility functions."""

from __future__ import annotations

from pathlib import Path

from worktree_streams.utils.process import CommandResult, run_command


def git(*args: str, cwd: str | Path | None = None) -> CommandResult:
    """Run a git subcommand."""
    return run_command(["git", *args], cwd=cwd)


def get_repo_root(path: str | Path | None = None) -> Path | None:
    """Get the root directory of a git repository.

    Args:
        path: Path within the repository (defaults to cwd)

    Returns:
        Path to repository root, or None if not in a repo
    """
    result = git("rev-parse", "--show-toplevel", cwd=path)
    if result.returncode == 0 and result.stdout.strip():
        return Path(result.stdout.strip())
    return None


def get_current_branch(cwd: str | Path | None = None) -> str | None:
    """Get the current git branch name.

    Args:
        cwd: Working directory

    Returns:
        Branch name, or None if detached or not in a repo
    """
    result = git("branch", "--show-current", cwd=cwd)
    branch = result.stdout.strip() if result.returncode == 0 else ""
    if branch:
        return branch

    result = git("rev-parse", "--abbrev-ref", "HEAD", cwd=cwd)
    if result.returncode == 0:
        branch = result.stdout.strip()
        return None if branch in ("", "HEAD") else branch
    return None


def rev_parse(ref: str, cwd: str | Path | None = None) -> str | None:
    """Resolve a ref to a full commit hash.

    Returns:
        Commit hash, or None if the ref does not resolve
    """
    result = git("rev-parse", "--verify", "--quiet", ref, cwd=cwd)
    if result.returncode == 0:
        return result.stdout.strip() or None
    return None


def has_uncommitted_changes(cwd: str | Path) -> bool:
    """Check for staged, unstaged, or untracked changes."""
    result = git("status", "--porcelain", cwd=cwd)
    return result.returncode == 0 and bool(result.stdout.strip())


def add_worktree(
    path: str | Path,
    branch: str,
    cwd: str | Path | None = None,
    create_branch: bool = True,
    start_point: str | None = None,
) -> CommandResult:
    """Add a worktree at ``path`` checked out on ``branch``.

    Args:
        path: Directory for the new worktree
        branch: Branch to check out
        cwd: Directory inside the repository
        create_branch: Create ``branch`` (``-b``) instead of attaching to it
        start_point: Commit/branch the new branch starts from

    Returns:
        CommandResult from git worktree add
    """
    if create_branch:
        args = ["worktree", "add", "-b", branch, str(path)]
        if start_point:
            args.append(start_point)
    else:
        args = ["worktree", "add", str(path), branch]
    return git(*args, cwd=cwd)


def remove_worktree(
    path: str | Path,
    cwd: str | Path | None = None,
    force: bool = True,
) -> CommandResult:
    """Remove a worktree directory and its registration."""
    args = ["worktree", "remove", str(path)]
    if force:
        args.append("--force")
    return git(*args, cwd=cwd)


def list_worktrees_porcelain(cwd: str | Path | None = None) -> str:
    """Raw ``git worktree list --porcelain`` output, empty on failure."""
    result = git("worktree", "list", "--porcelain", cwd=cwd)
    return result.stdout if result.returncode == 0 else ""


def merge_branch(branch: str, cwd: str | Path) -> CommandResult:
    """Merge a branch into the current branch.

    Uses ``--no-edit`` to keep the generated merge message and
    ``--autostash`` so local edits in the mainline checkout survive.

    Args:
        branch: Branch to merge
        cwd: Working directory of the target checkout

    Returns:
        CommandResult from git merge
    """
    return git("merge", branch, "--no-edit", "--autostash", cwd=cwd)


def abort_merge(cwd: str | Path) -> CommandResult:
    """Abort an in-progress merge."""
    return git("merge", "--abort", cwd=cwd)


def merge_in_progress(cwd: str | Path) -> bool:
    """True if the checkout has an unfinished merge (MERGE_HEAD exists)."""
    return rev_parse("MERGE_HEAD", cwd) is not None


def is_ancestor(ancestor: str, descendant: str, cwd: str | Path) -> bool:
    """True if ``ancestor`` is reachable from ``descendant``."""
    return git("merge-base", "--is-ancestor", ancestor, descendant, cwd=cwd).returncode == 0


def get_unmerged_files(cwd: str | Path) -> list[str]:
    """List paths with unresolved merge conflicts.

    Parses NUL-terminated ``git ls-files -u -z`` records
    (``<mode> <hash> <stage>\\t<path>``) so paths are never quoted or
    escaped, and returns each path once, in first-seen order.
    """
    result = git("ls-files", "-u", "-z", cwd=cwd)
    if result.returncode != 0 or not result.stdout:
        return []

    paths: list[str] = []
    for record in result.stdout.split("\0"):
        _, tab, path = record.partition("\t")
        if tab and path and path not in paths:
            paths.append(path)
    return paths


def push(cwd: str | Path) -> CommandResult:
    """Push the current branch to its upstream."""
    return git("push", cwd=cwd)


def delete_branch(
    branch_name: str,
    cwd: str | Path | None = None,
    force: bool = False,
) -> CommandResult:
    """Delete a branch.

    Args:
        branch_name: Branch to delete
        cwd: Working directory
        force: Force delete even if not merged

    Returns:
        CommandResult from git branch -d/-D
    """
    flag = "-D" if force else "-d"
    return git("branch", flag, branch_name, cwd=cwd)
