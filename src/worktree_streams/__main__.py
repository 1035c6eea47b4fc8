"""Allow running as ``python -m worktree_streams``."""

from worktree_streams.cli import main

if __name__ == "__main__":
    main(prog_name="gwt")
