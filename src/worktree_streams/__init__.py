"""Git Worktree Task streams.

Runs coding-agent tasks in disposable git worktrees, one branch per stream,
and reconciles each stream back into the mainline checkout with merge,
push, and cleanup phases.
"""

__version__ = "0.6.1"
