"""Pydantic schemas for configuration, lifecycle input, and outcomes."""

from worktree_streams.schemas.config import GwtConfig
from worktree_streams.schemas.lifecycle import LifecycleConfig, LifecycleContext
from worktree_streams.schemas.streams import (
    PhaseOutcome,
    RunReport,
    StreamDescriptor,
    StreamOutcome,
)

__all__ = [
    "GwtConfig",
    "LifecycleConfig",
    "LifecycleContext",
    "PhaseOutcome",
    "RunReport",
    "StreamDescriptor",
    "StreamOutcome",
]
