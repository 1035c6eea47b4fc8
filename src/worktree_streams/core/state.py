"""Lifecycle phase state machine."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from worktree_streams.core.errors import StateTransitionError


class LifecyclePhase(str, Enum):
    """Phases of one stream lifecycle."""

    MATERIALIZE = "materialize"
    EXECUTE = "execute"
    INTEGRATE = "integrate"
    PUBLISH = "publish"
    TEARDOWN = "teardown"
    DONE = "done"
    NO_OP_DONE = "no_op_done"
    ABORTED = "aborted"


TERMINAL_PHASES = frozenset(
    {LifecyclePhase.DONE, LifecyclePhase.NO_OP_DONE, LifecyclePhase.ABORTED}
)

# Valid phase transitions
VALID_TRANSITIONS: dict[LifecyclePhase, set[LifecyclePhase]] = {
    LifecyclePhase.MATERIALIZE: {LifecyclePhase.EXECUTE, LifecyclePhase.ABORTED},
    LifecyclePhase.EXECUTE: {
        LifecyclePhase.INTEGRATE,
        LifecyclePhase.NO_OP_DONE,
        LifecyclePhase.ABORTED,
        LifecyclePhase.DONE,  # work-only
    },
    LifecyclePhase.INTEGRATE: {LifecyclePhase.PUBLISH, LifecyclePhase.ABORTED},
    LifecyclePhase.PUBLISH: {LifecyclePhase.TEARDOWN, LifecyclePhase.ABORTED},
    LifecyclePhase.TEARDOWN: {LifecyclePhase.DONE},
    LifecyclePhase.DONE: set(),
    LifecyclePhase.NO_OP_DONE: set(),
    LifecyclePhase.ABORTED: set(),
}


class PhaseStateMachine:
    """State machine for one branch's lifecycle."""

    def __init__(
        self,
        branch: str,
        initial_phase: LifecyclePhase = LifecyclePhase.MATERIALIZE,
    ):
        """Initialize state machine for a branch.

        Args:
            branch: Stream branch name
            initial_phase: Starting phase
        """
        self.branch = branch
        self._phase = initial_phase
        self._history: list[tuple[LifecyclePhase, str]] = [
            (initial_phase, datetime.now().isoformat())
        ]

    @property
    def phase(self) -> LifecyclePhase:
        """Get current phase."""
        return self._phase

    @property
    def history(self) -> list[tuple[LifecyclePhase, str]]:
        """Get phase transition history."""
        return self._history.copy()

    def can_transition_to(self, new_phase: LifecyclePhase) -> bool:
        return new_phase in VALID_TRANSITIONS.get(self._phase, set())

    def transition_to(self, new_phase: LifecyclePhase) -> None:
        """Move to a new phase.

        Raises:
            StateTransitionError: If transition is invalid
        """
        if not self.can_transition_to(new_phase):
            raise StateTransitionError(
                f"Invalid transition: {self._phase.value} -> {new_phase.value} "
                f"for branch {self.branch}"
            )

        self._phase = new_phase
        self._history.append((new_phase, datetime.now().isoformat()))

    def is_terminal(self) -> bool:
        return self._phase in TERMINAL_PHASES
