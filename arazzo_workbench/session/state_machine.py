"""
State machine for document rebuild jobs.

Implements explicit state transitions with validation so a superseded or
failed rebuild can never publish its result.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class BuildState(str, Enum):
    """
    Possible states of a rebuild job.

    State transitions:
    - PENDING -> RUNNING -> PUBLISHED
    - PENDING -> RUNNING -> FAILED
    - PENDING -> SUPERSEDED
    - RUNNING -> SUPERSEDED (a newer change arrived mid-build)
    """

    PENDING = "PENDING"          # Scheduled, no stage run yet
    RUNNING = "RUNNING"          # At least one stage has run
    PUBLISHED = "PUBLISHED"      # Snapshot swapped in
    SUPERSEDED = "SUPERSEDED"    # Discarded in favour of a newer job
    FAILED = "FAILED"            # Unexpected exception inside a stage


class StateTransition(BaseModel):
    """Represents a state transition event."""

    from_state: str
    to_state: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    reason: Optional[str] = None


class InvalidStateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: str, to_state: str, message: str = ""):
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(
            f"Invalid state transition from {from_state} to {to_state}"
            + (f": {message}" if message else "")
        )


class BuildStateMachine:
    """
    State machine for rebuild job states.

    Defines valid transitions and records their history.
    """

    # Valid state transitions: from_state -> [valid_to_states]
    VALID_TRANSITIONS: dict[BuildState, set[BuildState]] = {
        BuildState.PENDING: {BuildState.RUNNING, BuildState.SUPERSEDED},
        BuildState.RUNNING: {
            BuildState.PUBLISHED,
            BuildState.SUPERSEDED,
            BuildState.FAILED,
        },
        BuildState.PUBLISHED: set(),   # Terminal state
        BuildState.SUPERSEDED: set(),  # Terminal state
        BuildState.FAILED: set(),      # Terminal state
    }

    # Terminal states - no further transitions allowed
    TERMINAL_STATES: set[BuildState] = {
        BuildState.PUBLISHED,
        BuildState.SUPERSEDED,
        BuildState.FAILED,
    }

    def __init__(self, initial_state: BuildState = BuildState.PENDING):
        self._state = initial_state
        self._history: list[StateTransition] = []

    @property
    def state(self) -> BuildState:
        """Get current state."""
        return self._state

    @property
    def history(self) -> list[StateTransition]:
        """Get state transition history."""
        return self._history.copy()

    @property
    def is_terminal(self) -> bool:
        """Check if current state is terminal."""
        return self._state in self.TERMINAL_STATES

    def can_transition_to(self, to_state: BuildState) -> bool:
        """Check if transition to given state is valid."""
        return to_state in self.VALID_TRANSITIONS.get(self._state, set())

    def get_valid_transitions(self) -> set[BuildState]:
        """Get all valid transitions from current state."""
        return self.VALID_TRANSITIONS.get(self._state, set()).copy()

    def transition(self, to_state: BuildState, reason: Optional[str] = None) -> StateTransition:
        """
        Transition to a new state.

        Args:
            to_state: Target state
            reason: Reason for transition

        Returns:
            StateTransition record

        Raises:
            InvalidStateTransitionError: If transition is not valid
        """
        if not self.can_transition_to(to_state):
            raise InvalidStateTransitionError(
                self._state.value,
                to_state.value,
                f"Valid transitions: {sorted(s.value for s in self.get_valid_transitions())}"
            )

        transition = StateTransition(
            from_state=self._state.value,
            to_state=to_state.value,
            reason=reason,
        )

        self._history.append(transition)
        self._state = to_state

        return transition
