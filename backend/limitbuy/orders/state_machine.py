"""Execution state machine -- pure transition logic with validation.

No I/O, no persistence. Validates state transitions of one execution
attempt and raises on invalid ones.
"""

from __future__ import annotations

from typing import ClassVar

from limitbuy.errors import InvalidStateError
from limitbuy.orders.types import (
    STAGE_FOR_STATE,
    TERMINAL_EXECUTION_STATES,
    ExecutionStage,
    ExecutionState,
)


class InvalidTransitionError(InvalidStateError):
    """Raised when an invalid state transition is attempted."""

    def __init__(self, from_state: ExecutionState, to_state: ExecutionState) -> None:
        self.from_state = from_state
        self.to_state = to_state
        super().__init__(f"Invalid transition: {from_state.value} -> {to_state.value}")


class ExecutionStateMachine:
    """Pure state transition logic for one purchase attempt.

    Stages only move forward, one at a time. Any staged state may fail.
    IDLE cannot fail: nothing has been sent to the venue yet.
    """

    TRANSITIONS: ClassVar[dict[ExecutionState, frozenset[ExecutionState]]] = {
        ExecutionState.IDLE: frozenset(
            {
                ExecutionState.STAGED_1,
            }
        ),
        ExecutionState.STAGED_1: frozenset(
            {
                ExecutionState.STAGED_2,
                ExecutionState.FAILED,
            }
        ),
        ExecutionState.STAGED_2: frozenset(
            {
                ExecutionState.STAGED_3,
                ExecutionState.FAILED,
            }
        ),
        ExecutionState.STAGED_3: frozenset(
            {
                ExecutionState.COMPLETED,
                ExecutionState.FAILED,
            }
        ),
    }

    def __init__(self, state: ExecutionState = ExecutionState.IDLE) -> None:
        self._state = state

    @property
    def state(self) -> ExecutionState:
        """Current state."""
        return self._state

    @property
    def stage(self) -> ExecutionStage:
        """Numbered stage for the current state, NONE outside the staged states."""
        return STAGE_FOR_STATE.get(self._state, ExecutionStage.NONE)

    @property
    def is_terminal(self) -> bool:
        """Whether the current state is terminal (no further transitions)."""
        return self._state in TERMINAL_EXECUTION_STATES

    def transition(self, to: ExecutionState) -> None:
        """Validate and apply a state transition.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if self.is_terminal:
            raise InvalidTransitionError(self._state, to)

        valid_targets = self.TRANSITIONS.get(self._state, frozenset())
        if to not in valid_targets:
            raise InvalidTransitionError(self._state, to)

        self._state = to

    def advance(self) -> ExecutionState:
        """Move to the next stage (or COMPLETED after stage 3)."""
        next_state = {
            ExecutionState.IDLE: ExecutionState.STAGED_1,
            ExecutionState.STAGED_1: ExecutionState.STAGED_2,
            ExecutionState.STAGED_2: ExecutionState.STAGED_3,
            ExecutionState.STAGED_3: ExecutionState.COMPLETED,
        }.get(self._state)
        if next_state is None:
            raise InvalidTransitionError(self._state, self._state)
        self.transition(next_state)
        return next_state
