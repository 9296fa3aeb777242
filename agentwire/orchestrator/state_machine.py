"""
SetupStateMachine - legal phases of a setup session.

DETECTING → [AWAITING_BOOTSTRAP] → TURN_LOOP (⇄ AWAITING_USER_INPUT) → TERMINATED

AWAITING_BOOTSTRAP loops back to DETECTING after the user says the
required tool is installed. Every state may go to TERMINATED; nothing
leaves TERMINATED.
"""

from enum import Enum, auto
from typing import Dict, FrozenSet, List, Optional, Tuple


class SetupState(Enum):
    """Phases of a setup session."""

    DETECTING = auto()
    AWAITING_BOOTSTRAP = auto()
    TURN_LOOP = auto()
    AWAITING_USER_INPUT = auto()
    TERMINATED = auto()


class InvalidTransition(RuntimeError):
    """Raised when a transition is not in the transition table."""


class SetupStateMachine:
    """Tracks the current phase of one session and its history.

    Usage:
        sm = SetupStateMachine()
        sm.transition(SetupState.TURN_LOOP)
        sm.transition(SetupState.AWAITING_USER_INPUT, "ask_user")
        sm.transition(SetupState.TURN_LOOP, "form_submit")
        sm.terminate("success")
    """

    TRANSITIONS: Dict[SetupState, FrozenSet[SetupState]] = {
        SetupState.DETECTING: frozenset(
            {SetupState.AWAITING_BOOTSTRAP, SetupState.TURN_LOOP, SetupState.TERMINATED}
        ),
        SetupState.AWAITING_BOOTSTRAP: frozenset({SetupState.DETECTING, SetupState.TERMINATED}),
        SetupState.TURN_LOOP: frozenset({SetupState.AWAITING_USER_INPUT, SetupState.TERMINATED}),
        SetupState.AWAITING_USER_INPUT: frozenset({SetupState.TURN_LOOP, SetupState.TERMINATED}),
        SetupState.TERMINATED: frozenset(),
    }

    def __init__(self) -> None:
        self.current_state = SetupState.DETECTING
        self.outcome: Optional[str] = None
        self.history: List[Tuple[SetupState, str]] = []

    def can_transition_to(self, target: SetupState) -> bool:
        return target in self.TRANSITIONS[self.current_state]

    def transition(self, target: SetupState, reason: str = "") -> None:
        """Move to target.

        Raises:
            InvalidTransition: If target is not reachable from the current state
        """
        if not self.can_transition_to(target):
            raise InvalidTransition(f"Cannot go from {self.current_state.name} to {target.name}")

        desc = f"to {target.name}" + (f": {reason}" if reason else "")
        self.history.append((self.current_state, desc))
        self.current_state = target

    def terminate(self, outcome: str) -> bool:
        """Move to TERMINATED with an outcome.

        Returns:
            False if already terminated (the first outcome is kept)
        """
        if self.is_terminated():
            return False
        self.transition(SetupState.TERMINATED, outcome)
        self.outcome = outcome
        return True

    def is_terminated(self) -> bool:
        return self.current_state == SetupState.TERMINATED

    def get_history(self) -> List[str]:
        """Human-readable history of state transitions."""
        return [f"{from_state.name} {desc}" for from_state, desc in self.history]
