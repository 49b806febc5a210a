"""Rephrase state machine and the coordination gate."""

from __future__ import annotations

from enum import Enum
import logging

from .exceptions import RephraseStateError

LOGGER = logging.getLogger(__name__)


class RephraseState(str, Enum):
    """Lifecycle of a single rephrase operation."""

    IDLE = "idle"
    SELECTING = "selecting"
    AWAITING_RESULT = "awaiting_result"
    REPLACING = "replacing"
    PERSISTING = "persisting"
    VERIFYING = "verifying"
    DONE = "done"
    REJECTED = "rejected"
    FAILED = "failed"


_NEW_OPERATION = frozenset({RephraseState.SELECTING, RephraseState.IDLE})

ALLOWED_TRANSITIONS: dict[RephraseState, frozenset[RephraseState]] = {
    RephraseState.IDLE: frozenset({RephraseState.SELECTING}),
    RephraseState.SELECTING: frozenset(
        {RephraseState.AWAITING_RESULT, RephraseState.REJECTED}
    ),
    RephraseState.AWAITING_RESULT: frozenset(
        {RephraseState.REPLACING, RephraseState.REJECTED, RephraseState.FAILED}
    ),
    RephraseState.REPLACING: frozenset({RephraseState.PERSISTING}),
    RephraseState.PERSISTING: frozenset(
        {RephraseState.VERIFYING, RephraseState.FAILED}
    ),
    RephraseState.VERIFYING: frozenset({RephraseState.DONE}),
    RephraseState.DONE: _NEW_OPERATION,
    RephraseState.REJECTED: _NEW_OPERATION | {RephraseState.AWAITING_RESULT},
    RephraseState.FAILED: _NEW_OPERATION | {RephraseState.AWAITING_RESULT},
}

CANCELLABLE_STATES = frozenset({RephraseState.SELECTING, RephraseState.AWAITING_RESULT})


class StateManager:
    """Enforce the rephrase transition table."""

    def __init__(self, initial: RephraseState = RephraseState.IDLE) -> None:
        self._state = initial

    @property
    def state(self) -> RephraseState:
        return self._state

    def can_transition(self, new_state: RephraseState) -> bool:
        return new_state in ALLOWED_TRANSITIONS[self._state]

    def transition_to(self, new_state: RephraseState) -> RephraseState:
        """Move to ``new_state`` or raise ``RephraseStateError``."""
        if not self.can_transition(new_state):
            raise RephraseStateError(
                f"Cannot move from {self._state.value} to {new_state.value}."
            )
        LOGGER.debug(
            "rephrase.state.transition",
            extra={
                "event": "rephrase.state.transition",
                "from_state": self._state.value,
                "to_state": new_state.value,
            },
        )
        self._state = new_state
        return self._state

    def transition_if(
        self, expected_state: RephraseState, new_state: RephraseState
    ) -> bool:
        """Transition only when the current state matches ``expected_state``."""
        if self._state != expected_state or not self.can_transition(new_state):
            return False
        self.transition_to(new_state)
        return True

    def is_cancellable(self) -> bool:
        return self._state in CANCELLABLE_STATES


class CoordinationGate:
    """Non-blocking mutex gating a cross-component operation.

    Instances are injected into the components that share them; there is no
    module-level gate.
    """

    def __init__(self, name: str = "gate") -> None:
        self.name = name
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def try_acquire(self) -> bool:
        """Take the gate; returns ``False`` when it is already held."""
        if self._held:
            LOGGER.debug(
                "gate.busy", extra={"event": "gate.busy", "gate": self.name}
            )
            return False
        self._held = True
        return True

    def release(self) -> None:
        """Release the gate; releasing an open gate is a no-op."""
        if not self._held:
            LOGGER.warning(
                "gate.release.unheld",
                extra={"event": "gate.release.unheld", "gate": self.name},
            )
            return
        self._held = False
