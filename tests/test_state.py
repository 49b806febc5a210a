"""Tests for the rephrase transition table and the coordination gate."""

from __future__ import annotations

import unittest

from chat_reconciler.exceptions import RephraseStateError
from chat_reconciler.state import CoordinationGate, RephraseState, StateManager


class StateManagerTests(unittest.TestCase):
    def test_happy_path(self) -> None:
        manager = StateManager()
        for state in (
            RephraseState.SELECTING,
            RephraseState.AWAITING_RESULT,
            RephraseState.REPLACING,
            RephraseState.PERSISTING,
            RephraseState.VERIFYING,
            RephraseState.DONE,
        ):
            manager.transition_to(state)
        self.assertEqual(manager.state, RephraseState.DONE)

    def test_illegal_transition_raises(self) -> None:
        manager = StateManager()
        with self.assertRaises(RephraseStateError):
            manager.transition_to(RephraseState.PERSISTING)

    def test_no_cancellation_after_persistence_starts(self) -> None:
        manager = StateManager(RephraseState.PERSISTING)
        self.assertFalse(manager.is_cancellable())
        self.assertFalse(manager.can_transition(RephraseState.REJECTED))

    def test_retry_from_terminal_off_ramps(self) -> None:
        for state in (RephraseState.REJECTED, RephraseState.FAILED):
            with self.subTest(state=state):
                manager = StateManager(state)
                self.assertTrue(manager.can_transition(RephraseState.AWAITING_RESULT))

    def test_transition_if_enforces_expected_state(self) -> None:
        manager = StateManager()
        self.assertFalse(
            manager.transition_if(RephraseState.SELECTING, RephraseState.AWAITING_RESULT)
        )
        self.assertTrue(
            manager.transition_if(RephraseState.IDLE, RephraseState.SELECTING)
        )
        self.assertEqual(manager.state, RephraseState.SELECTING)


class CoordinationGateTests(unittest.TestCase):
    def test_try_acquire_fails_fast_when_held(self) -> None:
        gate = CoordinationGate()
        self.assertTrue(gate.try_acquire())
        self.assertFalse(gate.try_acquire())
        gate.release()
        self.assertTrue(gate.try_acquire())

    def test_instances_are_independent(self) -> None:
        first, second = CoordinationGate("a"), CoordinationGate("b")
        first.try_acquire()
        self.assertFalse(second.held)

    def test_release_unheld_is_logged(self) -> None:
        with self.assertLogs("chat_reconciler.state", level="WARNING"):
            CoordinationGate().release()


if __name__ == "__main__":
    unittest.main()
