"""Tests for the thinking placeholder lifecycle."""

from __future__ import annotations

import unittest

from chat_reconciler.capabilities import CapabilityRegistry
from chat_reconciler.message_store import MessageStore
from chat_reconciler.messages import Message, MessagePart
from chat_reconciler.placeholder import (
    THINKING_PLACEHOLDER,
    PlaceholderLifecycle,
    insert_placeholder,
    remove_stale_placeholder,
)
from chat_reconciler.reasoning import ReasoningReconciler


def _user() -> Message:
    return Message(id="u1", role="user", content="question")


def _assistant() -> Message:
    return Message(
        id="a1", role="assistant", parts=[MessagePart(type="text", text="")]
    )


class PlaceholderHelperTests(unittest.TestCase):
    def test_insert_skips_non_assistant(self) -> None:
        messages = [_user()]
        self.assertEqual(insert_placeholder(messages), messages)

    def test_remove_keeps_real_reasoning(self) -> None:
        message = _assistant()
        message.parts.insert(0, MessagePart(type="reasoning", text="real"))
        messages = [_user(), message]
        self.assertEqual(remove_stale_placeholder(messages), messages)


class PlaceholderLifecycleTests(unittest.TestCase):
    """Status-driven insert and cleanup."""

    def setUp(self) -> None:
        self.store = MessageStore([_user()])
        self.registry = CapabilityRegistry(["deepseek-r1"])
        self.lifecycle = PlaceholderLifecycle(
            self.store, self.registry, "deepseek-r1:14b"
        ).attach()

    def tearDown(self) -> None:
        self.lifecycle.close()

    def _stream_assistant(self) -> None:
        self.store.set_status("submitted")
        self.store.set_messages(lambda prev: [*prev, _assistant()])
        self.store.set_status("streaming")

    def test_placeholder_inserted_while_streaming(self) -> None:
        self._stream_assistant()
        part = self.store.messages[-1].reasoning_part()
        self.assertIsNotNone(part)
        self.assertEqual(part.text, THINKING_PLACEHOLDER)

    def test_zero_reasoning_tokens_leave_no_reasoning_part(self) -> None:
        self._stream_assistant()
        self.store.set_status("ready")
        self.assertIsNone(self.store.messages[-1].reasoning_part())

    def test_real_reasoning_survives_ready(self) -> None:
        reconciler = ReasoningReconciler.for_transport(self.store)
        self._stream_assistant()
        reconciler.on_reasoning_start()
        reconciler.on_reasoning_delta("actual thought")
        self.store.set_status("ready")

        part = self.store.messages[-1].reasoning_part()
        self.assertEqual(part.text, "actual thought")
        reconciler.close()

    def test_model_without_thinking_gets_no_placeholder(self) -> None:
        self.lifecycle.set_model("llama3.2")
        self._stream_assistant()
        self.assertIsNone(self.store.messages[-1].reasoning_part())

    def test_disabled_lifecycle_is_inert(self) -> None:
        self.lifecycle.enabled = False
        self._stream_assistant()
        self.assertIsNone(self.store.messages[-1].reasoning_part())

    def test_from_config_uses_reasoning_section(self) -> None:
        self.lifecycle.close()
        self.lifecycle = PlaceholderLifecycle.from_config(
            self.store,
            self.registry,
            "deepseek-r1",
            {"reasoning": {"placeholder_text": "...", "show_placeholder": True}},
        ).attach()
        self._stream_assistant()
        self.assertEqual(self.store.messages[-1].reasoning_part().text, "...")


if __name__ == "__main__":
    unittest.main()
